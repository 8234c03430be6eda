"""
平面距离-方位 SLAM 模型

车辆状态 (x, y, θ)，控制输入为车体坐标系下的里程计增量 (dx, dy, dθ)，
路标为平面点 (F=2)，传感器测量距离与方位 (O=2):

    r = |l - p|
    b = atan2(l_y - p_y, l_x - p_x) - θ

逆观测:
    l = p + r · [cos(θ + b), sin(θ + b)]

数据关联使用已知对应关系（观测附带路标 ID）。
"""
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from ..core.constants import EPSILON, NEW_LANDMARK, angle_difference, normalize_angle
from ..core.data_types import InverseObservation
from ..core.interfaces import IKalmanModel


class RangeBearingSLAMModel(IKalmanModel):
    """
    距离-方位传感器 + 里程计的 2D SLAM 协作方

    每次迭代前由宿主调用 set_step() 提供本次的里程计与观测。

    Args:
        odometry_noise: 里程计增量标准差 (dx, dy, dθ)
        sensor_noise: 观测标准差 (距离, 方位)
        max_range: 传感器最大距离，用于预测子集启发式
        range_margin: 预测子集的距离余量
        analytic_jacobians: False 时不提供解析 Jacobian
    """

    def __init__(self,
                 odometry_noise: Sequence[float] = (0.02, 0.02, 0.005),
                 sensor_noise: Sequence[float] = (0.05, 0.01),
                 max_range: float = 10.0,
                 range_margin: float = 1.0,
                 analytic_jacobians: bool = True):
        self.odometry_std = np.asarray(odometry_noise, dtype=float)
        self.R = np.diag(np.asarray(sensor_noise, dtype=float) ** 2)
        self.max_range = max_range
        self.range_margin = range_margin
        self.analytic_jacobians = analytic_jacobians

        self.id_to_index: Dict[Hashable, int] = {}
        self._control = np.zeros(3)
        self._observations: List[Tuple[Hashable, np.ndarray]] = []

    # ------------------------------------------------------------------
    # 维度
    # ------------------------------------------------------------------

    @property
    def vehicle_size(self) -> int:
        return 3

    @property
    def feature_size(self) -> int:
        return 2

    @property
    def observation_size(self) -> int:
        return 2

    @property
    def action_size(self) -> int:
        return 3

    def set_step(self, control: Sequence[float],
                 observations: Sequence[Tuple[Hashable, Sequence[float]]]) -> None:
        """设置下一次迭代的里程计增量与观测 [(路标 ID, (r, b)), ...]"""
        self._control = np.asarray(control, dtype=float)
        self._observations = [(lm_id, np.asarray(z, dtype=float)) for lm_id, z in observations]

    # ------------------------------------------------------------------
    # 运动模型
    # ------------------------------------------------------------------

    def get_control_input(self) -> np.ndarray:
        return self._control.copy()

    def transition_model(self, u, xv):
        dx, dy, dtheta = u
        c, s = np.cos(xv[2]), np.sin(xv[2])
        # θ 不在这里环绕，保证数值差分连续；normalize_state() 负责环绕
        return np.array([
            xv[0] + dx * c - dy * s,
            xv[1] + dx * s + dy * c,
            xv[2] + dtheta,
        ]), False

    def transition_jacobian(self, u, xv):
        if not self.analytic_jacobians:
            return None
        dx, dy, _ = u
        c, s = np.cos(xv[2]), np.sin(xv[2])
        return np.array([
            [1.0, 0.0, -dx * s - dy * c],
            [0.0, 1.0, dx * c - dy * s],
            [0.0, 0.0, 1.0],
        ])

    def transition_jacobian_increments(self):
        return np.array([1e-4, 1e-4, 1e-5])

    def transition_noise(self, u, xv):
        """里程计噪声从车体坐标系旋转到世界坐标系"""
        c, s = np.cos(xv[2]), np.sin(xv[2])
        rotation = np.array([
            [c, -s, 0.0],
            [s, c, 0.0],
            [0.0, 0.0, 1.0],
        ])
        return rotation @ np.diag(self.odometry_std ** 2) @ rotation.T

    # ------------------------------------------------------------------
    # 观测模型
    # ------------------------------------------------------------------

    @staticmethod
    def _relative(xv: np.ndarray, landmark: np.ndarray) -> Tuple[float, float, float]:
        dx = landmark[0] - xv[0]
        dy = landmark[1] - xv[1]
        return dx, dy, max(np.hypot(dx, dy), EPSILON)

    def observation_model(self, indices, state):
        xv = state.x[:3]
        predictions = []
        for i in indices:
            dx, dy, r = self._relative(xv, state.landmark(i))
            predictions.append(np.array([r, normalize_angle(np.arctan2(dy, dx) - xv[2])]))
        return predictions

    def observation_jacobians(self, index, state):
        if not self.analytic_jacobians:
            return None
        dx, dy, r = self._relative(state.x[:3], state.landmark(index))
        r2 = r * r
        Hx = np.array([
            [-dx / r, -dy / r, 0.0],
            [dy / r2, -dx / r2, -1.0],
        ])
        Hy = np.array([
            [dx / r, dy / r],
            [-dy / r2, dx / r2],
        ])
        return Hx, Hy

    def observation_jacobian_increments(self):
        return np.array([1e-4, 1e-4, 1e-5]), np.array([1e-4, 1e-4])

    def observation_noise(self):
        return self.R.copy()

    def subtract_observations(self, a, b):
        return np.array([a[0] - b[0], angle_difference(a[1], b[1])])

    def pre_compute_prediction_subset(self, predictions, state):
        """只保留预测距离在传感器范围（加余量）内的路标"""
        limit = self.max_range + self.range_margin
        return [i for i, z in enumerate(predictions) if z[0] <= limit]

    def get_observations_and_associate(self, predictions, S, predicted_indices, R):
        observations = [z for _, z in self._observations]
        association = [self.id_to_index.get(lm_id, NEW_LANDMARK) for lm_id, _ in self._observations]
        return observations, association

    # ------------------------------------------------------------------
    # 建图
    # ------------------------------------------------------------------

    def inverse_observation_model(self, z, state):
        x, y, theta = state.x[:3]
        r, b = z
        angle = theta + b
        c, s = np.cos(angle), np.sin(angle)
        return InverseObservation(
            mean=np.array([x + r * c, y + r * s]),
            dyn_dxv=np.array([
                [1.0, 0.0, -r * s],
                [0.0, 1.0, r * c],
            ]),
            dyn_dhn=np.array([
                [c, -r * s],
                [s, r * c],
            ]),
        )

    def on_new_landmark_inserted(self, observation_index, landmark_index):
        lm_id = self._observations[observation_index][0]
        self.id_to_index[lm_id] = landmark_index
        return lm_id

    def normalize_state(self, state):
        state.x[2] = normalize_angle(state.x[2])

    def landmark_index(self, lm_id: Hashable) -> Optional[int]:
        return self.id_to_index.get(lm_id)
