"""
线性参考模型

用于单元测试与性质测试，结果可以手算验证:

- ScalarLocalizationModel: V=1, F=0, O=1。x' = x + u，h(x) = x
- LinearSLAMModel: V=2, F=2, O=2。x' = x + u，h(x, y) = y - x，逆观测 y = x + z
- IdentityTransitionModel: 恒等转移、零噪声、无观测（幂等性检查）

观测通过 queue_observations() 逐次迭代排队。每次迭代第一次数据关联时取出一批，
同一迭代内的重试返回同一批，on_post_iteration() 结束本批。
"""
from collections import deque
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from ..core.constants import NEW_LANDMARK
from ..core.data_types import InverseObservation
from ..core.interfaces import IKalmanModel


class ScalarLocalizationModel(IKalmanModel):
    """
    一维纯定位模型

    Args:
        observation_noise: 观测噪声方差 R
        process_noise: 过程噪声方差 Q
        skip_first_prediction: 第一次迭代跳过预测
    """

    def __init__(self, observation_noise: float = 0.25, process_noise: float = 0.0,
                 skip_first_prediction: bool = False, analytic_jacobians: bool = True):
        self.R = np.array([[observation_noise]])
        self.Q = np.array([[process_noise]])
        self.control = np.zeros(1)
        self.skip_first_prediction = skip_first_prediction
        self.analytic_jacobians = analytic_jacobians
        self._observations: deque = deque()
        self._current: Optional[list] = None
        self._transitions = 0

    @property
    def vehicle_size(self) -> int:
        return 1

    @property
    def feature_size(self) -> int:
        return 0

    @property
    def observation_size(self) -> int:
        return 1

    @property
    def action_size(self) -> int:
        return 1

    def queue_observations(self, values: Sequence[float]) -> None:
        """为下一次尚未排队的迭代排入一批观测（可以为空）"""
        self._observations.append([np.array([float(v)]) for v in values])

    def get_control_input(self) -> np.ndarray:
        return self.control.copy()

    def transition_model(self, u, xv):
        self._transitions += 1
        skip = self.skip_first_prediction and self._transitions == 1
        return xv + u, skip

    def transition_jacobian(self, u, xv):
        return np.eye(1) if self.analytic_jacobians else None

    def transition_noise(self, u, xv):
        return self.Q.copy()

    def observation_model(self, indices, state):
        return [state.x[:1].copy() for _ in indices]

    def observation_jacobians(self, index, state):
        if not self.analytic_jacobians:
            return None
        return np.eye(1), np.zeros((1, 0))

    def observation_noise(self):
        return self.R.copy()

    def get_observations_and_associate(self, predictions, S, predicted_indices, R):
        if self._current is None:
            self._current = self._observations.popleft() if self._observations else []
        return list(self._current), []

    def on_post_iteration(self, state):
        self._current = None


class LinearSLAMModel(IKalmanModel):
    """
    二维线性 SLAM 模型

    车辆与路标都是平面点，观测为路标相对车辆的位移。
    数据关联使用已知对应关系：观测附带外部 ID，未见过的 ID 标记为新路标。

    Args:
        process_noise: 过程噪声 Q (2×2)，None 为零矩阵
        observation_noise: 观测噪声 R (2×2)
        analytic_jacobians: False 时不提供解析 Jacobian，引擎使用数值估计
        subset: 预测子集选择函数 (predictions, state) -> indices，None 选全部
        inverse_noise_term: True 时逆观测返回预组合噪声项而不是 dyn_dhn
    """

    def __init__(self, process_noise=None, observation_noise=None,
                 analytic_jacobians: bool = True,
                 subset: Optional[Callable] = None,
                 inverse_noise_term: bool = False):
        self.Q = np.zeros((2, 2)) if process_noise is None else np.asarray(process_noise, dtype=float)
        self.R = 0.01 * np.eye(2) if observation_noise is None else np.asarray(observation_noise, dtype=float)
        self.control = np.zeros(2)
        self.analytic_jacobians = analytic_jacobians
        self.subset = subset
        self.inverse_noise_term = inverse_noise_term

        self.id_to_index: Dict[Hashable, int] = {}
        self.inserted: List[Tuple[int, int]] = []
        self.post_iterations = 0
        self._queue: deque = deque()
        self._current: Optional[list] = None

    @property
    def vehicle_size(self) -> int:
        return 2

    @property
    def feature_size(self) -> int:
        return 2

    @property
    def observation_size(self) -> int:
        return 2

    @property
    def action_size(self) -> int:
        return 2

    def queue_observations(self, observations: Sequence[Tuple[Hashable, Sequence[float]]]) -> None:
        """排入一次迭代的观测 [(外部 ID, z), ...]"""
        self._queue.append([(lm_id, np.asarray(z, dtype=float)) for lm_id, z in observations])

    def get_control_input(self):
        return self.control.copy()

    def transition_model(self, u, xv):
        return xv + u, False

    def transition_jacobian(self, u, xv):
        return np.eye(2) if self.analytic_jacobians else None

    def transition_noise(self, u, xv):
        return self.Q.copy()

    def observation_model(self, indices, state):
        xv = state.x[:2]
        return [state.landmark(i) - xv for i in indices]

    def observation_jacobians(self, index, state):
        if not self.analytic_jacobians:
            return None
        return -np.eye(2), np.eye(2)

    def observation_noise(self):
        return self.R.copy()

    def pre_compute_prediction_subset(self, predictions, state):
        if self.subset is None:
            return list(range(len(predictions)))
        return list(self.subset(predictions, state))

    def get_observations_and_associate(self, predictions, S, predicted_indices, R):
        if self._current is None:
            self._current = self._queue.popleft() if self._queue else []
        association = [self.id_to_index.get(lm_id, NEW_LANDMARK) for lm_id, _ in self._current]
        return [z for _, z in self._current], association

    def inverse_observation_model(self, z, state):
        mean = state.x[:2] + z
        if self.inverse_noise_term:
            return InverseObservation(mean=mean, dyn_dxv=np.eye(2), noise_term=self.R.copy())
        return InverseObservation(mean=mean, dyn_dxv=np.eye(2), dyn_dhn=np.eye(2))

    def on_new_landmark_inserted(self, observation_index, landmark_index):
        lm_id = self._current[observation_index][0]
        self.id_to_index[lm_id] = landmark_index
        self.inserted.append((observation_index, landmark_index))
        return lm_id

    def on_post_iteration(self, state):
        self.post_iterations += 1
        self._current = None


class IdentityTransitionModel(LinearSLAMModel):
    """恒等转移、零过程噪声、没有观测：任意次迭代后状态不变"""

    def __init__(self):
        super().__init__(process_noise=np.zeros((2, 2)))

    def get_observations_and_associate(self, predictions, S, predicted_indices, R):
        return [], []
