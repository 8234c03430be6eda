"""
状态向量与协方差存储

状态向量布局:
=============

    x = [ 车辆段 (V) | 路标 0 (F) | 路标 1 (F) | ... | 路标 N-1 (F) ]

协方差矩阵 P 与 x 同阶，块 [i, j] 对应段 i 与段 j 的互协方差:

    P = [ P_vv   P_v0   P_v1  ... ]
        [ P_0v   P_00   P_01  ... ]
        [ P_1v   P_10   P_11  ... ]

F = 0 表示纯定位滤波器，永远没有路标段。

所有块访问返回 numpy 视图（零拷贝），写入视图即写入存储。
路标只能整段追加，不能删除；只有 reset() 会清空地图。
"""
import logging
from typing import Dict, Hashable, List, Optional

import numpy as np

from .constants import SYMMETRY_TOLERANCE
from .exceptions import KalmanFilterError
from .validators import symmetry_error

logger = logging.getLogger(__name__)


class LandmarkIndex:
    """
    路标外部 ID 与状态向量内位置的双向映射

    外部 ID 由宿主在路标插入时分配（例如传感器的特征 ID），
    内部位置是路标段的零基序号，状态偏移为 V + index * F。
    """

    def __init__(self):
        self._id_to_index: Dict[Hashable, int] = {}
        self._index_to_id: Dict[int, Hashable] = {}

    def add(self, external_id: Hashable, index: int) -> None:
        """
        登记一对映射

        Raises:
            KalmanFilterError: ID 或位置已被占用（破坏双射）
        """
        if external_id in self._id_to_index:
            raise KalmanFilterError(
                f"Landmark id {external_id!r} already mapped to index "
                f"{self._id_to_index[external_id]}"
            )
        if index in self._index_to_id:
            raise KalmanFilterError(
                f"Landmark index {index} already mapped to id {self._index_to_id[index]!r}"
            )
        self._id_to_index[external_id] = index
        self._index_to_id[index] = external_id

    def index_of(self, external_id: Hashable) -> Optional[int]:
        return self._id_to_index.get(external_id)

    def id_of(self, index: int) -> Optional[Hashable]:
        return self._index_to_id.get(index)

    def ids(self) -> List[Hashable]:
        """按内部位置排序的外部 ID 列表"""
        return [self._index_to_id[i] for i in sorted(self._index_to_id)]

    def clear(self) -> None:
        self._id_to_index.clear()
        self._index_to_id.clear()

    def __contains__(self, external_id: Hashable) -> bool:
        return external_id in self._id_to_index

    def __len__(self) -> int:
        return len(self._id_to_index)


class FilterState:
    """
    联合状态存储: 均值向量 x 与协方差矩阵 P

    由滤波引擎独占，协作方只能通过钩子约定读写（例如 normalize_state 中做角度归一化）。

    线程安全性:
    - 不是线程安全的，调用者负责按实例串行化访问
    """

    def __init__(self, vehicle_size: int, feature_size: int):
        if vehicle_size <= 0:
            raise KalmanFilterError(f"vehicle_size must be positive, got {vehicle_size}")
        if feature_size < 0:
            raise KalmanFilterError(f"feature_size must be >= 0, got {feature_size}")

        self._vehicle_size = int(vehicle_size)
        self._feature_size = int(feature_size)
        self.landmark_ids = LandmarkIndex()

        self.x = np.zeros(self._vehicle_size)
        self.P = np.zeros((self._vehicle_size, self._vehicle_size))

    # ------------------------------------------------------------------
    # 尺寸
    # ------------------------------------------------------------------

    @property
    def vehicle_size(self) -> int:
        return self._vehicle_size

    @property
    def feature_size(self) -> int:
        return self._feature_size

    @property
    def is_slam(self) -> bool:
        """F > 0 为 SLAM 滤波器，F = 0 为纯定位滤波器"""
        return self._feature_size > 0

    @property
    def size(self) -> int:
        return self.x.shape[0]

    @property
    def num_landmarks(self) -> int:
        if not self.is_slam:
            return 0
        return (self.size - self._vehicle_size) // self._feature_size

    def is_map_empty(self) -> bool:
        return self.num_landmarks == 0

    # ------------------------------------------------------------------
    # 视图访问
    # ------------------------------------------------------------------

    def landmark_offset(self, index: int) -> int:
        """路标 index 在状态向量中的起始偏移"""
        self._check_landmark_index(index)
        return self._vehicle_size + index * self._feature_size

    def landmark_slice(self, index: int) -> slice:
        offset = self.landmark_offset(index)
        return slice(offset, offset + self._feature_size)

    @property
    def vehicle(self) -> np.ndarray:
        """车辆段均值视图"""
        return self.x[:self._vehicle_size]

    @property
    def P_vv(self) -> np.ndarray:
        """车辆位姿协方差块视图"""
        v = self._vehicle_size
        return self.P[:v, :v]

    def landmark(self, index: int) -> np.ndarray:
        """路标段均值视图"""
        return self.x[self.landmark_slice(index)]

    def cross_covariance(self, index: int) -> np.ndarray:
        """车辆-路标互协方差 P_vi 视图 (V×F)"""
        return self.P[:self._vehicle_size, self.landmark_slice(index)]

    def landmark_covariance(self, index: int) -> np.ndarray:
        """路标协方差 P_ii 视图 (F×F)"""
        s = self.landmark_slice(index)
        return self.P[s, s]

    def block(self, i: int, j: int) -> np.ndarray:
        """路标 i 与路标 j 的互协方差 P_ij 视图"""
        return self.P[self.landmark_slice(i), self.landmark_slice(j)]

    # ------------------------------------------------------------------
    # 修改
    # ------------------------------------------------------------------

    def set_vehicle(self, mean, covariance=None) -> None:
        """
        设置车辆段均值（及可选的协方差块）

        互协方差块保持不变。
        """
        v = self._vehicle_size
        mean = np.asarray(mean, dtype=float).reshape(-1)
        if mean.shape[0] != v:
            raise KalmanFilterError(f"Vehicle mean has length {mean.shape[0]}, expected {v}")
        self.x[:v] = mean
        if covariance is not None:
            covariance = np.asarray(covariance, dtype=float)
            if covariance.shape != (v, v):
                raise KalmanFilterError(
                    f"Vehicle covariance has shape {covariance.shape}, expected {(v, v)}"
                )
            self.P[:v, :v] = covariance
            self.enforce_symmetry()

    def append_landmark(self, mean) -> int:
        """
        追加一个路标段

        x 扩展 F 个元素，P 在两个维度各扩展 F，新行列初始化为零，
        由调用者填充相关块。

        Returns:
            新路标的零基序号
        """
        if not self.is_slam:
            raise KalmanFilterError("Cannot append landmarks to a localization-only filter (F = 0)")
        mean = np.asarray(mean, dtype=float).reshape(-1)
        if mean.shape[0] != self._feature_size:
            raise KalmanFilterError(
                f"Landmark mean has length {mean.shape[0]}, expected {self._feature_size}"
            )

        new_index = self.num_landmarks
        old_size = self.size
        new_size = old_size + self._feature_size

        self.x = np.concatenate([self.x, mean])
        P_new = np.zeros((new_size, new_size))
        P_new[:old_size, :old_size] = self.P
        self.P = P_new
        return new_index

    def enforce_symmetry(self) -> float:
        """
        原地对称化 P = (P + P^T) / 2

        Returns:
            对称化之前的 max|P - P^T|
        """
        error = symmetry_error(self.P)
        if error > 0.0:
            self.P = 0.5 * (self.P + self.P.T)
        return error

    def symmetry_tolerance(self) -> float:
        """当前 P 的对称性容差（相对 max(1, max|P|)）"""
        if self.P.size == 0:
            return SYMMETRY_TOLERANCE
        return SYMMETRY_TOLERANCE * max(1.0, float(np.max(np.abs(self.P))))

    def check_layout(self) -> None:
        """
        检查布局不变量

        - len(x) == P 的阶数
        - len(x) >= V
        - F > 0 时 (len(x) - V) % F == 0；F = 0 时 len(x) == V

        Raises:
            KalmanFilterError: 不变量被破坏
        """
        n = self.size
        if self.P.shape != (n, n):
            raise KalmanFilterError(
                f"Covariance shape {self.P.shape} does not match state length {n}"
            )
        if n < self._vehicle_size:
            raise KalmanFilterError(
                f"State length {n} smaller than vehicle size {self._vehicle_size}"
            )
        if self.is_slam:
            if (n - self._vehicle_size) % self._feature_size != 0:
                raise KalmanFilterError(
                    f"State length {n} is not V + k*F (V={self._vehicle_size}, F={self._feature_size})"
                )
        elif n != self._vehicle_size:
            raise KalmanFilterError(
                f"Localization-only state must have length {self._vehicle_size}, got {n}"
            )

    def reset(self) -> None:
        """回到仅有车辆段的初始状态"""
        v = self._vehicle_size
        self.x = np.zeros(v)
        self.P = np.zeros((v, v))
        self.landmark_ids.clear()

    def copy(self) -> 'FilterState':
        other = FilterState(self._vehicle_size, self._feature_size)
        other.x = self.x.copy()
        other.P = self.P.copy()
        for external_id in self.landmark_ids.ids():
            other.landmark_ids.add(external_id, self.landmark_ids.index_of(external_id))
        return other

    def _check_landmark_index(self, index: int) -> None:
        if not self.is_slam:
            raise KalmanFilterError("Localization-only filter (F = 0) has no landmarks")
        if index < 0 or index >= self.num_landmarks:
            raise KalmanFilterError(
                f"Landmark index {index} out of range [0, {self.num_landmarks})"
            )
