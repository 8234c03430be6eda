"""
数据类型定义

本模块定义了滤波引擎与协作方之间交换的数据类型。

生命周期:
   - PredictionCache: 单次迭代内有效，迭代结束后丢弃
   - ObservationBatch: 单次迭代内有效
   - InverseObservation: 每个新路标一次
   - CycleInfo / FilterOutput: 迭代结束后提供给宿主的只读快照

数据流:
   观测模型 → PredictionCache (预测 + Hx/Hy + S) → 数据关联 → ObservationBatch
   → 更新阶段 → 路标插入 (InverseObservation) → CycleInfo
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional

import numpy as np

from .constants import NEW_LANDMARK


@dataclass
class InverseObservation:
    """
    逆观测模型结果

    Attributes:
        mean: 新路标均值 (F,)
        dyn_dxv: 新路标对车辆状态的 Jacobian (F×V)
        dyn_dhn: 新路标对原始观测的 Jacobian (F×O)
        noise_term: 可选的预组合观测噪声项 dyn_dhn·R·dyn_dhn^T (F×F)。
            提供时直接使用，不再用 dyn_dhn 和 R 计算
    """
    mean: np.ndarray
    dyn_dxv: np.ndarray
    dyn_dhn: Optional[np.ndarray] = None
    noise_term: Optional[np.ndarray] = None

    def uses_observation_jacobian(self) -> bool:
        return self.noise_term is None


@dataclass
class ObservationBatch:
    """
    本次迭代的观测与数据关联结果

    Attributes:
        observations: 观测列表，每个元素形状 (O,)
        association: 与 observations 等长的关联映射，
            元素为已有路标序号或 NEW_LANDMARK (-1)。
            纯定位滤波器可以为空列表
    """
    observations: List[np.ndarray] = field(default_factory=list)
    association: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.observations)

    def is_empty(self) -> bool:
        return len(self.observations) == 0

    def associated_pairs(self) -> List[tuple]:
        """(观测序号, 路标序号) 列表，仅包含已关联到已有路标的观测"""
        return [(i, lm) for i, lm in enumerate(self.association) if lm != NEW_LANDMARK and lm >= 0]

    def new_landmark_observations(self) -> List[int]:
        """被标记为新路标的观测序号"""
        return [i for i, lm in enumerate(self.association) if lm < 0]


@dataclass
class PredictionCache:
    """
    单次迭代的预测缓存

    Attributes:
        all_predictions: 所有路标的预测观测 (纯定位为单个预测)
        predicted_indices: 选中计算 Jacobian 的路标序号列表（顺序即 S 的块顺序）
        Hx: 与 predicted_indices 对齐的观测对车辆 Jacobian 列表 (O×V)
        Hy: 与 predicted_indices 对齐的观测对路标 Jacobian 列表 (O×F)
        S: 新息协方差 (len(predicted_indices)·O)²
    """
    all_predictions: List[np.ndarray] = field(default_factory=list)
    predicted_indices: List[int] = field(default_factory=list)
    Hx: List[np.ndarray] = field(default_factory=list)
    Hy: List[np.ndarray] = field(default_factory=list)
    S: Optional[np.ndarray] = None

    def position_of(self, landmark_index: int) -> Optional[int]:
        """路标在预测子集中的位置，不在子集中返回 None"""
        try:
            return self.predicted_indices.index(landmark_index)
        except ValueError:
            return None

    @property
    def num_predicted(self) -> int:
        return len(self.predicted_indices)


@dataclass
class CycleInfo:
    """
    单次迭代的摘要

    Attributes:
        cycle: 迭代序号（从 1 开始）
        prediction_skipped: 转移模型请求跳过协方差预测
        predicted_indices: 最终的预测子集
        association: 数据关联映射
        num_observations: 观测数量
        association_retries: 预测子集启发式失败导致的重试次数
        inserted_landmarks: 本次插入的路标序号
        timings: 各阶段耗时 (秒)
    """
    cycle: int = 0
    prediction_skipped: bool = False
    predicted_indices: List[int] = field(default_factory=list)
    association: List[int] = field(default_factory=list)
    num_observations: int = 0
    association_retries: int = 0
    inserted_landmarks: List[int] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)


@dataclass
class FilterOutput:
    """
    滤波器状态快照（深拷贝，修改不影响滤波器）

    Attributes:
        state: 完整状态向量
        covariance: 完整协方差矩阵
        vehicle_state: 车辆段均值
        vehicle_covariance: 车辆段协方差
        num_landmarks: 路标数量
        landmark_ids: 按序号排列的外部 ID
        cycle: 已完成的迭代次数
    """
    state: np.ndarray
    covariance: np.ndarray
    vehicle_state: np.ndarray
    vehicle_covariance: np.ndarray
    num_landmarks: int = 0
    landmark_ids: List[Hashable] = field(default_factory=list)
    cycle: int = 0
    extras: Dict[str, Any] = field(default_factory=dict)
