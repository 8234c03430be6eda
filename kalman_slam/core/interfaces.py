"""接口定义"""
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from .constants import DEFAULT_JACOBIAN_INCREMENT
from .data_types import InverseObservation

# 类型检查时导入，避免循环导入
if TYPE_CHECKING:
    from .state import FilterState


class LifecycleState(Enum):
    """
    引擎生命周期

    UNINITIALIZED  构造或 reset() 之后，尚未完成迭代
    RUNNING        最近一次迭代正常完成
    ERROR          最近一次迭代抛出致命错误，状态不可信，需要 reset()
    """
    UNINITIALIZED = auto()
    RUNNING = auto()
    ERROR = auto()


class ILifecycleComponent(ABC):
    """可重置、可报告健康状态的组件"""

    @abstractmethod
    def reset(self) -> None:
        """回到构造后的状态，重复调用无副作用"""
        pass

    def get_health_status(self) -> Optional[Dict[str, Any]]:
        """
        返回 None 表示不提供健康检查；否则返回字典，包含
        'healthy' (bool)、'state' (str)、'message' (str)，以及可选的 'details'
        """
        return None


class IKalmanModel(ABC):
    """
    卡尔曼滤波协作方接口

    宿主实现车辆转移模型、传感器观测模型、数据关联和逆观测模型，
    并把实例传给 KalmanFilterEngine（组合，而非继承引擎）。

    维度:
    - vehicle_size (V): 车辆段长度，必须 > 0
    - feature_size (F): 每个路标段长度，0 表示纯定位
    - observation_size (O): 单个观测长度
    - action_size (A): 控制输入长度

    可选钩子返回 None 时引擎回退到数值 Jacobian:
    - transition_jacobian()
    - observation_jacobians()

    典型迭代中的调用顺序:
        1. get_control_input()
        2. transition_model() / transition_jacobian() / transition_noise()
        3. observation_noise() / observation_model() / pre_compute_prediction_subset()
        4. observation_jacobians()
        5. get_observations_and_associate()
        6. subtract_observations()
        7. normalize_state()
        8. inverse_observation_model() / on_new_landmark_inserted()
        9. on_post_iteration()
    """

    # ------------------------------------------------------------------
    # 维度
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def vehicle_size(self) -> int:
        pass

    @property
    @abstractmethod
    def observation_size(self) -> int:
        pass

    @property
    @abstractmethod
    def feature_size(self) -> int:
        pass

    @property
    @abstractmethod
    def action_size(self) -> int:
        pass

    # ------------------------------------------------------------------
    # 预测
    # ------------------------------------------------------------------

    @abstractmethod
    def get_control_input(self) -> np.ndarray:
        """返回本次迭代的控制输入 u (A,)"""
        pass

    @abstractmethod
    def transition_model(self, u: np.ndarray, xv: np.ndarray) -> Tuple[np.ndarray, bool]:
        """
        车辆转移模型

        Args:
            u: 控制输入 (A,)
            xv: 当前车辆状态 (V,)，只读副本

        Returns:
            (新车辆状态 (V,), skip_prediction)。skip_prediction 为 True 时
            引擎不做协方差预测，也不覆盖车辆段（用于首次迭代避免重复预测）
        """
        pass

    def transition_jacobian(self, u: np.ndarray, xv: np.ndarray) -> Optional[np.ndarray]:
        """
        转移模型对车辆状态的解析 Jacobian (V×V)

        默认返回 None，引擎使用数值估计。
        """
        return None

    def transition_jacobian_increments(self) -> np.ndarray:
        """数值估计转移 Jacobian 的每分量步长 (V,)"""
        return np.full(self.vehicle_size, DEFAULT_JACOBIAN_INCREMENT)

    @abstractmethod
    def transition_noise(self, u: np.ndarray, xv: np.ndarray) -> np.ndarray:
        """过程噪声协方差 Q (V×V)"""
        pass

    # ------------------------------------------------------------------
    # 观测
    # ------------------------------------------------------------------

    @abstractmethod
    def observation_model(self, indices: Sequence[int], state: 'FilterState') -> List[np.ndarray]:
        """
        预测观测

        Args:
            indices: 路标序号列表（纯定位滤波器为 [0]）
            state: 当前滤波状态，读取 state.x

        Returns:
            与 indices 等长的预测观测列表，每个元素 (O,)
        """
        pass

    def observation_jacobians(self, index: int,
                              state: 'FilterState') -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        观测对车辆和路标的解析 Jacobian

        Returns:
            (Hx (O×V), Hy (O×F))，或 None 表示使用数值估计
        """
        return None

    def observation_jacobian_increments(self) -> Tuple[np.ndarray, np.ndarray]:
        """数值估计观测 Jacobian 的步长: (车辆 (V,), 路标 (F,))"""
        return (np.full(self.vehicle_size, DEFAULT_JACOBIAN_INCREMENT),
                np.full(self.feature_size, DEFAULT_JACOBIAN_INCREMENT))

    @abstractmethod
    def observation_noise(self) -> np.ndarray:
        """传感器噪声协方差 R (O×O)"""
        pass

    def pre_compute_prediction_subset(self, predictions: List[np.ndarray],
                                      state: 'FilterState') -> List[int]:
        """
        选出值得计算 Jacobian 和协方差的路标子集

        Jacobian 与 S 的计算是主要开销，宿主可以按可见性或距离预筛选。
        默认返回全部路标。漏选被关联的路标时引擎会补齐并重试。
        """
        return list(range(len(predictions)))

    def subtract_observations(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """新息 a ⊖ b，需要角度环绕时覆盖此方法"""
        return np.asarray(a, dtype=float) - np.asarray(b, dtype=float)

    @abstractmethod
    def get_observations_and_associate(
        self,
        predictions: List[np.ndarray],
        S: np.ndarray,
        predicted_indices: List[int],
        R: np.ndarray,
    ) -> Tuple[List[np.ndarray], List[int]]:
        """
        获取真实观测并完成数据关联

        Args:
            predictions: 全部路标的预测观测
            S: 预测子集的新息协方差
            predicted_indices: 预测子集（S 的块顺序）
            R: 传感器噪声

        Returns:
            (观测列表, 关联映射)。关联映射与观测等长，
            元素为已有路标序号或 NEW_LANDMARK (-1)；纯定位可为空列表
        """
        pass

    # ------------------------------------------------------------------
    # 建图
    # ------------------------------------------------------------------

    def inverse_observation_model(self, z: np.ndarray, state: 'FilterState') -> InverseObservation:
        """
        逆观测模型：由观测初始化新路标

        SLAM 滤波器 (F > 0) 必须实现。
        """
        raise NotImplementedError(
            f"{type(self).__name__} must implement inverse_observation_model() to insert landmarks"
        )

    def on_new_landmark_inserted(self, observation_index: int,
                                 landmark_index: int) -> Optional[Hashable]:
        """
        新路标插入通知，在协方差计算之前调用

        Returns:
            新路标的外部 ID；返回 None 时引擎使用 landmark_index 作为 ID
        """
        return None

    # ------------------------------------------------------------------
    # 收尾
    # ------------------------------------------------------------------

    def normalize_state(self, state: 'FilterState') -> None:
        """状态归一化（例如角度环绕），只能修改 state.x"""
        pass

    def on_post_iteration(self, state: 'FilterState') -> None:
        """迭代结束钩子，供宿主记录"""
        pass
