"""
卡尔曼滤波 SLAM 引擎 (Kalman SLAM)

版本: v1.0.0

通用 EKF/IKF 状态估计引擎，宿主通过 IKalmanModel 提供具体的
车辆模型、传感器模型和数据关联，引擎负责联合状态与协方差的维护。

特性:
- 支持纯定位 (F = 0) 与 SLAM (F > 0) 两种模式
- 更新策略: EKF 完整矩阵、迭代 EKF、Davison 逐标量
- 解析 Jacobian 可选，缺失时自动使用中心差分，并可交叉验证
- 预测子集启发式：只对可能被观测的路标计算 Jacobian 与新息协方差

使用示例:
    from kalman_slam import KalmanFilterEngine, create_default_config
    from kalman_slam.mock import RangeBearingSLAMModel

    model = RangeBearingSLAMModel(max_range=8.0)
    engine = KalmanFilterEngine(model, create_default_config("balanced"))
    engine.run_one_iteration()
"""

__version__ = "1.0.0"
__author__ = "Kalman SLAM Team"

from .estimator.kalman_filter import KalmanFilterEngine
from .config import DEFAULT_CONFIG, KFOptions, create_default_config, load_config, validate_config
from .core.enums import KFMethod
from .core.data_types import (
    InverseObservation, ObservationBatch, PredictionCache, CycleInfo, FilterOutput,
)
from .core.interfaces import IKalmanModel, ILifecycleComponent, LifecycleState
from .core.state import FilterState, LandmarkIndex
from .core.constants import NEW_LANDMARK
from .core.exceptions import (
    KalmanFilterError, ConfigurationError, ConfigValidationError, UnsupportedMethodError,
    JacobianMismatchError, DataAssociationError, NumericalDegeneracyError,
)

__all__ = [
    # 版本
    '__version__',
    # 引擎
    'KalmanFilterEngine',
    # 配置
    'DEFAULT_CONFIG',
    'KFOptions',
    'create_default_config',
    'load_config',
    'validate_config',
    # 类型
    'KFMethod',
    'InverseObservation',
    'ObservationBatch',
    'PredictionCache',
    'CycleInfo',
    'FilterOutput',
    'FilterState',
    'LandmarkIndex',
    'NEW_LANDMARK',
    # 接口
    'IKalmanModel',
    'ILifecycleComponent',
    'LifecycleState',
    # 异常
    'KalmanFilterError',
    'ConfigurationError',
    'ConfigValidationError',
    'UnsupportedMethodError',
    'JacobianMismatchError',
    'DataAssociationError',
    'NumericalDegeneracyError',
]
