"""
参考模型与仿真数据 (仅用于测试与演示)

    from kalman_slam.mock import RangeBearingSLAMModel, RangeBearingSimulator

不应在生产代码中使用。
"""
from .linear_models import ScalarLocalizationModel, LinearSLAMModel, IdentityTransitionModel
from .range_bearing_slam import RangeBearingSLAMModel
from .test_data_generator import (
    RangeBearingSimulator,
    create_landmark_grid,
    create_random_landmarks,
    create_circle_controls,
)

__all__ = [
    'ScalarLocalizationModel',
    'LinearSLAMModel',
    'IdentityTransitionModel',
    'RangeBearingSLAMModel',
    'RangeBearingSimulator',
    'create_landmark_grid',
    'create_random_landmarks',
    'create_circle_controls',
]
