"""
测试辅助函数

    from kalman_slam.tests.fixtures import make_config, make_linear_state
"""
import copy
from typing import Optional

import numpy as np

from ..config.default_config import DEFAULT_CONFIG
from ..core.state import FilterState


def make_config(**kf_overrides) -> dict:
    """DEFAULT_CONFIG 的深拷贝，并覆盖 kf 节中的若干键"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config['kf'].update(kf_overrides)
    return config


def random_spd(n: int, seed: Optional[int] = 0, scale: float = 0.1) -> np.ndarray:
    """随机对称正定矩阵"""
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(n, n))
    M = scale * (A @ A.T) + scale * np.eye(n)
    return 0.5 * (M + M.T)


def make_linear_state(num_landmarks: int = 3, vehicle_size: int = 2, feature_size: int = 2,
                      seed: Optional[int] = 0) -> FilterState:
    """带若干路标与随机正定协方差的状态"""
    rng = np.random.default_rng(seed)
    state = FilterState(vehicle_size, feature_size)
    state.set_vehicle(rng.normal(size=vehicle_size))
    for _ in range(num_landmarks):
        state.append_landmark(rng.normal(scale=5.0, size=feature_size))
    state.P = random_spd(state.size, seed)
    for i in range(num_landmarks):
        state.landmark_ids.add(i, i)
    return state
