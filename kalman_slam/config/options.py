"""滤波引擎运行参数

KFOptions 是配置字典的类型化快照，引擎构造时读取一次。
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from .kf_config import KF_CONFIG
from .diagnostics_config import DIAGNOSTICS_CONFIG
from ..core.constants import DEFAULT_JACOBIAN_VERIFY_THRESHOLD
from ..core.enums import KFMethod
from ..core.exceptions import ConfigurationError


def _as_increments(value) -> Optional[np.ndarray]:
    """步长配置: None、正数标量（广播到各分量）或序列"""
    if value is None:
        return None
    array = np.atleast_1d(np.asarray(value, dtype=float))
    if array.ndim != 1 or np.any(array <= 0):
        raise ConfigurationError(f"Jacobian increments must be positive, got {value!r}")
    return array


@dataclass
class KFOptions:
    """卡尔曼滤波引擎参数"""
    method: KFMethod = KFMethod.EKF_NAIVE
    ikf_iterations: int = 5
    use_analytic_transition_jacobian: bool = True
    use_analytic_observation_jacobian: bool = True
    verify_analytic_jacobians: bool = False
    verify_jacobian_threshold: float = DEFAULT_JACOBIAN_VERIFY_THRESHOLD
    transition_jacobian_increment: Optional[np.ndarray] = None
    observation_jacobian_increment_vehicle: Optional[np.ndarray] = None
    observation_jacobian_increment_feature: Optional[np.ndarray] = None
    enable_profiler: bool = False
    log_cycle_summary: bool = True
    asymmetry_warning_interval: float = 5.0
    covariance_explosion_thresh: float = 1e6

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> 'KFOptions':
        """
        从配置字典构造

        接受完整配置 ({'kf': {...}, 'diagnostics': {...}}) 或仅 kf 节。
        缺失的键使用默认值。

        Raises:
            ConfigurationError: 更新策略无法识别或参数无效
        """
        config = config or {}
        kf_config = dict(KF_CONFIG)
        kf_config.update(config.get('kf', config))
        diag_config = dict(DIAGNOSTICS_CONFIG)
        diag_config.update(config.get('diagnostics', {}))

        try:
            method = KFMethod.from_value(kf_config['method'])
        except ValueError as e:
            raise ConfigurationError(f"Invalid update method: {e}") from e

        ikf_iterations = kf_config['ikf_iterations']
        if not isinstance(ikf_iterations, int) or isinstance(ikf_iterations, bool) or ikf_iterations < 1:
            raise ConfigurationError(f"ikf_iterations must be an integer >= 1, got {ikf_iterations!r}")

        threshold = kf_config['verify_jacobian_threshold']
        if threshold is None or threshold < 0:
            raise ConfigurationError(
                f"verify_jacobian_threshold must be a non-negative number, got {threshold!r}"
            )

        return cls(
            method=method,
            ikf_iterations=ikf_iterations,
            use_analytic_transition_jacobian=bool(kf_config['use_analytic_transition_jacobian']),
            use_analytic_observation_jacobian=bool(kf_config['use_analytic_observation_jacobian']),
            verify_analytic_jacobians=bool(kf_config['verify_analytic_jacobians']),
            verify_jacobian_threshold=float(threshold),
            transition_jacobian_increment=_as_increments(kf_config['transition_jacobian_increment']),
            observation_jacobian_increment_vehicle=_as_increments(
                kf_config['observation_jacobian_increment_vehicle']),
            observation_jacobian_increment_feature=_as_increments(
                kf_config['observation_jacobian_increment_feature']),
            enable_profiler=bool(kf_config['enable_profiler']),
            log_cycle_summary=bool(diag_config['log_cycle_summary']),
            asymmetry_warning_interval=float(diag_config['asymmetry_warning_interval']),
            covariance_explosion_thresh=float(diag_config['covariance_explosion_thresh']),
        )

    @property
    def num_update_iterations(self) -> int:
        """完整矩阵更新的迭代次数: EKF 为 1，IKF 为 ikf_iterations"""
        return self.ikf_iterations if self.method == KFMethod.IKF_FULL else 1
