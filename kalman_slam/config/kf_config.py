"""卡尔曼滤波配置

滤波引擎的配置参数：
- 更新策略
- IKF 迭代次数
- 解析 / 数值 Jacobian 选择与交叉验证
- 数值 Jacobian 步长
- 性能分析
"""
from ..core.constants import DEFAULT_JACOBIAN_VERIFY_THRESHOLD

KF_CONFIG = {
    # 更新策略: 'ekf_naive', 'ikf_full', 'ekf_davison', 'ikf_scalar' (未实现)
    'method': 'ekf_naive',
    'ikf_iterations': 5,                          # IKF 迭代次数 (仅 ikf_full)

    # Jacobian 选择
    'use_analytic_transition_jacobian': True,     # 优先使用协作方的解析转移 Jacobian
    'use_analytic_observation_jacobian': True,    # 优先使用协作方的解析观测 Jacobian

    # 交叉验证: 同时计算解析与数值 Jacobian 并比较
    'verify_analytic_jacobians': False,
    'verify_jacobian_threshold': DEFAULT_JACOBIAN_VERIFY_THRESHOLD,  # 元素绝对差之和上限

    # 数值 Jacobian 步长覆盖 (None 表示使用协作方提供的步长)
    'transition_jacobian_increment': None,
    'observation_jacobian_increment_vehicle': None,
    'observation_jacobian_increment_feature': None,

    # 性能分析
    'enable_profiler': False,
}

# 卡尔曼滤波配置验证规则
KF_VALIDATION_RULES = {
    'kf.ikf_iterations': (1, 1000, 'IKF 迭代次数'),
    'kf.verify_jacobian_threshold': (0.0, None, 'Jacobian 交叉验证阈值'),
}
