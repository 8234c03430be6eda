"""
常量与角度工具

本模块不导入包内其他模块，状态、Jacobian 与模拟模型都可以直接引用。

    from kalman_slam.core.constants import NEW_LANDMARK, normalize_angle

    association = [0, NEW_LANDMARK, 2]
    theta = normalize_angle(theta + delta)
"""

import numpy as np


def normalize_angle(angle: float) -> float:
    """角度折回 [-π, π]，也接受 ndarray"""
    return np.arctan2(np.sin(angle), np.cos(angle))


def angle_difference(angle1: float, angle2: float) -> float:
    """angle1 - angle2，折回 [-π, π]"""
    return normalize_angle(angle1 - angle2)


# =============================================================================
# 数值容差
# =============================================================================
# 通用小量
EPSILON = 1e-6

# 极小量，用于除零保护
EPSILON_SMALL = 1e-12

# 协方差对称性容差 (相对于 max(1, max|P|))
# 超过此值视为对称性缺陷，需要修正并记录警告
SYMMETRY_TOLERANCE = 1e-9

# 数值 Jacobian 默认步长 (每个分量)
DEFAULT_JACOBIAN_INCREMENT = 1e-6

# 解析/数值 Jacobian 交叉验证默认阈值 (元素绝对差之和)
DEFAULT_JACOBIAN_VERIFY_THRESHOLD = 1e-2


# =============================================================================
# 数据关联
# =============================================================================

# 关联映射中的"新路标"标记
NEW_LANDMARK = -1
