"""
自定义异常类

本模块定义了卡尔曼滤波引擎使用的自定义异常类。

异常层次结构:
=============

KalmanFilterError (基类)
├── ConfigurationError
│   ├── ConfigValidationError
│   └── UnsupportedMethodError
├── JacobianMismatchError
├── DataAssociationError
└── NumericalDegeneracyError

使用指南:
=========

1. 配置错误 (ConfigurationError)
   - 在引擎构造或首次使用时抛出
   - 不应重试，必须修正配置
   - 示例：无效的更新策略、Davison 模式下观测噪声非对角

2. Jacobian 不一致 (JacobianMismatchError)
   - 解析 Jacobian 与数值 Jacobian 差异超过阈值
   - 说明协作方提供的解析导数有误
   - 异常对象携带两个矩阵以便诊断

3. 数据关联错误 (DataAssociationError)
   - 关联结果长度不一致、关联到不存在的路标
   - 预测子集启发式无法收敛

4. 数值退化 (NumericalDegeneracyError)
   - 标量更新后协方差对角线出现负方差
   - 估计已失去意义

注意:
=====

- 预测子集启发式遗漏路标属于可恢复情况，引擎自行重试并记录性能警告，不抛出异常
- 所有致命错误都会中止当前迭代，状态不可回滚，宿主需要 reset() 或丢弃滤波器
"""
from typing import Optional

import numpy as np


class KalmanFilterError(Exception):
    """卡尔曼滤波引擎错误基类"""
    pass


# =============================================================================
# 配置错误
# =============================================================================

class ConfigurationError(KalmanFilterError):
    """配置错误基类"""
    pass


class ConfigValidationError(ConfigurationError):
    """
    配置验证错误

    当配置参数不满足验证规则时抛出。

    Attributes:
        errors: 错误列表，每个元素为 (key_path, error_message)
    """

    def __init__(self, message: str, errors: list = None):
        super().__init__(message)
        self.errors = errors or []


class UnsupportedMethodError(ConfigurationError, NotImplementedError):
    """
    更新策略未实现

    选择了保留但尚未实现的更新策略（逐标量 IKF）时抛出。
    """
    pass


# =============================================================================
# 运行时致命错误
# =============================================================================

class JacobianMismatchError(KalmanFilterError):
    """
    解析 Jacobian 与数值 Jacobian 不一致

    Attributes:
        name: Jacobian 名称，如 'dfv_dxv', 'dh_dxv', 'dh_dxl'
        numeric: 有限差分估计的 Jacobian
        analytic: 协作方提供的解析 Jacobian
    """

    def __init__(self, message: str, name: str = '',
                 numeric: Optional[np.ndarray] = None,
                 analytic: Optional[np.ndarray] = None):
        super().__init__(message)
        self.name = name
        self.numeric = numeric
        self.analytic = analytic


class DataAssociationError(KalmanFilterError):
    """
    数据关联错误

    关联映射长度与观测数量不一致、关联到不存在的路标，
    或者预测子集重试次数超过上限时抛出。
    """
    pass


class NumericalDegeneracyError(KalmanFilterError):
    """
    数值退化错误

    协方差矩阵对角线出现负方差时抛出。
    """
    pass


# =============================================================================
# 导出列表
# =============================================================================

__all__ = [
    'KalmanFilterError',
    'ConfigurationError',
    'ConfigValidationError',
    'UnsupportedMethodError',
    'JacobianMismatchError',
    'DataAssociationError',
    'NumericalDegeneracyError',
]
