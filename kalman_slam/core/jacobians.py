"""
数值 Jacobian 工具

当协作方没有提供解析 Jacobian 时，使用中心差分估计:

    J[:, k] = (f(x + h_k e_k) - f(x - h_k e_k)) / (2 h_k)

每个分量的步长 h_k 由协作方提供（不同量纲的状态分量需要不同步长，
例如位置用 1e-4 m，角度用 1e-5 rad）。

开启交叉验证时，解析与数值 Jacobian 逐元素比较，
绝对差之和超过阈值即视为协作方的解析导数有误，抛出 JacobianMismatchError。
"""
import logging
from typing import Callable, Optional

import numpy as np

from .exceptions import JacobianMismatchError

logger = logging.getLogger(__name__)


def resolve_increments(override: Optional[np.ndarray], default, size: int,
                       name: str) -> np.ndarray:
    """
    确定数值 Jacobian 的步长

    配置覆盖优先于协作方提供的步长；长度为 1 的覆盖广播到全部分量。

    Raises:
        ValueError: 步长长度与 size 不符
    """
    increments = override if override is not None else default
    increments = np.atleast_1d(np.asarray(increments, dtype=float))
    if increments.shape[0] == 1 and size != 1:
        increments = np.full(size, increments[0])
    if increments.shape[0] != size:
        raise ValueError(f"{name}: expected {size} Jacobian increments, got {increments.shape[0]}")
    return increments


def estimate_jacobian(func: Callable[[np.ndarray], np.ndarray],
                      x: np.ndarray,
                      increments: np.ndarray,
                      subtract: Optional[Callable[[np.ndarray, np.ndarray], np.ndarray]] = None
                      ) -> np.ndarray:
    """
    中心差分估计 Jacobian

    Args:
        func: 被求导函数 f(x) -> y，输入输出均为一维数组
        x: 线性化点
        increments: 每个输入分量的差分步长，长度等于 len(x)
        subtract: 输出差 y+ ⊖ y-，默认普通减法（角度输出需要环绕）

    Returns:
        Jacobian 矩阵，形状 (len(y), len(x))

    Raises:
        ValueError: 步长长度不符或含非正值
    """
    x = np.asarray(x, dtype=float).reshape(-1)
    increments = np.asarray(increments, dtype=float).reshape(-1)
    n = x.shape[0]

    if increments.shape[0] != n:
        raise ValueError(f"Expected {n} Jacobian increments, got {increments.shape[0]}")
    if np.any(increments <= 0):
        raise ValueError(f"Jacobian increments must be positive, got {increments}")

    columns = []
    for k in range(n):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[k] += increments[k]
        x_minus[k] -= increments[k]
        y_plus = np.asarray(func(x_plus), dtype=float).reshape(-1)
        y_minus = np.asarray(func(x_minus), dtype=float).reshape(-1)
        if subtract is None:
            delta = y_plus - y_minus
        else:
            delta = np.asarray(subtract(y_plus, y_minus), dtype=float).reshape(-1)
        columns.append(delta / (2.0 * increments[k]))

    if not columns:
        # 零维输入 (例如 F = 0 时的 Hy)，输出维度由一次函数求值确定
        m = np.asarray(func(x), dtype=float).reshape(-1).shape[0]
        return np.zeros((m, 0))

    return np.column_stack(columns)


def jacobian_difference(numeric: np.ndarray, analytic: np.ndarray) -> float:
    """解析与数值 Jacobian 的元素绝对差之和"""
    return float(np.sum(np.abs(np.asarray(numeric) - np.asarray(analytic))))


def verify_jacobian(numeric: np.ndarray, analytic: np.ndarray,
                    threshold: float, name: str) -> None:
    """
    交叉验证解析 Jacobian

    Args:
        numeric: 有限差分估计
        analytic: 协作方提供的解析 Jacobian
        threshold: 元素绝对差之和的上限
        name: Jacobian 名称，用于诊断输出

    Raises:
        JacobianMismatchError: 形状不符或差异超过阈值
    """
    numeric = np.asarray(numeric, dtype=float)
    analytic = np.asarray(analytic, dtype=float)

    if numeric.shape != analytic.shape:
        raise JacobianMismatchError(
            f"User analytical {name} Jacobian has shape {analytic.shape}, "
            f"numeric estimate has shape {numeric.shape}",
            name=name, numeric=numeric, analytic=analytic,
        )

    diff = jacobian_difference(numeric, analytic)
    if diff > threshold:
        logger.error(
            f"User analytical {name} Jacobian is wrong (sum|diff|={diff:.6g} > {threshold:.6g}):\n"
            f" Numeric {name}:\n{numeric}\n Analytical {name}:\n{analytic}\n"
            f" Diff:\n{numeric - analytic}"
        )
        raise JacobianMismatchError(
            f"User analytical {name} Jacobian is wrong "
            f"(sum|diff|={diff:.6g} exceeds threshold {threshold:.6g})",
            name=name, numeric=numeric, analytic=analytic,
        )
