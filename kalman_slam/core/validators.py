"""
协作方返回数据的检查

is_* / has_* 返回布尔值；require_* 在不满足时抛出 KalmanFilterError，
消息包含来源名称与期望形状。

    Q = require_shape(model.transition_noise(u, xv), (V, V), 'transition_noise')
"""

import numpy as np
from typing import Tuple

from .constants import EPSILON_SMALL
from .exceptions import KalmanFilterError


def is_square(matrix: np.ndarray) -> bool:
    return matrix.ndim == 2 and matrix.shape[0] == matrix.shape[1]


def symmetry_error(matrix: np.ndarray) -> float:
    """max|M - M^T|，空矩阵为 0"""
    if matrix.size == 0:
        return 0.0
    return float(np.max(np.abs(matrix - matrix.T)))


def is_diagonal(matrix: np.ndarray, tol: float = 0.0) -> bool:
    """
    方阵的非对角元素是否全部在容差内为零

    Davison 逐标量更新要求观测噪声各分量相互独立。
    """
    if not is_square(matrix):
        return False
    off_diagonal = matrix - np.diag(np.diag(matrix))
    return bool(np.all(np.abs(off_diagonal) <= tol))


def has_nonnegative_diagonal(matrix: np.ndarray) -> bool:
    return bool(np.all(np.diag(matrix) >= -EPSILON_SMALL))


def require_shape(value, shape: Tuple[int, ...], name: str) -> np.ndarray:
    """
    将协作方返回值转换为 float 数组并检查形状

    Args:
        value: 协作方返回的数组或嵌套序列
        shape: 期望形状
        name: 来源名称，用于错误消息

    Raises:
        KalmanFilterError: 形状不符
    """
    array = np.asarray(value, dtype=float)
    if array.shape != tuple(shape):
        # 一维向量允许以 (n, 1) 或 (1, n) 形式返回
        if len(shape) == 1 and array.size == shape[0] and array.ndim == 2 and 1 in array.shape:
            return array.reshape(shape)
        raise KalmanFilterError(
            f"{name} returned shape {array.shape}, expected {tuple(shape)}"
        )
    return array
