"""配置检查

每条检查产出 (key_path, message, severity) 三元组：

- FATAL: 引擎无法以该配置运行（未知或未实现的更新策略、非法迭代次数）
- ERROR: 参数取值非法，默认拒绝
- WARNING: 参数合法但不会生效或可能不是本意，只记录日志

数值范围由各配置子模块的 *_VALIDATION_RULES 声明，格式为
{key_path: (min, max, description)}，min/max 为 None 表示不限。
"""
import logging
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from ..core.enums import KFMethod
from ..core.exceptions import ConfigValidationError
from .diagnostics_config import DIAGNOSTICS_CONFIG
from .kf_config import KF_CONFIG

logger = logging.getLogger(__name__)


class ValidationSeverity(Enum):
    FATAL = 'fatal'
    ERROR = 'error'
    WARNING = 'warning'


Issue = Tuple[str, str, ValidationSeverity]

_MISSING = object()

_BOOL_FLAGS = (
    'kf.use_analytic_transition_jacobian',
    'kf.use_analytic_observation_jacobian',
    'kf.verify_analytic_jacobians',
    'kf.enable_profiler',
)

_INCREMENT_KEYS = (
    'kf.transition_jacobian_increment',
    'kf.observation_jacobian_increment_vehicle',
    'kf.observation_jacobian_increment_feature',
)


def get_config_value(
    config: Dict[str, Any],
    key_path: str,
    default: Any = None,
    fallback_config: Optional[Dict[str, Any]] = None
) -> Any:
    """
    按点分隔路径取值，如 'kf.method'

    路径在 config 中不存在时依次查 fallback_config，最后返回 default。

    Example:
        >>> get_config_value({'kf': {'ikf_iterations': 3}}, 'kf.ikf_iterations')
        3
    """
    for source in (config, fallback_config):
        if source is None:
            continue
        node = source
        for part in key_path.split('.'):
            node = node.get(part, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING:
                break
        if node is not _MISSING:
            return node
    return default


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_ranges(config: Dict[str, Any], rules: Dict[str, Tuple]) -> List[Issue]:
    """按规则检查数值类型与上下限，未配置的键跳过"""
    issues = []
    for key_path, (lower, upper, description) in rules.items():
        value = get_config_value(config, key_path)
        if value is None:
            continue
        if not _is_number(value):
            message = f'{description} 应为数值，实际为 {type(value).__name__}'
        elif lower is not None and value < lower:
            message = f'{description} = {value} 低于下限 {lower}'
        elif upper is not None and value > upper:
            message = f'{description} = {value} 超过上限 {upper}'
        else:
            continue
        issues.append((key_path, message, ValidationSeverity.ERROR))
    return issues


def _check_method(config: Dict[str, Any]) -> Iterator[Issue]:
    raw = get_config_value(config, 'kf.method')
    if raw is None:
        return
    try:
        method = KFMethod.from_value(raw)
    except ValueError:
        choices = ', '.join(m.name.lower() for m in KFMethod)
        yield ('kf.method', f'未知的更新策略 {raw!r}，可选: {choices}', ValidationSeverity.FATAL)
        return
    if method is KFMethod.IKF_SCALAR:
        yield ('kf.method', 'ikf_scalar 尚未实现', ValidationSeverity.FATAL)


def _check_iterations(config: Dict[str, Any]) -> Iterator[Issue]:
    iterations = get_config_value(config, 'kf.ikf_iterations')
    if iterations is None:
        return
    if not _is_int(iterations):
        yield ('kf.ikf_iterations', f'IKF 迭代次数应为整数，实际为 {type(iterations).__name__}',
               ValidationSeverity.FATAL)
        return
    if iterations < 1:
        yield ('kf.ikf_iterations', f'IKF 迭代次数 {iterations} 小于 1', ValidationSeverity.FATAL)
        return

    # 只有 ikf_full 使用迭代次数
    try:
        method = KFMethod.from_value(get_config_value(config, 'kf.method', KFMethod.EKF_NAIVE))
    except ValueError:
        return
    if method is not KFMethod.IKF_FULL and iterations != KF_CONFIG['ikf_iterations']:
        yield ('kf.ikf_iterations',
               f'{method.name.lower()} 不迭代，ikf_iterations={iterations} 被忽略',
               ValidationSeverity.WARNING)


def _check_jacobian_options(config: Dict[str, Any]) -> Iterator[Issue]:
    for key in _BOOL_FLAGS:
        value = get_config_value(config, key)
        if value is not None and not isinstance(value, bool):
            yield (key, f'应为 true/false，实际为 {type(value).__name__}', ValidationSeverity.ERROR)

    for key in _INCREMENT_KEYS:
        value = get_config_value(config, key)
        if value is None:
            continue
        if _is_number(value):
            valid = value > 0
        else:
            try:
                steps = np.asarray(value, dtype=float)
            except (TypeError, ValueError):
                valid = False
            else:
                valid = steps.ndim == 1 and steps.size > 0 and bool(np.all(steps > 0))
        if not valid:
            yield (key, f'差分步长 {value!r} 应为正数或正数列表', ValidationSeverity.ERROR)

    if get_config_value(config, 'kf.verify_analytic_jacobians') is not True:
        return
    if get_config_value(config, 'kf.verify_jacobian_threshold') is None:
        yield ('kf.verify_jacobian_threshold', '开启交叉验证时需要阈值', ValidationSeverity.ERROR)
    if (get_config_value(config, 'kf.use_analytic_transition_jacobian') is False
            and get_config_value(config, 'kf.use_analytic_observation_jacobian') is False):
        yield ('kf.verify_analytic_jacobians',
               '两个解析 Jacobian 开关都已关闭，交叉验证仍会调用模型的解析 Jacobian',
               ValidationSeverity.WARNING)


def _check_unknown_keys(config: Dict[str, Any]) -> Iterator[Issue]:
    # 拼写错误的键会被默认值静默替代
    for section, known in (('kf', KF_CONFIG), ('diagnostics', DIAGNOSTICS_CONFIG)):
        values = config.get(section)
        if not isinstance(values, dict):
            continue
        for key in values:
            if key not in known:
                yield (f'{section}.{key}', '未知参数，将被忽略', ValidationSeverity.WARNING)


CONSISTENCY_CHECKS = (_check_method, _check_iterations, _check_jacobian_options, _check_unknown_keys)


def validate_logical_consistency(config: Dict[str, Any]) -> List[Issue]:
    """参数之间的一致性检查"""
    issues = []
    for check in CONSISTENCY_CHECKS:
        issues.extend(check(config))
    return issues


def validate_full_config(
    config: Dict[str, Any],
    validation_rules: Dict[str, Tuple],
    raise_on_error: bool = True,
) -> List[Issue]:
    """
    范围检查加一致性检查

    WARNING 只写日志。raise_on_error=True 时，存在 FATAL 则只报告 FATAL，
    否则存在 ERROR 时报告 ERROR，异常的 errors 为 (key_path, message) 列表。

    Raises:
        ConfigValidationError
    """
    issues = check_ranges(config, validation_rules) + validate_logical_consistency(config)

    for key, message, severity in issues:
        if severity is ValidationSeverity.WARNING:
            logger.warning(f"Config warning [{key}]: {message}")

    if raise_on_error:
        for severity in (ValidationSeverity.FATAL, ValidationSeverity.ERROR):
            blocking = [(key, message) for key, message, s in issues if s is severity]
            if blocking:
                lines = '\n'.join(f'  - [{severity.name}] {key}: {message}' for key, message in blocking)
                raise ConfigValidationError(f'配置检查未通过:\n{lines}', blocking)

    return issues
