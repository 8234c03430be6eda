"""默认配置

DEFAULT_CONFIG 按子系统分节：
    kf           引擎参数 (kf_config.py)
    diagnostics  健康检查与日志限频 (diagnostics_config.py)

不要直接修改 DEFAULT_CONFIG，先 copy.deepcopy() 或使用 create_default_config()。
"""
from typing import Any, Dict, List

from .kf_config import KF_CONFIG, KF_VALIDATION_RULES
from .diagnostics_config import DIAGNOSTICS_CONFIG, DIAGNOSTICS_VALIDATION_RULES
from .validation import (
    ConfigValidationError,
    Issue,
    ValidationSeverity,
    get_config_value,
    validate_full_config,
)


DEFAULT_CONFIG: Dict[str, Any] = {
    'kf': dict(KF_CONFIG),
    'diagnostics': dict(DIAGNOSTICS_CONFIG),
}

CONFIG_VALIDATION_RULES: Dict[str, tuple] = {**KF_VALIDATION_RULES, **DIAGNOSTICS_VALIDATION_RULES}


def validate_config(config: Dict[str, Any], raise_on_error: bool = True) -> List[Issue]:
    """
    检查完整配置，返回 (key_path, message, severity) 列表

    Example:
        >>> config = copy.deepcopy(DEFAULT_CONFIG)
        >>> config['kf']['ikf_iterations'] = 0
        >>> [key for key, _, _ in validate_config(config, raise_on_error=False)]
        ['kf.ikf_iterations', 'kf.ikf_iterations']
    """
    return validate_full_config(config, CONFIG_VALIDATION_RULES, raise_on_error)


__all__ = [
    'DEFAULT_CONFIG',
    'KF_CONFIG',
    'DIAGNOSTICS_CONFIG',
    'CONFIG_VALIDATION_RULES',
    'validate_config',
    'get_config_value',
    'ConfigValidationError',
    'ValidationSeverity',
]
