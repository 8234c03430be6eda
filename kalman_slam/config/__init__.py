"""配置模块

提供统一的配置接口，支持：
- 默认配置 (DEFAULT_CONFIG)
- 配置验证 (validate_config)
- YAML 加载 (load_config)
- 预设 (create_default_config)

配置文件结构:
- kf_config.py: 卡尔曼滤波引擎配置
- diagnostics_config.py: 日志与健康检查配置
- validation.py: 配置验证逻辑
- options.py: 引擎使用的类型化参数
- loader.py: YAML 加载与合并

使用示例:
    from kalman_slam.config import DEFAULT_CONFIG, validate_config

    config = copy.deepcopy(DEFAULT_CONFIG)
    config['kf']['method'] = 'ikf_full'
    errors = validate_config(config, raise_on_error=False)
"""

from .default_config import (
    DEFAULT_CONFIG,
    KF_CONFIG,
    DIAGNOSTICS_CONFIG,
    CONFIG_VALIDATION_RULES,
    validate_config,
    get_config_value,
    ConfigValidationError,
    ValidationSeverity,
)
from .options import KFOptions
from .loader import load_config, merge_config, dump_config
from .profiles import create_default_config

__all__ = [
    'DEFAULT_CONFIG',
    'KF_CONFIG',
    'DIAGNOSTICS_CONFIG',
    'CONFIG_VALIDATION_RULES',
    'validate_config',
    'get_config_value',
    'ConfigValidationError',
    'ValidationSeverity',
    'KFOptions',
    'load_config',
    'merge_config',
    'dump_config',
    'create_default_config',
]
