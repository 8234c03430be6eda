"""YAML 配置加载

配置文件只需要写出与默认值不同的键，其余从 DEFAULT_CONFIG 继承:

    # kf_params.yaml
    kf:
      method: ikf_full
      ikf_iterations: 3
      verify_analytic_jacobians: true
"""
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .default_config import DEFAULT_CONFIG, validate_config
from ..core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    递归合并配置，override 覆盖 base，返回新字典（不修改输入）
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Union[str, Path],
                base: Optional[Dict[str, Any]] = None,
                validate: bool = True) -> Dict[str, Any]:
    """
    从 YAML 文件加载配置并合并到默认配置之上

    Args:
        path: YAML 文件路径
        base: 基础配置，默认为 DEFAULT_CONFIG
        validate: 是否执行完整配置验证

    Returns:
        合并后的配置字典

    Raises:
        ConfigurationError: 文件不存在、解析失败或顶层不是映射
        ConfigValidationError: validate=True 且存在 FATAL/ERROR 级别问题
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping at top level, got {type(loaded).__name__}"
        )

    config = merge_config(base if base is not None else DEFAULT_CONFIG, loaded)
    if validate:
        validate_config(config, raise_on_error=True)

    logger.info(f"Loaded config from {path}")
    return config


def dump_config(config: Dict[str, Any], path: Union[str, Path]) -> None:
    """将配置写入 YAML 文件"""
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
