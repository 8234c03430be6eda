"""
日志配置

各模块统一使用 logging.getLogger(__name__)，由入口脚本调用 configure_logging()
配置输出。库代码本身不添加 handler。

级别约定:
    DEBUG    每次迭代的摘要 "[KF] #n ..."（路标数量、各阶段耗时）
    INFO     生命周期事件：重置、新路标插入
    WARNING  "*Performance Warning*"、协方差对称性修正、协方差过大
    ERROR    致命错误前的诊断输出（Jacobian 对比、协方差对角线）

迭代循环内每次都可能触发的警告通过 ThrottledLogger 限频。
"""
import logging
import sys
import time
from typing import Dict, Optional, Union

LOG_FORMAT = '[%(name)s] %(levelname)s: %(message)s'


def configure_logging(level: Union[int, str] = logging.INFO,
                      format_str: str = LOG_FORMAT) -> None:
    """配置根日志器输出到 stdout，level 可以是 'debug' 这样的级别名"""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")
    logging.basicConfig(level=level, format=format_str,
                        handlers=[logging.StreamHandler(sys.stdout)])


class ThrottledLogger:
    """
    按 key 限频的日志包装

    同一 key 在 min_interval 秒内只输出第一条，其余计入抑制计数，
    下一次放行时在消息末尾附上被抑制的条数。key=None 的消息不限频，
    min_interval <= 0 时等同于普通日志器。

    Example:
        throttled = ThrottledLogger(logger, min_interval=5.0)
        throttled.warning("[KF] Covariance asymmetry ...", key="asym_update")
    """

    def __init__(self, logger: logging.Logger, min_interval: float = 1.0):
        self._logger = logger
        self._min_interval = min_interval
        # key -> 上次放行时刻
        self._emitted_at: Dict[str, float] = {}
        # key -> 放行后被抑制的条数
        self._suppressed: Dict[str, int] = {}

    def log(self, level: int, msg: str, key: Optional[str] = None) -> bool:
        """按级别记录，返回本条是否被放行"""
        if key is None or self._min_interval <= 0:
            self._logger.log(level, msg)
            return True

        now = time.monotonic()
        last = self._emitted_at.get(key)
        if last is not None and now - last < self._min_interval:
            self._suppressed[key] = self._suppressed.get(key, 0) + 1
            return False

        skipped = self._suppressed.pop(key, 0)
        if skipped:
            msg = f"{msg} ({skipped} similar messages suppressed)"
        self._emitted_at[key] = now
        self._logger.log(level, msg)
        return True

    def debug(self, msg: str, key: Optional[str] = None) -> bool:
        return self.log(logging.DEBUG, msg, key)

    def info(self, msg: str, key: Optional[str] = None) -> bool:
        return self.log(logging.INFO, msg, key)

    def warning(self, msg: str, key: Optional[str] = None) -> bool:
        return self.log(logging.WARNING, msg, key)

    def error(self, msg: str, key: Optional[str] = None) -> bool:
        return self.log(logging.ERROR, msg, key)

    def suppressed_count(self, key: str) -> int:
        """自上次放行以来被抑制的条数"""
        return self._suppressed.get(key, 0)

    def reset(self) -> None:
        self._emitted_at.clear()
        self._suppressed.clear()
