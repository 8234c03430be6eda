"""
阶段耗时统计

按阶段名称记录每次迭代各阶段的耗时:

    profiler = StageProfiler(enabled=True)
    with profiler.stage('predict'):
        ...
    profiler.get_stats()['predict']['mean']

禁用时 leave() 仍返回耗时，并记入本次迭代的耗时表 (get_last_timings)，
但不累计统计。
"""
import time
from contextlib import contextmanager
from typing import Dict, Iterator


class StageStats:
    """单个阶段的累计统计"""

    __slots__ = ('count', 'total', 'max', 'last')

    def __init__(self):
        self.count = 0
        self.total = 0.0
        self.max = 0.0
        self.last = 0.0

    def add(self, elapsed: float) -> None:
        self.count += 1
        self.total += elapsed
        self.last = elapsed
        if elapsed > self.max:
            self.max = elapsed

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            'count': self.count,
            'total': self.total,
            'mean': self.mean,
            'max': self.max,
            'last': self.last,
        }


class StageProfiler:
    """
    阶段计时器

    enter()/leave() 必须成对调用，同名阶段不可嵌套。
    """

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._open: Dict[str, float] = {}
        self._stats: Dict[str, StageStats] = {}
        self._last: Dict[str, float] = {}

    def enter(self, name: str) -> None:
        self._open[name] = time.perf_counter()

    def leave(self, name: str) -> float:
        """
        结束阶段计时

        Returns:
            阶段耗时 (秒)

        Raises:
            KeyError: 阶段未 enter
        """
        start = self._open.pop(name)
        elapsed = time.perf_counter() - start
        self._last[name] = self._last.get(name, 0.0) + elapsed
        if self.enabled:
            self._stats.setdefault(name, StageStats()).add(elapsed)
        return elapsed

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        self.enter(name)
        try:
            yield
        finally:
            self.leave(name)

    def begin_cycle(self) -> None:
        """开始新的迭代，清空本次迭代的耗时表"""
        self._last = {}

    def get_last_timings(self) -> Dict[str, float]:
        """本次迭代各阶段耗时 (秒)，同名阶段多次进入时累加"""
        return dict(self._last)

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        return {name: stats.to_dict() for name, stats in self._stats.items()}

    def get_mean_time(self, name: str) -> float:
        stats = self._stats.get(name)
        return stats.mean if stats else 0.0

    def clear(self) -> None:
        self._open.clear()
        self._stats.clear()
        self._last = {}
