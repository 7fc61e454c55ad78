"""指标存储模块

进程内的有界时间序列缓冲区。每个指标名对应一个独立序列，
同时受条数上限和保留时长约束，写入时顺带淘汰最旧的数据。
"""

import fnmatch
import threading
import time
from collections import deque, defaultdict
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Callable, Deque

from ..models.metric import Metric, MetricUnit, PerformanceRecord
from ..utils.log_manager import get_logger

Clock = Callable[[], datetime]

PERFORMANCE_PREFIX = 'performance.'
COUNTER_PREFIX = 'counter.'
GAUGE_PREFIX = 'gauge.'
HISTOGRAM_PREFIX = 'histogram.'


def matches_selector(name: str, selector: str) -> bool:
    """指标名是否匹配选择器（精确名称或 shell 风格通配符）"""
    if name == selector:
        return True
    if any(ch in selector for ch in '*?['):
        return fnmatch.fnmatchcase(name, selector)
    return False


class MetricStore:
    """
    指标存储

    record 可以被任意线程并发调用，读取方永远不会看到写了一半的条目。
    """

    def __init__(self,
                 max_per_series: int = 1000,
                 retention: timedelta = timedelta(hours=24),
                 summary_window: timedelta = timedelta(hours=1),
                 default_tags: Optional[Dict[str, str]] = None,
                 slow_operation_ms: float = 1000.0,
                 clock: Optional[Clock] = None):
        """
        初始化指标存储

        Args:
            max_per_series: 每个序列最多保留的条数
            retention: 最长保留时间
            summary_window: summary() 统计的时间窗口
            default_tags: 合并进每条指标的默认标签
            slow_operation_ms: 慢操作告警阈值（毫秒）
            clock: 时间源，默认 datetime.now
        """
        if max_per_series <= 0:
            raise ValueError("max_per_series 必须是正整数")

        self.max_per_series = max_per_series
        self.retention = retention
        self.summary_window = summary_window
        self.default_tags = dict(default_tags or {})
        self.slow_operation_ms = slow_operation_ms
        self._clock = clock or datetime.now

        self._series: Dict[str, Deque[Metric]] = {}
        self._performance: Dict[str, Deque[PerformanceRecord]] = {}
        self._lock = threading.Lock()
        self._dropped_records = 0
        self.logger = get_logger('metric_store')

    @classmethod
    def from_config(cls, config: Dict[str, Any], clock: Optional[Clock] = None) -> 'MetricStore':
        """
        根据 metrics 配置段创建存储

        Args:
            config: metrics 配置段
            clock: 时间源

        Returns:
            MetricStore: 存储实例
        """
        return cls(
            max_per_series=config.get('max_per_series', 1000),
            retention=timedelta(hours=config.get('retention_hours', 24)),
            summary_window=timedelta(minutes=config.get('summary_window_minutes', 60)),
            default_tags=config.get('default_tags'),
            slow_operation_ms=config.get('slow_operation_ms', 1000.0),
            clock=clock
        )

    def now(self) -> datetime:
        return self._clock()

    def record(self, name: str, value: float, unit: Any = MetricUnit.COUNT,
               tags: Optional[Dict[str, str]] = None) -> None:
        """
        追加一条指标，时间戳取当前时刻

        任何异常都只记录日志，不会抛给调用方。

        Args:
            name: 指标名
            value: 指标值
            unit: 单位，MetricUnit 或其字符串值
            tags: 附加标签
        """
        try:
            metric_unit = unit if isinstance(unit, MetricUnit) else MetricUnit(unit)
            merged_tags = dict(self.default_tags)
            if tags:
                merged_tags.update({str(k): str(v) for k, v in tags.items()})

            now = self._clock()
            metric = Metric(name=name, value=float(value), unit=metric_unit,
                            timestamp=now, tags=merged_tags)

            with self._lock:
                series = self._series.get(name)
                if series is None:
                    series = deque(maxlen=self.max_per_series)
                    self._series[name] = series
                series.append(metric)
                self._evict_expired(series, now - self.retention)
        except Exception as e:
            self._dropped_records += 1
            self.logger.warning(f"记录指标失败: {name}={value}: {e}")

    def record_performance(self, operation: str, duration: float, success: bool = True,
                           metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        记录一次操作耗时，同时写入 performance.<operation> 指标

        Args:
            operation: 操作名
            duration: 耗时（毫秒）
            success: 操作是否成功
            metadata: 附加信息
        """
        try:
            now = self._clock()
            record = PerformanceRecord(operation=operation, duration=float(duration),
                                       timestamp=now, success=success,
                                       metadata=dict(metadata or {}))
            with self._lock:
                records = self._performance.get(operation)
                if records is None:
                    records = deque(maxlen=self.max_per_series)
                    self._performance[operation] = records
                records.append(record)
                self._evict_expired(records, now - self.retention)
        except Exception as e:
            self._dropped_records += 1
            self.logger.warning(f"记录性能数据失败: {operation}: {e}")
            return

        self.record(f"{PERFORMANCE_PREFIX}{operation}", duration, MetricUnit.MS,
                    {'success': str(success).lower()})

        if duration > self.slow_operation_ms:
            self.logger.warning(f"检测到慢操作: {operation} 耗时 {duration:.2f}ms",
                                extra={'context': {'operation': operation,
                                                   'duration': duration}})

    def start_timer(self, operation: str,
                    metadata: Optional[Dict[str, Any]] = None) -> Callable[..., float]:
        """
        开始计时，返回的函数在调用时记录耗时

        Args:
            operation: 操作名
            metadata: 附加信息

        Returns:
            停止函数 stop(success=True, extra=None)，返回耗时毫秒数
        """
        started = time.perf_counter()

        def stop(success: bool = True, extra: Optional[Dict[str, Any]] = None) -> float:
            duration = (time.perf_counter() - started) * 1000
            merged = dict(metadata or {})
            if extra:
                merged.update(extra)
            self.record_performance(operation, duration, success, merged)
            return duration

        return stop

    def increment_counter(self, name: str, value: float = 1,
                          tags: Optional[Dict[str, str]] = None) -> None:
        self.record(f"{COUNTER_PREFIX}{name}", value, MetricUnit.COUNT, tags)

    def record_gauge(self, name: str, value: float, unit: Any = MetricUnit.COUNT,
                     tags: Optional[Dict[str, str]] = None) -> None:
        self.record(f"{GAUGE_PREFIX}{name}", value, unit, tags)

    def record_histogram(self, name: str, value: float, unit: Any = MetricUnit.MS,
                         tags: Optional[Dict[str, str]] = None) -> None:
        self.record(f"{HISTOGRAM_PREFIX}{name}", value, unit, tags)

    def query(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
              name_filter: Optional[str] = None) -> List[Metric]:
        """
        查询指标，按时间倒序返回

        Args:
            start: 起始时间（含），None 表示不限
            end: 结束时间（含），None 表示不限
            name_filter: 指标名子串过滤

        Returns:
            List[Metric]: 匹配的指标
        """
        with self._lock:
            candidates = []
            for name, series in self._series.items():
                if name_filter and name_filter not in name:
                    continue
                candidates.extend(series)

        result = [m for m in candidates if self._in_range(m.timestamp, start, end)]
        result.sort(key=lambda m: m.timestamp, reverse=True)
        return result

    def query_performance(self, operation: Optional[str] = None,
                          start: Optional[datetime] = None,
                          end: Optional[datetime] = None) -> List[PerformanceRecord]:
        """
        查询操作耗时记录，按时间倒序返回

        Args:
            operation: 操作名，None 表示全部
            start: 起始时间（含）
            end: 结束时间（含）

        Returns:
            List[PerformanceRecord]: 匹配的记录
        """
        with self._lock:
            if operation is not None:
                candidates = list(self._performance.get(operation, ()))
            else:
                candidates = [r for records in self._performance.values() for r in records]

        result = [r for r in candidates if self._in_range(r.timestamp, start, end)]
        result.sort(key=lambda r: r.timestamp, reverse=True)
        return result

    def latest(self, selector: str, since: Optional[datetime] = None) -> Optional[Metric]:
        """
        获取匹配选择器的最新一条指标

        Args:
            selector: 精确指标名或通配符
            since: 只考虑该时刻之后（含）的数据

        Returns:
            Optional[Metric]: 最新的指标，没有则返回None
        """
        with self._lock:
            if selector in self._series:
                series_list = [self._series[selector]]
            else:
                series_list = [series for name, series in self._series.items()
                               if matches_selector(name, selector)]
            tails = [series[-1] for series in series_list if series]

        if since is not None:
            tails = [m for m in tails if m.timestamp >= since]
        if not tails:
            return None
        return max(tails, key=lambda m: m.timestamp)

    def summary(self) -> Dict[str, Any]:
        """
        统计最近窗口内的指标数量和调用最多的操作

        Returns:
            Dict[str, Any]: 包含 total_metrics、total_performance_records、top_operations
        """
        cutoff = self._clock() - self.summary_window
        recent_metrics = self.query(start=cutoff)
        recent_records = self.query_performance(start=cutoff)

        stats: Dict[str, Dict[str, float]] = defaultdict(
            lambda: {'count': 0, 'total_duration': 0.0, 'errors': 0})
        for record in recent_records:
            entry = stats[record.operation]
            entry['count'] += 1
            entry['total_duration'] += record.duration
            if not record.success:
                entry['errors'] += 1

        top_operations = [
            {
                'operation': operation,
                'count': int(entry['count']),
                'avg_duration': entry['total_duration'] / entry['count'],
                'error_rate': entry['errors'] / entry['count'] * 100
            }
            for operation, entry in stats.items()
        ]
        top_operations.sort(key=lambda item: item['count'], reverse=True)

        return {
            'window_minutes': self.summary_window.total_seconds() / 60,
            'total_metrics': len(recent_metrics),
            'total_performance_records': len(recent_records),
            'top_operations': top_operations[:10]
        }

    def cleanup(self) -> int:
        """
        淘汰超过保留时长的数据，可与 record 并发调用

        Returns:
            int: 被淘汰的条数
        """
        cutoff = self._clock() - self.retention
        removed = 0
        with self._lock:
            for store in (self._series, self._performance):
                for name in list(store.keys()):
                    removed += self._evict_expired(store[name], cutoff)
                    if not store[name]:
                        del store[name]

        if removed:
            self.logger.debug(f"清理过期指标 {removed} 条")
        return removed

    def series_names(self) -> List[str]:
        with self._lock:
            return sorted(self._series.keys())

    def clear(self) -> None:
        with self._lock:
            self._series.clear()
            self._performance.clear()
        self.logger.info("已清空指标存储")

    def get_stats(self) -> Dict[str, Any]:
        """获取存储统计信息"""
        with self._lock:
            return {
                'series_count': len(self._series),
                'metrics_count': sum(len(s) for s in self._series.values()),
                'operations_count': len(self._performance),
                'performance_records_count': sum(len(r) for r in self._performance.values()),
                'dropped_records': self._dropped_records,
                'max_per_series': self.max_per_series,
                'retention_hours': self.retention.total_seconds() / 3600
            }

    @staticmethod
    def _evict_expired(entries: Deque, cutoff: datetime) -> int:
        removed = 0
        while entries and entries[0].timestamp < cutoff:
            entries.popleft()
            removed += 1
        return removed

    @staticmethod
    def _in_range(timestamp: datetime, start: Optional[datetime],
                  end: Optional[datetime]) -> bool:
        if start is not None and timestamp < start:
            return False
        if end is not None and timestamp > end:
            return False
        return True
