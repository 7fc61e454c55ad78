"""健康聚合器模块

并发执行各组件探针，每个探针独立超时，全部完成或超时后计算综合健康分数：
healthy=100、degraded=60、unhealthy=0 按权重平均，>=80 为 healthy，>=50 为 degraded。
"""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Any, Optional, Callable, List, Union

from .scheduler import PeriodicTask
from ..metrics.store import MetricStore
from ..models.health import ComponentCheck, SystemHealth, HealthStatus
from ..models.metric import MetricUnit
from ..probes.base import BaseHealthProbe, FunctionProbe
from ..probes.factory import health_probe_factory
from ..utils.exceptions import ProbeTimeoutError, ValidationError
from ..utils.log_manager import get_logger

HEALTH_SCORE_METRIC = 'system.health.score'
COMPONENT_METRIC_PREFIX = 'health.component.'


def compute_system_health(components: Dict[str, ComponentCheck],
                          weights: Optional[Dict[str, float]] = None,
                          updated_at: Optional[datetime] = None) -> SystemHealth:
    """
    根据组件检查结果计算系统健康

    Args:
        components: 组件名到检查结果的映射
        weights: 组件权重，缺省为 1.0
        updated_at: 快照时间

    Returns:
        SystemHealth: 综合健康快照
    """
    weights = weights or {}
    updated_at = updated_at or datetime.now()

    if not components:
        return SystemHealth(status=HealthStatus.HEALTHY, score=100,
                            components={}, updated_at=updated_at)

    total_weight = 0.0
    weighted_score = 0.0
    for name, check in components.items():
        weight = weights.get(name, 1.0)
        total_weight += weight
        weighted_score += weight * check.status.score

    score = int(round(weighted_score / total_weight)) if total_weight > 0 else 100
    # 只有全部组件健康时才是满分
    if score == 100 and any(check.status is not HealthStatus.HEALTHY
                            for check in components.values()):
        score = 99
    return SystemHealth(status=HealthStatus.from_score(score), score=score,
                        components=dict(components), updated_at=updated_at)


class HealthAggregator:
    """健康聚合器"""

    def __init__(self,
                 store: Optional[MetricStore] = None,
                 probe_timeout: float = 5.0,
                 interval: float = 60.0,
                 max_workers: int = 4,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        初始化健康聚合器

        Args:
            store: 指标存储，设置后每次检查都会写入健康分数指标
            probe_timeout: 探针默认超时时间（秒）
            interval: 周期检查间隔（秒）
            max_workers: 执行同步探针的线程数
            clock: 时间源
        """
        self.store = store
        self.probe_timeout = probe_timeout
        self.interval = interval
        self._clock = clock or datetime.now

        self._probes: Dict[str, BaseHealthProbe] = {}
        self._last_result: Optional[SystemHealth] = None
        self._failure_streaks: Dict[str, int] = {}
        self.check_count = 0

        self.executor = ThreadPoolExecutor(max_workers=max_workers,
                                           thread_name_prefix='health-probe')
        self.task = PeriodicTask('health_check', interval, self.check)
        self.logger = get_logger('health_aggregator')

    def register_probe(self, name: str,
                       probe: Union[BaseHealthProbe, Callable[[], Any]],
                       timeout: Optional[float] = None,
                       weight: float = 1.0) -> None:
        """
        注册组件探针

        Args:
            name: 组件名称
            probe: 探针实例，或返回 ComponentCheck / bool / 状态字符串的函数
            timeout: 该探针的超时时间，None 使用默认值
            weight: 计算综合分数时的权重

        Raises:
            ValidationError: 名称重复或参数无效
        """
        if name in self._probes:
            raise ValidationError(f"探针 {name} 已注册", field='name')
        if weight <= 0:
            raise ValidationError(f"探针 {name} 的权重必须是正数", field='weight')

        if isinstance(probe, BaseHealthProbe):
            if probe.executor is None:
                probe.executor = self.executor
            if timeout is not None:
                probe.config['timeout'] = timeout
            probe.config.setdefault('weight', weight)
            instance = probe
        elif callable(probe):
            config = {'weight': weight}
            if timeout is not None:
                config['timeout'] = timeout
            instance = FunctionProbe(name, probe, config, executor=self.executor)
        else:
            raise ValidationError(f"探针 {name} 必须是 BaseHealthProbe 实例或可调用对象")

        self._probes[name] = instance
        self._failure_streaks[name] = 0
        self.logger.info(f"已注册健康探针: {name} ({instance.probe_type})")

    def configure_probes(self, probes_config: Dict[str, Dict[str, Any]]) -> None:
        """
        根据 health.probes 配置创建并注册探针

        Args:
            probes_config: 组件名到探针配置的映射
        """
        for name, config in probes_config.items():
            probe = health_probe_factory.create_probe(name, config, store=self.store)
            self.register_probe(name, probe)

    def register_default_probes(self, thresholds: Optional[Dict[str, Any]] = None) -> None:
        """
        注册默认探针：核心服务进程、内存、CPU、磁盘和 API 错误率

        Args:
            thresholds: disaster_recovery.recovery_thresholds 配置
        """
        thresholds = thresholds or {}
        defaults = {
            'service_health': {'type': 'process'},
            'memory_usage': {'type': 'memory',
                             'max_usage': thresholds.get('max_memory_usage', 90)},
            'cpu_usage': {'type': 'cpu', 'max_usage': thresholds.get('max_cpu_usage', 90)},
            'disk_space': {'type': 'disk', 'max_usage': thresholds.get('max_disk_usage', 90)},
        }
        if self.store is not None:
            max_error_rate = thresholds.get('max_error_rate', 10)
            defaults['error_rate'] = {
                'type': 'metric',
                'metric': 'business.api.error_rate',
                'condition': 'gt',
                'unhealthy_threshold': max_error_rate,
                'degraded_threshold': max_error_rate * 0.8
            }

        for name, config in defaults.items():
            if name not in self._probes:
                self.register_probe(name, health_probe_factory.create_probe(
                    name, config, store=self.store))

    def unregister_probe(self, name: str) -> bool:
        if name not in self._probes:
            return False
        del self._probes[name]
        self._failure_streaks.pop(name, None)
        self.logger.info(f"已移除健康探针: {name}")
        return True

    def get_probe_names(self) -> List[str]:
        return list(self._probes.keys())

    async def check(self) -> SystemHealth:
        """
        执行全部探针并计算综合健康

        单个探针异常或超时只会让该组件变为 unhealthy，不会中断整体检查。

        Returns:
            SystemHealth: 本次检查的快照
        """
        probes = list(self._probes.values())
        checks = await asyncio.gather(*(self._run_probe(probe) for probe in probes))

        components = {check.name: check for check in checks}
        weights = {probe.name: probe.get_weight() for probe in probes}
        health = compute_system_health(components, weights, self._clock())

        self._update_streaks(components)
        self._last_result = health
        self.check_count += 1
        self._record_metrics(health)

        failing = health.failing_components()
        if failing:
            self.logger.warning(
                f"系统健康检查完成: {health.status.value} (分数: {health.score}), "
                f"异常组件: {', '.join(c.name for c in failing)}")
        else:
            self.logger.debug(f"系统健康检查完成: {health.status.value} (分数: {health.score})")

        return health

    async def _run_probe(self, probe: BaseHealthProbe) -> ComponentCheck:
        """执行单个探针，超时和异常都映射为 unhealthy"""
        timeout = probe.get_timeout(self.probe_timeout)
        start_time = time.time()

        try:
            check = await asyncio.wait_for(probe.probe(), timeout=timeout)
        except asyncio.TimeoutError:
            error = ProbeTimeoutError(f"探针 {probe.name} 执行超时 ({timeout}秒)",
                                      probe_name=probe.name, timeout=timeout)
            self.logger.warning(error.format_error())
            check = ComponentCheck(name=probe.name, status=HealthStatus.UNHEALTHY,
                                   message=error.message,
                                   metadata={'error_kind': error.kind.value})
        except Exception as e:
            self.logger.warning(f"探针 {probe.name} 执行失败: {e}")
            check = ComponentCheck(name=probe.name, status=HealthStatus.UNHEALTHY,
                                   message=str(e) or type(e).__name__)

        check.name = probe.name
        if not check.latency:
            check.latency = (time.time() - start_time) * 1000
        check.checked_at = self._clock()
        return check

    def _update_streaks(self, components: Dict[str, ComponentCheck]) -> None:
        for name, check in components.items():
            if check.status is HealthStatus.UNHEALTHY:
                self._failure_streaks[name] = self._failure_streaks.get(name, 0) + 1
            else:
                self._failure_streaks[name] = 0

    def _record_metrics(self, health: SystemHealth) -> None:
        if self.store is None:
            return
        self.store.record(HEALTH_SCORE_METRIC, health.score, MetricUnit.PERCENT)
        for name, check in health.components.items():
            self.store.record(f"{COMPONENT_METRIC_PREFIX}{name}", check.status.score,
                              MetricUnit.PERCENT, {'status': check.status.value})

    def last_result(self) -> Optional[SystemHealth]:
        """最近一次检查的缓存结果，不触发探测"""
        return self._last_result

    def failure_streak(self, name: str) -> int:
        """组件连续 unhealthy 的次数"""
        return self._failure_streaks.get(name, 0)

    async def start(self) -> None:
        await self.task.start()

    async def stop(self) -> None:
        await self.task.stop()

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False)

    def get_stats(self) -> Dict[str, Any]:
        last = self._last_result
        return {
            'probes': self.get_probe_names(),
            'probe_timeout': self.probe_timeout,
            'interval': self.interval,
            'check_count': self.check_count,
            'is_running': self.task.is_running,
            'last_status': last.status.value if last else None,
            'last_score': last.score if last else None,
            'failure_streaks': dict(self._failure_streaks)
        }
