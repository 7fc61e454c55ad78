"""健康聚合器测试"""

import asyncio
import time
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from ops_monitor.metrics.store import MetricStore
from ops_monitor.models.health import ComponentCheck, HealthStatus
from ops_monitor.probes.resource_probes import MemoryProbe
from ops_monitor.services.health_aggregator import HealthAggregator, compute_system_health
from ops_monitor.utils.exceptions import ValidationError, ConfigError


def _check(name, status):
    return ComponentCheck(name=name, status=status)


class TestComputeSystemHealth:
    """综合健康分数计算测试"""

    def test_no_components_is_healthy(self):
        health = compute_system_health({})

        assert health.status is HealthStatus.HEALTHY
        assert health.score == 100

    def test_weighted_average(self):
        components = {
            'db': _check('db', HealthStatus.HEALTHY),
            'cache': _check('cache', HealthStatus.DEGRADED),
            'api': _check('api', HealthStatus.UNHEALTHY),
        }

        health = compute_system_health(components)

        assert health.score == 53
        assert health.status is HealthStatus.DEGRADED

    def test_weights_shift_score(self):
        components = {
            'db': _check('db', HealthStatus.HEALTHY),
            'api': _check('api', HealthStatus.UNHEALTHY),
        }

        health = compute_system_health(components, {'db': 3.0})

        assert health.score == 75
        assert health.status is HealthStatus.DEGRADED

    def test_worsening_component_never_raises_score(self):
        """测试单个组件变差时分数不会上升"""
        order = [HealthStatus.HEALTHY, HealthStatus.DEGRADED, HealthStatus.UNHEALTHY]
        others = {'a': _check('a', HealthStatus.DEGRADED), 'b': _check('b', HealthStatus.HEALTHY)}

        scores = []
        for status in order:
            components = dict(others, c=_check('c', status))
            scores.append(compute_system_health(components).score)

        assert scores == sorted(scores, reverse=True)

    def test_low_weight_failure_still_lowers_score(self):
        """测试低权重或大量健康组件中的故障组件仍会拉低分数"""
        many = {f'p{i}': _check(f'p{i}', HealthStatus.HEALTHY) for i in range(199)}
        many['bad'] = _check('bad', HealthStatus.UNHEALTHY)
        light = {'a': _check('a', HealthStatus.HEALTHY), 'b': _check('b', HealthStatus.UNHEALTHY)}

        assert compute_system_health(many).score < 100
        assert compute_system_health(light, {'b': 0.004}).score < 100
        assert compute_system_health(
            {'a': _check('a', HealthStatus.HEALTHY)}, {'a': 0.004}).score == 100


class TestHealthAggregator:
    """健康聚合器测试类"""

    def setup_method(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)
        self.store = MetricStore(clock=lambda: self.now)
        self.aggregator = HealthAggregator(store=self.store, probe_timeout=0.2,
                                           clock=lambda: self.now)

    def teardown_method(self):
        self.aggregator.shutdown()

    def test_register_duplicate_probe(self):
        self.aggregator.register_probe('db', lambda: True)

        with pytest.raises(ValidationError):
            self.aggregator.register_probe('db', lambda: True)

    def test_register_invalid_weight(self):
        with pytest.raises(ValidationError):
            self.aggregator.register_probe('db', lambda: True, weight=0)

    def test_register_non_callable(self):
        with pytest.raises(ValidationError):
            self.aggregator.register_probe('db', 'not-a-probe')

    @pytest.mark.asyncio
    async def test_check_all_healthy(self):
        self.aggregator.register_probe('db', lambda: True)
        self.aggregator.register_probe('cache', lambda: HealthStatus.HEALTHY)

        health = await self.aggregator.check()

        assert health.status is HealthStatus.HEALTHY
        assert health.score == 100
        assert set(health.components) == {'db', 'cache'}
        assert health.updated_at == self.now
        assert self.aggregator.last_result() is health

    @pytest.mark.asyncio
    async def test_probe_timeout_is_isolated(self):
        """测试超时的探针只影响自身"""
        async def hanging_probe():
            await asyncio.sleep(10)
            return True

        self.aggregator.register_probe('slow', hanging_probe, timeout=0.05)
        self.aggregator.register_probe('db', lambda: True)

        health = await self.aggregator.check()

        slow = health.components['slow']
        assert slow.status is HealthStatus.UNHEALTHY
        assert slow.metadata['error_kind'] == 'probe_timeout'
        assert health.components['db'].status is HealthStatus.HEALTHY
        assert health.score == 50

    @pytest.mark.asyncio
    async def test_blocking_resource_read_respects_timeout(self):
        """测试阻塞的磁盘读取（如失效的网络挂载）不会拖住事件循环和其它探针"""
        def stuck_disk_usage(path):
            time.sleep(1.0)
            return SimpleNamespace(percent=10.0)

        self.aggregator.configure_probes({'data_disk': {'type': 'disk', 'path': '/mnt/nfs'}})
        self.aggregator.register_probe('db', lambda: True)

        with patch('ops_monitor.probes.resource_probes.psutil.disk_usage',
                   side_effect=stuck_disk_usage):
            started = time.monotonic()
            health = await self.aggregator.check()
            elapsed = time.monotonic() - started

        assert elapsed < 0.8
        disk = health.components['data_disk']
        assert disk.status is HealthStatus.UNHEALTHY
        assert disk.metadata['error_kind'] == 'probe_timeout'
        assert health.components['db'].status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_probe_exception_becomes_unhealthy(self):
        def broken_probe():
            raise RuntimeError("数据库连接失败")

        self.aggregator.register_probe('db', broken_probe)

        health = await self.aggregator.check()

        assert health.components['db'].status is HealthStatus.UNHEALTHY
        assert health.components['db'].message == "数据库连接失败"
        assert health.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_exception_without_message_uses_type_name(self):
        def broken_probe():
            raise KeyError()

        self.aggregator.register_probe('db', broken_probe)

        health = await self.aggregator.check()

        assert health.components['db'].message == 'KeyError'

    @pytest.mark.asyncio
    async def test_check_records_metrics(self):
        """测试检查结果写入指标存储"""
        self.aggregator.register_probe('db', lambda: True)
        self.aggregator.register_probe('cache', lambda: 'degraded')

        await self.aggregator.check()

        assert self.store.latest('system.health.score').value == 80.0
        assert self.store.latest('health.component.db').value == 100.0
        cache_metric = self.store.latest('health.component.cache')
        assert cache_metric.value == 60.0
        assert cache_metric.tags['status'] == 'degraded'

    @pytest.mark.asyncio
    async def test_failure_streak(self):
        results = iter([False, False, True])
        self.aggregator.register_probe('db', lambda: next(results))

        await self.aggregator.check()
        await self.aggregator.check()
        assert self.aggregator.failure_streak('db') == 2

        await self.aggregator.check()
        assert self.aggregator.failure_streak('db') == 0
        assert self.aggregator.check_count == 3

    @pytest.mark.asyncio
    async def test_probe_instance_keeps_own_name(self):
        self.aggregator.register_probe('mem', MemoryProbe('mem', {'max_usage': 100}))

        health = await self.aggregator.check()

        assert health.components['mem'].status is HealthStatus.HEALTHY

    def test_configure_probes(self):
        self.aggregator.configure_probes({
            'data_disk': {'type': 'disk', 'path': '/', 'max_usage': 95},
            'api_errors': {'type': 'metric', 'metric': 'business.api.error_rate',
                           'unhealthy_threshold': 10},
        })

        assert self.aggregator.get_probe_names() == ['data_disk', 'api_errors']
        assert self.aggregator._probes['data_disk'].executor is self.aggregator.executor

    def test_configure_probes_invalid(self):
        with pytest.raises(ConfigError):
            self.aggregator.configure_probes({'x': {'type': 'unknown'}})

    def test_register_default_probes(self):
        self.aggregator.register_default_probes({'max_memory_usage': 85})

        assert set(self.aggregator.get_probe_names()) == {
            'service_health', 'memory_usage', 'cpu_usage', 'disk_space', 'error_rate'}

    def test_default_probes_without_store(self):
        aggregator = HealthAggregator()
        aggregator.register_default_probes()

        assert 'error_rate' not in aggregator.get_probe_names()
        aggregator.shutdown()

    def test_unregister_probe(self):
        self.aggregator.register_probe('db', lambda: True)

        assert self.aggregator.unregister_probe('db') is True
        assert self.aggregator.unregister_probe('db') is False

    @pytest.mark.asyncio
    async def test_get_stats(self):
        self.aggregator.register_probe('db', lambda: False)
        await self.aggregator.check()

        stats = self.aggregator.get_stats()

        assert stats['probes'] == ['db']
        assert stats['check_count'] == 1
        assert stats['last_status'] == 'unhealthy'
        assert stats['last_score'] == 0
        assert stats['failure_streaks'] == {'db': 1}
        assert stats['is_running'] is False
