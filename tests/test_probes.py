"""健康探针测试"""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import Mock, AsyncMock, patch

import aiohttp
import psutil
import pytest

from ops_monitor.metrics.store import MetricStore
from ops_monitor.models.health import ComponentCheck, HealthStatus
from ops_monitor.probes import (
    BaseHealthProbe, FunctionProbe, HealthProbeFactory, health_probe_factory
)
from ops_monitor.probes.http_probe import HttpProbe
from ops_monitor.probes.metric_probe import MetricProbe
from ops_monitor.probes.resource_probes import (
    MemoryProbe, DiskProbe, ProcessProbe, UsageProbe, classify_usage
)
from ops_monitor.utils.exceptions import ConfigError


def _mock_http_session(status=200, text='OK', side_effect=None):
    """构造 aiohttp.ClientSession 的异步上下文管理器模拟对象"""
    mock_response = Mock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=text)

    mock_request_context = Mock()
    mock_request_context.__aenter__ = AsyncMock(return_value=mock_response)
    mock_request_context.__aexit__ = AsyncMock(return_value=None)

    mock_session = Mock()
    if side_effect is not None:
        mock_session.request = Mock(side_effect=side_effect)
    else:
        mock_session.request = Mock(return_value=mock_request_context)
    return mock_session


class TestProbeFactory:
    """探针工厂测试类"""

    def test_builtin_types_registered(self):
        for probe_type in ('http', 'memory', 'cpu', 'disk', 'metric', 'process'):
            assert health_probe_factory.is_type_supported(probe_type)

    def test_create_probe(self):
        probe = health_probe_factory.create_probe('mem', {'type': 'memory', 'max_usage': 80})

        assert isinstance(probe, MemoryProbe)
        assert probe.name == 'mem'
        assert probe.max_usage == 80.0

    def test_create_probe_missing_type(self):
        with pytest.raises(ConfigError):
            health_probe_factory.create_probe('x', {})

    def test_create_probe_unknown_type(self):
        with pytest.raises(ConfigError):
            health_probe_factory.create_probe('x', {'type': 'redis'})

    def test_create_probe_invalid_config(self):
        with pytest.raises(ConfigError):
            health_probe_factory.create_probe('x', {'type': 'memory', 'max_usage': 150})

    def test_metric_probe_requires_store(self):
        with pytest.raises(ConfigError):
            health_probe_factory.create_probe('x', {'type': 'metric', 'metric': 'a',
                                                    'unhealthy_threshold': 1})

    def test_register_rejects_non_probe_class(self):
        factory = HealthProbeFactory()

        with pytest.raises(ConfigError):
            factory.register('bad', dict)

    def test_register_rejects_duplicate(self):
        factory = HealthProbeFactory()
        factory.register('memory', MemoryProbe)

        with pytest.raises(ConfigError):
            factory.register('memory', MemoryProbe)


class TestFunctionProbe:
    """函数探针测试类"""

    @pytest.mark.asyncio
    async def test_sync_function_returning_bool(self):
        probe = FunctionProbe('db', lambda: False)

        check = await probe.probe()

        assert check.name == 'db'
        assert check.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_async_function_returning_check(self):
        async def probe_func():
            return ComponentCheck(name='other', status=HealthStatus.DEGRADED, message='慢')

        check = await FunctionProbe('cache', probe_func).probe()

        assert check.name == 'cache'
        assert check.status is HealthStatus.DEGRADED
        assert check.message == '慢'

    @pytest.mark.asyncio
    async def test_status_string(self):
        check = await FunctionProbe('api', lambda: 'Healthy').probe()

        assert check.status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_unsupported_return_type(self):
        with pytest.raises(TypeError):
            await FunctionProbe('api', lambda: 42).probe()


class TestResourceProbes:
    """系统资源探针测试类"""

    @pytest.mark.parametrize('usage,expected', [
        (50.0, HealthStatus.HEALTHY),
        (70.0, HealthStatus.HEALTHY),
        (75.0, HealthStatus.DEGRADED),
        (90.0, HealthStatus.DEGRADED),
        (90.1, HealthStatus.UNHEALTHY),
    ])
    def test_classify_usage(self, usage, expected):
        assert classify_usage(usage, 90) is expected

    @pytest.mark.asyncio
    async def test_memory_probe_unhealthy(self):
        with patch('ops_monitor.probes.resource_probes.psutil.virtual_memory',
                   return_value=SimpleNamespace(percent=95.0)):
            check = await MemoryProbe('memory_usage', {'max_usage': 90}).probe()

        assert check.status is HealthStatus.UNHEALTHY
        assert '内存使用率过高' in check.message
        assert check.metadata['usage'] == 95.0

    @pytest.mark.asyncio
    async def test_disk_probe_uses_path(self):
        with patch('ops_monitor.probes.resource_probes.psutil.disk_usage',
                   return_value=SimpleNamespace(percent=10.0)) as mock_disk:
            check = await DiskProbe('disk_space', {'path': '/data'}).probe()

        mock_disk.assert_called_once_with('/data')
        assert check.status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_process_probe_current_process(self):
        check = await ProcessProbe('service_health').probe()

        assert check.status is HealthStatus.HEALTHY
        assert check.metadata['pid'] > 0

    @pytest.mark.asyncio
    async def test_process_probe_missing_process(self):
        with patch('ops_monitor.probes.resource_probes.psutil.Process',
                   side_effect=psutil.NoSuchProcess(99999)):
            check = await ProcessProbe('service_health', {'pid': 99999}).probe()

        assert check.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_process_probe_rss_limit(self):
        check = await ProcessProbe('service_health', {'max_rss_mb': 0.001}).probe()

        assert check.status is HealthStatus.DEGRADED


class TestMetricProbe:
    """指标阈值探针测试类"""

    def setup_method(self):
        self.store = MetricStore(clock=lambda: datetime(2024, 1, 1, 12, 0, 0))
        self.config = {'metric': 'business.api.error_rate', 'condition': 'gt',
                       'unhealthy_threshold': 10, 'degraded_threshold': 8}

    @pytest.mark.asyncio
    async def test_missing_metric_uses_missing_status(self):
        check = await MetricProbe('error_rate', self.config, self.store).probe()

        assert check.status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    @pytest.mark.parametrize('value,expected', [
        (5, HealthStatus.HEALTHY),
        (9, HealthStatus.DEGRADED),
        (12, HealthStatus.UNHEALTHY),
    ])
    async def test_thresholds(self, value, expected):
        self.store.record('business.api.error_rate', value)

        check = await MetricProbe('error_rate', self.config, self.store).probe()

        assert check.status is expected


class TestHttpProbe:
    """HTTP探针测试类"""

    def setup_method(self):
        self.config = {'url': 'http://localhost:8080/health', 'expected_status': 200}

    def test_validate_config(self):
        assert HttpProbe('api', self.config).validate_config() is True
        assert HttpProbe('api', {'url': 'localhost'}).validate_config() is False
        assert HttpProbe('api', dict(self.config, method='DELETE')).validate_config() is False

    @pytest.mark.asyncio
    async def test_healthy_response(self):
        mock_session = _mock_http_session(200)

        with patch('aiohttp.ClientSession') as mock_client_session:
            mock_client_session.return_value.__aenter__ = AsyncMock(return_value=mock_session)
            mock_client_session.return_value.__aexit__ = AsyncMock(return_value=None)

            check = await HttpProbe('api', self.config).probe()

        assert check.status is HealthStatus.HEALTHY
        mock_session.request.assert_called_once()

    @pytest.mark.asyncio
    async def test_unexpected_status(self):
        mock_session = _mock_http_session(503, 'Service Unavailable')

        with patch('aiohttp.ClientSession') as mock_client_session:
            mock_client_session.return_value.__aenter__ = AsyncMock(return_value=mock_session)
            mock_client_session.return_value.__aexit__ = AsyncMock(return_value=None)

            check = await HttpProbe('api', self.config).probe()

        assert check.status is HealthStatus.UNHEALTHY
        assert '503' in check.message

    @pytest.mark.asyncio
    async def test_connection_error(self):
        mock_session = _mock_http_session(side_effect=aiohttp.ClientError("连接被拒绝"))

        with patch('aiohttp.ClientSession') as mock_client_session:
            mock_client_session.return_value.__aenter__ = AsyncMock(return_value=mock_session)
            mock_client_session.return_value.__aexit__ = AsyncMock(return_value=None)

            check = await HttpProbe('api', self.config).probe()

        assert check.status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_expected_content_missing(self):
        mock_session = _mock_http_session(200, 'status: starting')

        with patch('aiohttp.ClientSession') as mock_client_session:
            mock_client_session.return_value.__aenter__ = AsyncMock(return_value=mock_session)
            mock_client_session.return_value.__aexit__ = AsyncMock(return_value=None)

            check = await HttpProbe('api', dict(self.config, expected_content='ok')).probe()

        assert check.status is HealthStatus.UNHEALTHY


def test_base_probe_is_abstract():
    with pytest.raises(TypeError):
        BaseHealthProbe('x')


def test_usage_probe_requires_read_usage():
    """使用率探针基类必须由子类实现读取方法"""
    with pytest.raises(TypeError):
        UsageProbe('x')

    class HalfUsageProbe(UsageProbe):
        def read_usage(self):
            return 50.0

    assert HalfUsageProbe('half').validate_config() is True
