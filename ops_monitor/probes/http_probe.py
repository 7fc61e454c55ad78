"""HTTP接口健康探针"""

import asyncio
import time
from typing import Dict, Any, Optional

import aiohttp

from .base import BaseHealthProbe
from .factory import register_probe_type
from ..models.health import ComponentCheck, HealthStatus


@register_probe_type('http')
class HttpProbe(BaseHealthProbe):
    """
    HTTP接口健康探针

    状态码符合期望且响应内容校验通过视为 healthy；
    配置了 degraded_latency_ms 时，响应过慢视为 degraded。
    """

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None, store=None):
        super().__init__(name, config, store)
        self.url = self.config.get('url')
        self.method = self.config.get('method', 'GET').upper()
        self.expected_status = self.config.get('expected_status', 200)
        self.expected_content = self.config.get('expected_content')
        self.degraded_latency_ms = self.config.get('degraded_latency_ms')

    def validate_config(self) -> bool:
        """
        验证HTTP探针配置

        Returns:
            bool: 配置是否有效
        """
        if not isinstance(self.url, str) or not self.url.startswith(('http://', 'https://')):
            return False

        if self.method not in ['GET', 'POST', 'HEAD', 'OPTIONS']:
            return False

        expected = self.expected_status
        statuses = expected if isinstance(expected, list) else [expected]
        for status in statuses:
            if isinstance(status, bool) or not isinstance(status, int) \
                    or not 100 <= status <= 599:
                return False

        return True

    def _is_status_expected(self, status_code: int) -> bool:
        if isinstance(self.expected_status, list):
            return status_code in self.expected_status
        return status_code == self.expected_status

    async def probe(self) -> ComponentCheck:
        """
        执行HTTP健康探测

        Returns:
            ComponentCheck: 组件检查结果
        """
        start_time = time.time()
        metadata: Dict[str, Any] = {'url': self.url}

        try:
            timeout = aiohttp.ClientTimeout(total=self.get_timeout())
            headers = self.config.get('headers', {})

            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(self.method, self.url, headers=headers) as response:
                    metadata['status_code'] = response.status

                    if not self._is_status_expected(response.status):
                        return self._finish(HealthStatus.UNHEALTHY,
                                            f"HTTP状态码不符合期望: {response.status}",
                                            start_time, metadata)

                    if self.expected_content:
                        content = await response.text()
                        if self.expected_content not in content:
                            return self._finish(HealthStatus.UNHEALTHY,
                                                "响应内容验证失败", start_time, metadata)

        except aiohttp.ClientError as e:
            return self._finish(HealthStatus.UNHEALTHY, f"HTTP客户端错误: {e}",
                                start_time, metadata)
        except asyncio.TimeoutError:
            return self._finish(HealthStatus.UNHEALTHY, "HTTP请求超时", start_time, metadata)

        latency_ms = (time.time() - start_time) * 1000
        if self.degraded_latency_ms is not None and latency_ms > self.degraded_latency_ms:
            return self._finish(HealthStatus.DEGRADED,
                                f"响应过慢: {latency_ms:.0f}ms > {self.degraded_latency_ms}ms",
                                start_time, metadata)

        return self._finish(HealthStatus.HEALTHY, None, start_time, metadata)

    def _finish(self, status: HealthStatus, message: Optional[str], start_time: float,
                metadata: Dict[str, Any]) -> ComponentCheck:
        check = self.make_check(status, message, **metadata)
        check.latency = (time.time() - start_time) * 1000
        return check
