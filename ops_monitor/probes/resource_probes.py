"""系统资源健康探针

内存、CPU、磁盘使用率超过上限的 80% 视为 degraded，超过上限视为 unhealthy。
"""

import time
from abc import abstractmethod
from typing import Dict, Any, Optional

import psutil

from .base import BaseHealthProbe
from .factory import register_probe_type
from ..models.health import ComponentCheck, HealthStatus

WARNING_RATIO = 0.8


def classify_usage(usage: float, max_usage: float) -> HealthStatus:
    """
    根据使用率和上限判断状态

    Args:
        usage: 当前使用率（百分比）
        max_usage: 上限（百分比）

    Returns:
        HealthStatus: 对应的健康状态
    """
    if usage > max_usage:
        return HealthStatus.UNHEALTHY
    if usage > max_usage * WARNING_RATIO:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class UsageProbe(BaseHealthProbe):
    """按使用率判断状态的探针基类"""

    label = '资源'
    default_max_usage = 90.0

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None, store=None):
        super().__init__(name, config, store)
        self.max_usage = float(self.config.get('max_usage', self.default_max_usage))

    def validate_config(self) -> bool:
        return 0 < self.max_usage <= 100

    @abstractmethod
    def read_usage(self) -> float:
        """读取当前使用率（百分比），在线程池中调用"""
        pass

    async def probe(self) -> ComponentCheck:
        usage = await self.run_blocking(self.read_usage)
        status = classify_usage(usage, self.max_usage)

        message = None
        if status is HealthStatus.UNHEALTHY:
            message = f"{self.label}使用率过高: {usage:.1f}% > {self.max_usage:.1f}%"
        elif status is HealthStatus.DEGRADED:
            message = f"{self.label}使用率接近上限: {usage:.1f}%"

        return self.make_check(status, message, usage=usage, max_usage=self.max_usage)


@register_probe_type('memory')
class MemoryProbe(UsageProbe):
    """系统内存使用率探针"""

    label = '内存'

    def read_usage(self) -> float:
        return psutil.virtual_memory().percent


@register_probe_type('cpu')
class CpuProbe(UsageProbe):
    """系统CPU使用率探针"""

    label = 'CPU'

    def read_usage(self) -> float:
        return psutil.cpu_percent(interval=None)


@register_probe_type('disk')
class DiskProbe(UsageProbe):
    """磁盘空间探针"""

    label = '磁盘'

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None, store=None):
        super().__init__(name, config, store)
        self.path = self.config.get('path', '/')

    def read_usage(self) -> float:
        return psutil.disk_usage(self.path).percent


@register_probe_type('process')
class ProcessProbe(BaseHealthProbe):
    """
    核心服务进程存活探针

    未配置 pid 时检查当前进程。进程不存在或已成为僵尸进程视为 unhealthy，
    常驻内存超过 max_rss_mb 视为 degraded。
    """

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None, store=None):
        super().__init__(name, config, store)
        self.pid = self.config.get('pid')
        self.max_rss_mb = self.config.get('max_rss_mb')

    def validate_config(self) -> bool:
        if self.pid is not None and (not isinstance(self.pid, int) or self.pid <= 0):
            return False
        if self.max_rss_mb is not None and self.max_rss_mb <= 0:
            return False
        return True

    async def probe(self) -> ComponentCheck:
        return await self.run_blocking(self._inspect_process)

    def _inspect_process(self) -> ComponentCheck:
        try:
            process = psutil.Process(self.pid)
            if not process.is_running() or process.status() == psutil.STATUS_ZOMBIE:
                return self.make_check(HealthStatus.UNHEALTHY, "进程未运行", pid=process.pid)

            rss_mb = process.memory_info().rss / 1024 / 1024
            uptime = time.time() - process.create_time()
        except psutil.NoSuchProcess:
            return self.make_check(HealthStatus.UNHEALTHY, f"进程不存在: {self.pid}")
        except psutil.AccessDenied as e:
            return self.make_check(HealthStatus.DEGRADED, f"无权限读取进程信息: {e}")

        metadata = {'pid': process.pid, 'rss_mb': round(rss_mb, 2), 'uptime': round(uptime, 1)}
        if self.max_rss_mb is not None and rss_mb > self.max_rss_mb:
            return self.make_check(HealthStatus.DEGRADED,
                                   f"进程内存占用过高: {rss_mb:.1f}MB > {self.max_rss_mb}MB",
                                   **metadata)

        return self.make_check(HealthStatus.HEALTHY, None, **metadata)
