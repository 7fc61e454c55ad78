"""系统指标采样模块

定期采集系统与进程资源使用情况写入指标存储，
并根据最近一分钟的操作耗时记录推导 API 请求量、平均耗时和错误率。
"""

import asyncio
import time
from datetime import timedelta
from typing import Dict, Any, Optional

import psutil

from .store import MetricStore
from ..models.metric import MetricUnit
from ..utils.log_manager import get_logger


class SystemMetricsSampler:
    """系统指标采样器"""

    def __init__(self, store: MetricStore, disk_path: str = '/',
                 api_operation_prefix: Optional[str] = None):
        """
        初始化采样器

        Args:
            store: 指标存储
            disk_path: 统计磁盘使用率的挂载点
            api_operation_prefix: 只把该前缀的操作计入 API 指标，None 表示全部
        """
        self.store = store
        self.disk_path = disk_path
        self.api_operation_prefix = api_operation_prefix
        self.logger = get_logger('sampler')

        self.process = psutil.Process()
        self._started_at = time.time()
        self.samples_taken = 0

        # 首次调用 cpu_percent 返回 0，先预热
        psutil.cpu_percent(interval=None)

    def collect_system_metrics(self) -> Dict[str, float]:
        """
        采集当前的系统与进程指标

        Returns:
            Dict[str, float]: 指标名到值的映射
        """
        virtual_memory = psutil.virtual_memory()
        disk = psutil.disk_usage(self.disk_path)
        memory_info = self.process.memory_info()

        metrics = {
            'system.cpu.usage': psutil.cpu_percent(interval=None),
            'system.memory.usage': virtual_memory.percent,
            'system.memory.used': float(virtual_memory.used),
            'system.memory.free': float(virtual_memory.available),
            'system.disk.usage': disk.percent,
            'process.memory.rss': float(memory_info.rss),
            'process.uptime': time.time() - self._started_at,
            'process.threads': float(self.process.num_threads()),
        }

        for index, load in enumerate(psutil.getloadavg()):
            metrics[f'system.cpu.load.{(1, 5, 15)[index]}min'] = load

        return metrics

    def collect_api_metrics(self) -> Dict[str, float]:
        """
        根据最近一分钟的操作耗时记录推导 API 指标

        Returns:
            Dict[str, float]: requests_per_minute、avg_response_time、error_rate
        """
        since = self.store.now() - timedelta(minutes=1)
        records = self.store.query_performance(start=since)
        if self.api_operation_prefix:
            records = [r for r in records if r.operation.startswith(self.api_operation_prefix)]

        total = len(records)
        if total == 0:
            return {
                'business.api.requests_per_minute': 0.0,
                'business.api.avg_response_time': 0.0,
                'business.api.error_rate': 0.0
            }

        errors = sum(1 for r in records if not r.success)
        return {
            'business.api.requests_per_minute': float(total),
            'business.api.avg_response_time': sum(r.duration for r in records) / total,
            'business.api.error_rate': errors / total * 100
        }

    def sample(self) -> Dict[str, float]:
        """
        采集一次并写入指标存储

        Returns:
            Dict[str, float]: 本次写入的全部指标
        """
        metrics = self.collect_system_metrics()
        metrics.update(self.collect_api_metrics())

        for name, value in metrics.items():
            self.store.record(name, value, self._unit_for(name))

        self.samples_taken += 1
        self.logger.debug(
            f"系统指标 - CPU: {metrics['system.cpu.usage']:.1f}%, "
            f"内存: {metrics['system.memory.usage']:.1f}%, "
            f"磁盘: {metrics['system.disk.usage']:.1f}%"
        )
        return metrics

    async def sample_async(self) -> Dict[str, float]:
        """在线程池中执行采样，避免阻塞事件循环"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.sample)

    @staticmethod
    def _unit_for(name: str) -> MetricUnit:
        if name.endswith('.usage') or name.endswith('error_rate'):
            return MetricUnit.PERCENT
        if name.endswith('avg_response_time'):
            return MetricUnit.MS
        if name.endswith('requests_per_minute'):
            return MetricUnit.RATE
        if name.startswith('system.memory.') or name.startswith('process.memory.'):
            return MetricUnit.BYTES
        return MetricUnit.COUNT
