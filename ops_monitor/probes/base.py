"""健康探针基类"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from typing import Dict, Any, Optional, Callable

from ..models.health import ComponentCheck, HealthStatus
from ..utils.log_manager import get_logger


class BaseHealthProbe(ABC):
    """健康探针抽象基类"""

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None, store=None):
        """
        初始化健康探针

        Args:
            name: 组件名称
            config: 探针配置参数
            store: 指标存储，只有读取指标的探针需要
        """
        self.name = name
        self.config = config or {}
        self.store = store
        self.executor: Optional[Executor] = None
        self.probe_type = self.__class__.__name__.replace('Probe', '').lower()
        self.logger = get_logger(f'probe.{self.probe_type}.{self.name}')

    @abstractmethod
    async def probe(self) -> ComponentCheck:
        """
        执行一次探测

        Returns:
            ComponentCheck: 组件检查结果
        """
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        pass

    def get_timeout(self, default: float = 5.0) -> float:
        """
        获取单个探针的超时时间

        Args:
            default: 未配置时使用的默认值（秒）

        Returns:
            float: 超时时间（秒）
        """
        return float(self.config.get('timeout', default))

    def get_weight(self) -> float:
        return float(self.config.get('weight', 1.0))

    async def run_blocking(self, func: Callable[..., Any], *args) -> Any:
        """在线程池中执行阻塞调用，超时由聚合器在等待侧强制"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    def make_check(self, status: HealthStatus, message: Optional[str] = None,
                   **metadata) -> ComponentCheck:
        return ComponentCheck(name=self.name, status=status, message=message,
                              metadata=metadata)


def _coerce_result(name: str, result: Any) -> ComponentCheck:
    """把探测函数的返回值转换为 ComponentCheck"""
    if isinstance(result, ComponentCheck):
        if result.name != name:
            result.name = name
        return result
    if isinstance(result, bool):
        status = HealthStatus.HEALTHY if result else HealthStatus.UNHEALTHY
        return ComponentCheck(name=name, status=status)
    if isinstance(result, HealthStatus):
        return ComponentCheck(name=name, status=result)
    if isinstance(result, str):
        return ComponentCheck(name=name, status=HealthStatus(result.lower()))
    raise TypeError(f"探测函数返回了不支持的类型: {type(result).__name__}")


class FunctionProbe(BaseHealthProbe):
    """
    包装任意同步或异步函数的探针

    函数可以返回 ComponentCheck、bool、HealthStatus 或状态字符串。
    同步函数在线程池中执行，不会阻塞事件循环。
    """

    def __init__(self, name: str, func: Callable[[], Any],
                 config: Optional[Dict[str, Any]] = None,
                 executor: Optional[Executor] = None):
        super().__init__(name, config)
        self.func = func
        self.executor = executor
        self.probe_type = 'function'

    def validate_config(self) -> bool:
        return callable(self.func)

    async def probe(self) -> ComponentCheck:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func()
        else:
            result = await self.run_blocking(self.func)
            if inspect.isawaitable(result):
                result = await result
        return _coerce_result(self.name, result)
