"""健康探针工厂"""

from typing import Dict, Type, Any

from .base import BaseHealthProbe
from ..utils.exceptions import ConfigError


class HealthProbeFactory:
    """健康探针工厂类，按配置中的 type 创建探针"""

    def __init__(self):
        """初始化工厂"""
        self._probes: Dict[str, Type[BaseHealthProbe]] = {}

    def register(self, probe_type: str, probe_class: Type[BaseHealthProbe]):
        """
        注册探针类

        Args:
            probe_type: 探针类型名称
            probe_class: 探针类

        Raises:
            ConfigError: 注册失败
        """
        if not issubclass(probe_class, BaseHealthProbe):
            raise ConfigError(f"探针类 {probe_class.__name__} 必须继承自 BaseHealthProbe")

        if probe_type in self._probes:
            raise ConfigError(f"探针类型 '{probe_type}' 已经注册")

        self._probes[probe_type] = probe_class

    def create_probe(self, name: str, config: Dict[str, Any], store=None) -> BaseHealthProbe:
        """
        创建探针实例

        Args:
            name: 组件名称
            config: 探针配置
            store: 指标存储

        Returns:
            BaseHealthProbe: 探针实例

        Raises:
            ConfigError: 类型未知或配置无效
        """
        probe_type = config.get('type')
        if not probe_type:
            raise ConfigError(f"探针 '{name}' 缺少 'type' 配置")

        if probe_type not in self._probes:
            raise ConfigError(f"不支持的探针类型: '{probe_type}'")

        probe = self._probes[probe_type](name, config, store=store)
        if not probe.validate_config():
            raise ConfigError(f"探针 '{name}' 的配置验证失败",
                              context={'probe_type': probe_type})
        return probe

    def get_supported_types(self) -> list:
        return list(self._probes.keys())

    def is_type_supported(self, probe_type: str) -> bool:
        return probe_type in self._probes


# 全局工厂实例
health_probe_factory = HealthProbeFactory()


def register_probe_type(probe_type: str):
    """
    装饰器：注册探针类

    Args:
        probe_type: 探针类型名称

    Returns:
        装饰器函数
    """
    def decorator(probe_class: Type[BaseHealthProbe]):
        health_probe_factory.register(probe_type, probe_class)
        return probe_class

    return decorator
