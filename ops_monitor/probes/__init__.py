"""健康探针模块"""

from .base import BaseHealthProbe, FunctionProbe
from .factory import HealthProbeFactory, health_probe_factory, register_probe_type
from .http_probe import HttpProbe
from .metric_probe import MetricProbe
from .resource_probes import MemoryProbe, CpuProbe, DiskProbe, ProcessProbe, classify_usage

__all__ = ['BaseHealthProbe', 'FunctionProbe', 'HealthProbeFactory', 'health_probe_factory',
           'register_probe_type', 'HttpProbe', 'MetricProbe', 'MemoryProbe', 'CpuProbe',
           'DiskProbe', 'ProcessProbe', 'classify_usage']
