"""指标存储与采样模块"""

from .sampler import SystemMetricsSampler
from .store import MetricStore, matches_selector

__all__ = ['MetricStore', 'SystemMetricsSampler', 'matches_selector']
