"""基于指标阈值的健康探针"""

from datetime import timedelta
from typing import Dict, Any, Optional

from .base import BaseHealthProbe
from .factory import register_probe_type
from ..models.alert import Condition
from ..models.health import ComponentCheck, HealthStatus


@register_probe_type('metric')
class MetricProbe(BaseHealthProbe):
    """
    读取指标存储中的最新值并与阈值比较

    配置项：
        metric: 指标名或通配符
        condition: gt / lt，默认 gt
        unhealthy_threshold: 超过即 unhealthy
        degraded_threshold: 超过即 degraded，可选
        lookback_seconds: 只看该时间窗口内的数据，默认 300
        missing_status: 没有数据时的状态，默认 healthy
    """

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None, store=None):
        super().__init__(name, config, store)
        self.metric = self.config.get('metric')
        self.unhealthy_threshold = self.config.get('unhealthy_threshold')
        self.degraded_threshold = self.config.get('degraded_threshold')
        self.lookback = timedelta(seconds=self.config.get('lookback_seconds', 300))
        self.missing_status = self.config.get('missing_status', 'healthy')
        try:
            self.condition = Condition(self.config.get('condition', 'gt'))
        except ValueError:
            self.condition = None

    def validate_config(self) -> bool:
        if self.store is None or not self.metric:
            return False
        if self.condition not in (Condition.GT, Condition.LT):
            return False
        if not isinstance(self.unhealthy_threshold, (int, float)):
            return False
        if self.degraded_threshold is not None \
                and not isinstance(self.degraded_threshold, (int, float)):
            return False
        return self.missing_status in [s.value for s in HealthStatus]

    async def probe(self) -> ComponentCheck:
        since = self.store.now() - self.lookback
        metric = self.store.latest(self.metric, since=since)
        if metric is None:
            return self.make_check(HealthStatus(self.missing_status),
                                   f"指标 {self.metric} 暂无数据")

        value = metric.value
        symbol = self.condition.symbol
        if self.condition.evaluate(value, self.unhealthy_threshold):
            return self.make_check(
                HealthStatus.UNHEALTHY,
                f"{metric.name}={value:.2f} {symbol} {self.unhealthy_threshold}",
                metric=metric.name, value=value)

        if self.degraded_threshold is not None \
                and self.condition.evaluate(value, self.degraded_threshold):
            return self.make_check(
                HealthStatus.DEGRADED,
                f"{metric.name}={value:.2f} {symbol} {self.degraded_threshold}",
                metric=metric.name, value=value)

        return self.make_check(HealthStatus.HEALTHY, None, metric=metric.name, value=value)
