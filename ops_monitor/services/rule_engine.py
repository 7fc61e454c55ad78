"""告警规则引擎

每个 tick 读取指标存储中每条启用规则匹配的最新指标并评估条件：
条件成立、没有未解决告警且已过冷却期时创建告警并分发；
条件不再成立且存在未解决告警时将其标记为已恢复。
冷却期从规则最近一次触发算起，与告警是否恢复无关。
"""

import asyncio
import inspect
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Callable, Union, Deque

from .scheduler import PeriodicTask
from ..alerts.base import EVENT_FIRED, EVENT_RESOLVED
from ..metrics.store import MetricStore
from ..models.alert import AlertRule, Alert, Severity, Condition, parse_enum
from ..models.metric import Metric
from ..utils.exceptions import NotFoundError, ValidationError
from ..utils.log_manager import get_logger

DEFAULT_RULES: List[Dict[str, Any]] = [
    {'id': 'cpu-high', 'name': 'CPU使用率过高', 'metric': 'system.cpu.usage',
     'condition': 'gt', 'threshold': 80, 'severity': 'high',
     'description': 'CPU使用率超过80%'},
    {'id': 'cpu-critical', 'name': 'CPU使用率严重过高', 'metric': 'system.cpu.usage',
     'condition': 'gt', 'threshold': 95, 'severity': 'critical',
     'description': 'CPU使用率超过95%'},
    {'id': 'memory-high', 'name': '内存使用率过高', 'metric': 'system.memory.usage',
     'condition': 'gt', 'threshold': 85, 'severity': 'high',
     'description': '内存使用率超过85%'},
    {'id': 'memory-critical', 'name': '内存使用率严重过高', 'metric': 'system.memory.usage',
     'condition': 'gt', 'threshold': 95, 'severity': 'critical',
     'description': '内存使用率超过95%'},
    {'id': 'api-response-time', 'name': 'API响应时间过长',
     'metric': 'business.api.avg_response_time', 'condition': 'gt', 'threshold': 2000,
     'severity': 'medium', 'description': 'API平均响应时间超过2秒'},
    {'id': 'api-error-rate', 'name': 'API错误率过高', 'metric': 'business.api.error_rate',
     'condition': 'gt', 'threshold': 10, 'severity': 'medium',
     'description': 'API错误率超过10%'},
    {'id': 'health-score-low', 'name': '系统健康分数过低', 'metric': 'system.health.score',
     'condition': 'lt', 'threshold': 50, 'severity': 'critical',
     'description': '系统综合健康分数低于50'},
]

UPDATABLE_FIELDS = ('name', 'metric', 'condition', 'threshold', 'severity', 'enabled',
                    'cooldown', 'description', 'tags')

Listener = Callable[[Alert], Any]


class AlertRuleEngine:
    """告警规则引擎，持有规则和告警的全部状态"""

    def __init__(self,
                 store: MetricStore,
                 dispatcher=None,
                 interval: float = 30.0,
                 lookback: timedelta = timedelta(minutes=5),
                 max_history: int = 1000,
                 notify_on_resolve: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        初始化规则引擎

        Args:
            store: 指标存储
            dispatcher: 通知分发器，None 表示只记录不发送
            interval: 评估间隔（秒）
            lookback: 只使用该时间窗口内的指标
            max_history: 告警历史最大条数
            notify_on_resolve: 告警恢复时是否也发送通知
            clock: 时间源
        """
        self.store = store
        self.dispatcher = dispatcher
        self.interval = interval
        self.lookback = lookback
        self.max_history = max_history
        self.notify_on_resolve = notify_on_resolve
        self._clock = clock or datetime.now

        self._rules: Dict[str, AlertRule] = {}
        self._open_alerts: Dict[str, Alert] = {}
        self._history: Deque[Alert] = deque(maxlen=max_history)
        self._fired_listeners: List[Listener] = []
        self._resolved_listeners: List[Listener] = []
        self._tick_lock = asyncio.Lock()

        self.tick_count = 0
        self.fired_count = 0
        self.resolved_count = 0
        self.task = PeriodicTask('alert_rules', interval, self.tick)
        self.logger = get_logger('rule_engine')

    @classmethod
    def from_config(cls, config: Dict[str, Any], store: MetricStore, dispatcher=None,
                    clock: Optional[Callable[[], datetime]] = None) -> 'AlertRuleEngine':
        """
        根据 alerting 配置段创建规则引擎并加载规则

        Args:
            config: alerting 配置段
            store: 指标存储
            dispatcher: 通知分发器
            clock: 时间源

        Returns:
            AlertRuleEngine: 规则引擎
        """
        engine = cls(
            store=store,
            dispatcher=dispatcher,
            interval=config.get('interval', 30),
            lookback=timedelta(seconds=config.get('lookback_seconds', 300)),
            max_history=config.get('max_history', 1000),
            notify_on_resolve=config.get('notify_on_resolve', False),
            clock=clock
        )
        if config.get('use_default_rules', True):
            engine.load_default_rules()
        for rule_config in config.get('rules', []):
            if rule_config.get('id') in engine._rules:
                engine.update_rule(rule_config['id'], rule_config)
            else:
                engine.add_rule(rule_config)
        return engine

    def load_default_rules(self) -> None:
        """加载默认规则集，冷却期均为5分钟"""
        for rule_config in DEFAULT_RULES:
            if rule_config['id'] not in self._rules:
                self.add_rule(rule_config)

    def add_rule(self, rule: Union[AlertRule, Dict[str, Any]]) -> str:
        """
        添加规则

        Args:
            rule: AlertRule 或规则配置字典

        Returns:
            str: 规则ID

        Raises:
            ValidationError: 规则不合法或ID重复
        """
        if isinstance(rule, dict):
            rule = AlertRule.from_dict(rule)
        elif isinstance(rule, AlertRule):
            rule.validate()
        else:
            raise ValidationError(f"规则必须是 AlertRule 或配置字典: {type(rule)}")

        if rule.id in self._rules:
            raise ValidationError(f"规则ID重复: {rule.id}", field='id',
                                  context={'rule_id': rule.id})

        self._rules[rule.id] = rule
        self.logger.info(f"已添加告警规则: {rule.name} ({rule.metric} "
                         f"{rule.condition.symbol} {rule.threshold})",
                         extra={'context': {'rule_id': rule.id}})
        return rule.id

    async def remove_rule(self, rule_id: str) -> bool:
        """
        移除规则，该规则未解决的告警按正常恢复流程关闭

        Args:
            rule_id: 规则ID

        Returns:
            bool: 是否成功移除
        """
        async with self._tick_lock:
            rule = self._rules.pop(rule_id, None)
            if rule is None:
                return False

            open_alert = self._open_alerts.get(rule_id)
            if open_alert is not None:
                self._resolve(open_alert, self._clock())

        self.logger.info(f"已移除告警规则: {rule.name}", extra={'context': {'rule_id': rule_id}})
        if open_alert is not None:
            if self.notify_on_resolve:
                await self._dispatch(open_alert, EVENT_RESOLVED)
            await self._emit(self._resolved_listeners, open_alert)
        return True

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> bool:
        """
        更新规则字段，ID 和最近触发时间不可修改

        Args:
            rule_id: 规则ID
            updates: 要修改的字段，cooldown 以秒为单位

        Returns:
            bool: 规则是否存在并已更新

        Raises:
            ValidationError: 更新后的规则不合法，此时规则保持不变
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            return False

        changes: Dict[str, Any] = {}
        for key, value in updates.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if key == 'condition':
                value = parse_enum(Condition, value, 'condition')
            elif key == 'severity':
                value = parse_enum(Severity, value, 'severity')
            elif key == 'cooldown' and isinstance(value, (int, float)) \
                    and not isinstance(value, bool):
                value = timedelta(seconds=value)
            changes[key] = value

        candidate = replace(rule, **changes)
        candidate.validate()

        self._rules[rule_id] = candidate
        self.logger.info(f"已更新告警规则: {candidate.name}, 变更字段: {list(changes.keys())}",
                         extra={'context': {'rule_id': rule_id}})
        return True

    def get_rules(self) -> List[AlertRule]:
        return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        return self._rules.get(rule_id)

    def add_fired_listener(self, listener: Listener) -> None:
        self._fired_listeners.append(listener)

    def add_resolved_listener(self, listener: Listener) -> None:
        self._resolved_listeners.append(listener)

    async def tick(self) -> List[Alert]:
        """
        评估全部启用的规则

        状态变更在锁内完成，分发和监听器回调在状态提交之后执行。

        Returns:
            List[Alert]: 本次新触发的告警
        """
        async with self._tick_lock:
            now = self._clock()
            since = now - self.lookback
            fired: List[Alert] = []
            resolved: List[Alert] = []

            for rule in list(self._rules.values()):
                if not rule.enabled:
                    continue
                try:
                    metric = self.store.latest(rule.metric, since=since)
                    if metric is None:
                        continue

                    open_alert = self._open_alerts.get(rule.id)
                    if rule.condition.evaluate(metric.value, rule.threshold):
                        if open_alert is None and not rule.in_cooldown(now):
                            fired.append(self._fire(rule, metric, now))
                    elif open_alert is not None:
                        self._resolve(open_alert, now)
                        resolved.append(open_alert)
                except Exception as e:
                    self.logger.error(f"评估规则 {rule.name} 失败: {e}", exc_info=True)

            self.tick_count += 1

        for alert in fired:
            await self._dispatch(alert, EVENT_FIRED)
            await self._emit(self._fired_listeners, alert)

        for alert in resolved:
            if self.notify_on_resolve:
                await self._dispatch(alert, EVENT_RESOLVED)
            await self._emit(self._resolved_listeners, alert)

        return fired

    def _fire(self, rule: AlertRule, metric: Metric, now: datetime) -> Alert:
        alert = Alert(
            id=str(uuid.uuid4()),
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity,
            message=(f"{rule.name}: {metric.name}={metric.value:.2f} "
                     f"{rule.condition.symbol} {rule.threshold:g}"),
            snapshot={
                'metric': metric.name,
                'value': metric.value,
                'unit': metric.unit.value,
                'threshold': rule.threshold,
                'condition': rule.condition.value,
                'metric_timestamp': metric.timestamp.isoformat(),
                'tags': dict(metric.tags)
            },
            fired_at=now
        )
        rule.mark_fired(now)
        self._open_alerts[rule.id] = alert
        self._history.append(alert)
        self.fired_count += 1

        log = self.logger.error if rule.severity is Severity.CRITICAL else self.logger.warning
        log(f"告警触发: {alert.message}",
            extra={'context': {'rule_id': rule.id, 'alert_id': alert.id,
                               'severity': rule.severity.value}})
        return alert

    def _resolve(self, alert: Alert, now: datetime) -> None:
        alert.resolve(now)
        self._open_alerts.pop(alert.rule_id, None)
        self.resolved_count += 1
        self.logger.info(f"告警已恢复: {alert.rule_name}",
                         extra={'context': {'rule_id': alert.rule_id, 'alert_id': alert.id}})

    async def _dispatch(self, alert: Alert, event: str) -> None:
        if self.dispatcher is None:
            return
        try:
            await self.dispatcher.send(alert, event)
        except Exception as e:
            self.logger.error(f"分发告警 {alert.id} 失败: {e}", exc_info=True)

    async def _emit(self, listeners: List[Listener], alert: Alert) -> None:
        for listener in listeners:
            try:
                result = listener(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(f"告警监听器执行失败: {e}", exc_info=True)

    async def resolve_alert(self, alert_id: str) -> Alert:
        """
        手动解决告警

        Args:
            alert_id: 告警ID

        Returns:
            Alert: 已解决的告警

        Raises:
            NotFoundError: 告警不存在或已解决
        """
        async with self._tick_lock:
            alert = next((a for a in self._open_alerts.values() if a.id == alert_id), None)
            if alert is None:
                raise NotFoundError(f"告警不存在或已解决: {alert_id}",
                                    resource='alert', resource_id=alert_id)
            self._resolve(alert, self._clock())

        if self.notify_on_resolve:
            await self._dispatch(alert, EVENT_RESOLVED)
        await self._emit(self._resolved_listeners, alert)
        return alert

    def active_alerts(self) -> List[Alert]:
        """未解决的告警，按触发时间倒序"""
        return sorted(self._open_alerts.values(), key=lambda a: a.fired_at, reverse=True)

    def history(self, limit: int = 50) -> List[Alert]:
        """
        告警历史（含未解决），按触发时间倒序

        Args:
            limit: 最多返回的条数

        Returns:
            List[Alert]: 告警列表
        """
        alerts = {alert.id: alert for alert in self._history}
        for alert in self._open_alerts.values():
            alerts.setdefault(alert.id, alert)
        ordered = sorted(alerts.values(), key=lambda a: a.fired_at, reverse=True)
        return ordered[:max(limit, 0)]

    async def start(self) -> None:
        await self.task.start()

    async def stop(self) -> None:
        await self.task.stop()

    def get_stats(self) -> Dict[str, Any]:
        return {
            'rules_count': len(self._rules),
            'enabled_rules': sum(1 for r in self._rules.values() if r.enabled),
            'active_alerts': len(self._open_alerts),
            'history_size': len(self._history),
            'tick_count': self.tick_count,
            'fired_count': self.fired_count,
            'resolved_count': self.resolved_count,
            'is_running': self.task.is_running
        }
