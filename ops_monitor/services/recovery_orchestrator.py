"""灾难恢复编排器

按自己的节奏读取健康聚合器最近一次的结果，把持续的降级归类为灾难事件，
并按配置执行恢复动作（请求重启、还原最近的备份、通知管理员）。
单个恢复动作的失败只记录在事件的 recovery_actions_taken 中，事件保持未解决。
"""

import asyncio
import copy
import uuid
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Callable, Union

from .health_aggregator import HealthAggregator
from .scheduler import PeriodicTask
from ..models.alert import Alert, Severity, parse_enum
from ..models.health import HealthStatus, SystemHealth
from ..models.recovery import DisasterEvent, DisasterType, RecoveryAction, ActionOutcome
from ..recovery.backup import BaseBackupProvider, BACKUP_COMPLETED, latest_successful_backup
from ..recovery.supervisor import BaseProcessSupervisor
from ..utils.exceptions import NotFoundError, RecoveryActionError
from ..utils.log_manager import get_logger

DEFAULT_CONFIG: Dict[str, Any] = {
    'enabled': True,
    'auto_recovery': False,
    'auto_resolve': True,
    'failure_threshold': 3,
    'recovery_thresholds': {
        'max_memory_usage': 90,
        'max_cpu_usage': 90,
        'max_error_rate': 10,
        'max_disk_usage': 90
    },
    'recovery_actions': {
        'restart_service': False,
        'restore_backup': False,
        'notify_admins': True,
        'escalation_time': 300
    },
    'health_checks': {
        'interval': 60,
        'timeout': 5
    },
    'component_groups': {
        'service_down': ['service_health'],
        'resource_exhaustion': ['memory_usage', 'cpu_usage'],
        'high_error_rate': ['error_rate']
    }
}

# 按优先级排列，同一次检查只归类为第一个命中的类型
CLASSIFICATION_ORDER = (
    DisasterType.SERVICE_DOWN,
    DisasterType.RESOURCE_EXHAUSTION,
    DisasterType.HIGH_ERROR_RATE,
)

TYPE_SEVERITY = {
    DisasterType.SERVICE_DOWN: Severity.CRITICAL,
    DisasterType.RESOURCE_EXHAUSTION: Severity.HIGH,
    DisasterType.HIGH_ERROR_RATE: Severity.HIGH,
}

TYPE_DESCRIPTIONS = {
    DisasterType.SERVICE_DOWN: '核心服务无响应',
    DisasterType.RESOURCE_EXHAUSTION: '系统资源耗尽',
    DisasterType.HIGH_ERROR_RATE: '服务错误率过高',
    DisasterType.CUSTOM: '检测到系统持续降级',
}


def merge_config(defaults: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """递归合并配置，overrides 中的值优先"""
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class DisasterRecoveryOrchestrator:
    """灾难恢复编排器，持有灾难事件的全部状态"""

    def __init__(self,
                 aggregator: HealthAggregator,
                 dispatcher=None,
                 backup_provider: Optional[BaseBackupProvider] = None,
                 supervisor: Optional[BaseProcessSupervisor] = None,
                 config: Optional[Dict[str, Any]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        初始化灾难恢复编排器

        Args:
            aggregator: 健康聚合器
            dispatcher: 用于通知管理员的通知分发器
            backup_provider: 备份提供者
            supervisor: 进程管理器
            config: disaster_recovery 配置段
            clock: 时间源
        """
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.backup_provider = backup_provider
        self.supervisor = supervisor
        self.config = merge_config(DEFAULT_CONFIG, config)
        self._clock = clock or datetime.now

        actions = self.config['recovery_actions']
        self.enabled = bool(self.config['enabled'])
        self.auto_recovery = bool(self.config['auto_recovery'])
        self.auto_resolve = bool(self.config['auto_resolve'])
        self.failure_threshold = int(self.config['failure_threshold'])
        self.escalation_time = timedelta(seconds=actions['escalation_time'])
        self.component_groups: Dict[DisasterType, List[str]] = {
            DisasterType(group): list(names)
            for group, names in self.config['component_groups'].items()
        }

        self._events: Dict[str, DisasterEvent] = {}
        self._open_by_type: Dict[DisasterType, str] = {}
        self._last_health_check: Optional[SystemHealth] = None
        self._last_observed_at: Optional[datetime] = None
        self._degraded_streak = 0
        self._lock = asyncio.Lock()

        self.task = PeriodicTask('disaster_recovery',
                                 self.config['health_checks']['interval'],
                                 self.run_health_check)
        self.logger = get_logger('disaster_recovery')

    @property
    def is_monitoring(self) -> bool:
        return self.task.is_running

    async def start_monitoring(self) -> None:
        """开始周期巡检，重复调用不会报错"""
        if not self.enabled:
            self.logger.info("灾难恢复已禁用，不启动巡检")
            return
        if self.is_monitoring:
            self.logger.debug("灾难恢复巡检已经在运行")
            return
        await self.task.start()
        self.logger.info(f"灾难恢复巡检已启动，间隔: {self.task.interval}秒")

    async def stop_monitoring(self) -> None:
        """停止周期巡检，等待正在执行的巡检完成"""
        if not self.is_monitoring:
            return
        await self.task.stop()
        self.logger.info("灾难恢复巡检已停止")

    async def run_health_check(self) -> List[DisasterEvent]:
        """
        执行一次巡检

        Returns:
            List[DisasterEvent]: 本次新建或升级的事件
        """
        health = self.aggregator.last_result()
        if health is None:
            timeout = self.config['health_checks']['timeout']
            try:
                health = await asyncio.wait_for(self.aggregator.check(), timeout=timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"尚无缓存的健康结果，且按需健康检查超时 ({timeout}秒)，跳过本次巡检")
                return []
        now = self._clock()

        async with self._lock:
            self._last_health_check = health
            touched = self._evaluate(health, now)

        for event in touched:
            await self._apply_recovery_policy(event)
        return touched

    def _evaluate(self, health: SystemHealth, now: datetime) -> List[DisasterEvent]:
        """在锁内更新事件状态，返回需要执行恢复策略的事件"""
        touched: List[DisasterEvent] = []
        unhealthy = {c.name for c in health.components.values()
                     if c.status is HealthStatus.UNHEALTHY}
        critical_failure = bool(unhealthy & set(self.component_groups.get(DisasterType.SERVICE_DOWN, [])))

        # 同一份缓存结果只计一次
        fresh = health.updated_at != self._last_observed_at
        self._last_observed_at = health.updated_at

        if health.status is HealthStatus.HEALTHY and not critical_failure:
            self._degraded_streak = 0
            if fresh and self.auto_resolve:
                self._resolve_open_events(now)
            return touched

        for event in self._open_events():
            if self._should_escalate(event, now):
                self._escalate(event, now)
                touched.append(event)

        if not fresh:
            return touched

        self._degraded_streak += 1
        if not critical_failure and self._degraded_streak < self.failure_threshold:
            self.logger.debug(f"系统状态 {health.status.value}，"
                              f"连续 {self._degraded_streak}/{self.failure_threshold} 次")
            return touched

        event_type = self._classify(unhealthy)
        open_id = self._open_by_type.get(event_type)
        if open_id is not None:
            self._refresh(self._events[open_id], health, now)
            return touched

        event = self._open_event(event_type, health, now)
        if event not in touched:
            touched.append(event)
        return touched

    def _classify(self, unhealthy: set) -> DisasterType:
        for event_type in CLASSIFICATION_ORDER:
            if unhealthy & set(self.component_groups.get(event_type, [])):
                return event_type
        return DisasterType.CUSTOM

    def _open_event(self, event_type: DisasterType, health: SystemHealth,
                    now: datetime) -> DisasterEvent:
        if event_type is DisasterType.CUSTOM:
            severity = Severity.MEDIUM if health.status is HealthStatus.UNHEALTHY else Severity.LOW
        else:
            severity = TYPE_SEVERITY[event_type]

        failing = [c.name for c in health.failing_components()]
        event = DisasterEvent(
            id=f"disaster_{uuid.uuid4().hex[:12]}",
            type=event_type,
            severity=severity,
            description=f"{TYPE_DESCRIPTIONS[event_type]}: {', '.join(failing) or health.status.value}",
            detected_at=now,
            metadata={
                'health_status': health.status.value,
                'health_score': health.score,
                'failing_components': failing,
                'last_seen': now.isoformat(),
                'occurrences': 1
            }
        )
        self._events[event.id] = event
        self._open_by_type[event_type] = event.id

        self.logger.error(f"检测到灾难事件: {event.description}",
                          extra={'context': {'event_id': event.id, 'type': event_type.value,
                                             'severity': severity.value}})
        return event

    def _refresh(self, event: DisasterEvent, health: SystemHealth, now: datetime) -> None:
        event.metadata['last_seen'] = now.isoformat()
        event.metadata['occurrences'] = event.metadata.get('occurrences', 1) + 1
        event.metadata['failing_components'] = [c.name for c in health.failing_components()]
        event.metadata['health_score'] = health.score

    def _should_escalate(self, event: DisasterEvent, now: datetime) -> bool:
        if event.metadata.get('escalated_at'):
            return False
        return now - event.detected_at >= self.escalation_time

    def _escalate(self, event: DisasterEvent, now: datetime) -> None:
        previous = event.severity
        event.severity = Severity.CRITICAL
        event.metadata['escalated_at'] = now.isoformat()
        event.record_action(RecoveryAction.ESCALATE, ActionOutcome.SUCCEEDED, previous.value)
        self.logger.error(f"灾难事件 {event.id} 超过 {self.escalation_time.total_seconds():g} 秒未解决，"
                          f"严重级别从 {previous.value} 升级为 critical")

    def _resolve_open_events(self, now: datetime) -> None:
        for event in self._open_events():
            event.resolve(now)
            event.metadata['resolved_by'] = 'auto'
            self.logger.info(f"系统已恢复健康，自动解决灾难事件: {event.id}")
        self._open_by_type.clear()

    def _open_events(self) -> List[DisasterEvent]:
        return [self._events[event_id] for event_id in self._open_by_type.values()]

    async def _apply_recovery_policy(self, event: DisasterEvent) -> None:
        """执行恢复策略，每个动作的结果都写入事件"""
        actions = self.config['recovery_actions']

        if self.auto_recovery:
            if actions.get('restart_service') and event.severity is Severity.CRITICAL:
                await self._run_action(event, RecoveryAction.RESTART_SERVICE, self._restart_service)
            if actions.get('restore_backup') and event.type is DisasterType.SERVICE_DOWN:
                await self._run_action(event, RecoveryAction.RESTORE_BACKUP, self._restore_backup)

        if actions.get('notify_admins'):
            await self._run_action(event, RecoveryAction.NOTIFY_ADMINS, self._notify_admins)

    async def _run_action(self, event: DisasterEvent, action: RecoveryAction,
                          func: Callable) -> str:
        """
        执行单个恢复动作，失败在此收敛为 failed 记录

        func 返回 (ActionOutcome, detail)。
        """
        try:
            outcome, detail = await func(event)
        except RecoveryActionError as e:
            self.logger.error(f"恢复动作 {action.value} 失败: {e.format_error()}",
                              extra={'context': e.context})
            return event.record_action(action, ActionOutcome.FAILED, e.message)
        except Exception as e:
            error = RecoveryActionError(str(e), action=action.value, event_id=event.id, cause=e)
            self.logger.error(f"恢复动作 {action.value} 异常: {error.format_error()}", exc_info=True)
            return event.record_action(action, ActionOutcome.FAILED, str(e))

        entry = event.record_action(action, outcome, detail)
        self.logger.info(f"恢复动作已执行: {entry} (事件: {event.id})")
        return entry

    async def _restart_service(self, event: DisasterEvent):
        if self.supervisor is None:
            return ActionOutcome.SKIPPED, 'no_supervisor'
        await self.supervisor.request_restart(f"{event.type.value}: {event.description}")
        return ActionOutcome.SUCCEEDED, None

    async def _restore_backup(self, event: DisasterEvent):
        if self.backup_provider is None:
            return ActionOutcome.SKIPPED, 'no_backup_provider'

        backups = await self.backup_provider.list_backups({'status': BACKUP_COMPLETED})
        latest = latest_successful_backup(backups)
        if latest is None:
            self.logger.warning("没有可用于还原的备份")
            return ActionOutcome.SKIPPED, 'no_backup'

        self.logger.warning(f"开始还原备份: {latest.id} ({latest.timestamp.isoformat()})")
        await self.backup_provider.restore_backup(latest.id, overwrite=True)
        return ActionOutcome.SUCCEEDED, latest.id

    async def _notify_admins(self, event: DisasterEvent):
        if self.dispatcher is None:
            return ActionOutcome.SKIPPED, 'no_dispatcher'

        report = await self.dispatcher.send(self._event_alert(event))
        if report.attempted == 0:
            return ActionOutcome.SKIPPED, 'no_channels'
        if not report.any_succeeded:
            raise RecoveryActionError(f"所有通知通道发送失败: {', '.join(report.failed)}",
                                      action=RecoveryAction.NOTIFY_ADMINS.value,
                                      event_id=event.id)
        return ActionOutcome.SUCCEEDED, ','.join(report.succeeded)

    def _event_alert(self, event: DisasterEvent) -> Alert:
        """把灾难事件包装成告警，复用通知通道的格式化"""
        return Alert(
            id=f"{event.id}-{len(event.recovery_actions_taken)}",
            rule_id=f"disaster.{event.type.value}",
            rule_name=f"灾难事件: {TYPE_DESCRIPTIONS[event.type]}",
            severity=event.severity,
            message=event.description,
            snapshot={
                'event_id': event.id,
                'type': event.type.value,
                'failing_components': event.metadata.get('failing_components', []),
                'recovery_actions_taken': list(event.recovery_actions_taken)
            },
            fired_at=event.detected_at
        )

    async def resolve_event(self, event_id: str) -> DisasterEvent:
        """
        手动解决灾难事件

        Args:
            event_id: 事件ID

        Returns:
            DisasterEvent: 已解决的事件

        Raises:
            NotFoundError: 事件不存在或已解决
        """
        async with self._lock:
            event = self._events.get(event_id)
            if event is None or event.resolved:
                raise NotFoundError(f"未找到未解决的灾难事件: {event_id}",
                                    resource='disaster_event', resource_id=event_id)

            event.resolve(self._clock())
            event.metadata['resolved_by'] = 'manual'
            if self._open_by_type.get(event.type) == event_id:
                del self._open_by_type[event.type]

        self.logger.info(f"灾难事件已解决: {event_id}")
        return event

    def get_events(self,
                   resolved: Optional[bool] = None,
                   severity: Optional[Union[Severity, str]] = None,
                   event_type: Optional[Union[DisasterType, str]] = None,
                   date_from: Optional[datetime] = None,
                   date_to: Optional[datetime] = None) -> List[DisasterEvent]:
        """
        按条件查询灾难事件，按检测时间从新到旧排列

        Raises:
            ValidationError: severity 或 event_type 取值无效
        """
        events = list(self._events.values())
        if resolved is not None:
            events = [e for e in events if e.resolved == resolved]
        if severity is not None:
            severity = parse_enum(Severity, severity, 'severity')
            events = [e for e in events if e.severity is severity]
        if event_type is not None:
            event_type = parse_enum(DisasterType, event_type, 'type')
            events = [e for e in events if e.type is event_type]
        if date_from is not None:
            events = [e for e in events if e.detected_at >= date_from]
        if date_to is not None:
            events = [e for e in events if e.detected_at <= date_to]
        return sorted(events, key=lambda e: e.detected_at, reverse=True)

    def get_event(self, event_id: str) -> Optional[DisasterEvent]:
        return self._events.get(event_id)

    def get_last_health_check(self) -> Optional[SystemHealth]:
        return self._last_health_check

    def get_recovery_status(self) -> Dict[str, Any]:
        """获取灾难恢复状态快照"""
        return {
            'is_monitoring': self.is_monitoring,
            'events_count': len(self._events),
            'unresolved_events': sum(1 for e in self._events.values() if not e.resolved),
            'last_health_check': self._last_health_check.to_dict() if self._last_health_check else None,
            'config': copy.deepcopy(self.config)
        }
