"""通知分发器

把触发或恢复的告警并发投递到所有启用的通道。
每个通道的失败相互隔离：记录日志、写入分发报告，不影响其它通道，也不自动重试。
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional, Union, Callable, Type

from .base import BaseAlerter, NotificationPayload, EVENT_FIRED
from .chat_alerters import SlackAlerter, DiscordAlerter
from .email_alerter import EmailAlerter
from .webhook_alerter import WebhookAlerter
from ..models.alert import Alert, Severity
from ..models.channel import AlertChannel, ChannelType, channel_from_dict
from ..utils.exceptions import DeliveryError, ValidationError, ErrorKind
from ..utils.log_manager import get_logger

ALERTER_CLASSES: Dict[ChannelType, Type[BaseAlerter]] = {
    ChannelType.WEBHOOK: WebhookAlerter,
    ChannelType.SLACK: SlackAlerter,
    ChannelType.DISCORD: DiscordAlerter,
    ChannelType.EMAIL: EmailAlerter,
}


def create_alerter(channel: AlertChannel) -> BaseAlerter:
    """根据通道类型创建告警器"""
    return ALERTER_CLASSES[channel.type](channel)


@dataclass
class ChannelResult:
    """单个通道的投递结果"""
    channel: str
    channel_type: str
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel': self.channel,
            'channel_type': self.channel_type,
            'success': self.success,
            'error': self.error,
            'error_kind': self.error_kind
        }


@dataclass
class DispatchReport:
    """一次分发的汇总结果"""
    alert_id: str
    event: str = EVENT_FIRED
    results: List[ChannelResult] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[str]:
        return [r.channel for r in self.results if r.success]

    @property
    def failed(self) -> List[str]:
        return [r.channel for r in self.results if not r.success]

    @property
    def any_succeeded(self) -> bool:
        return any(r.success for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'alert_id': self.alert_id,
            'event': self.event,
            'attempted': self.attempted,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'results': [r.to_dict() for r in self.results]
        }


class NotificationDispatcher:
    """通知分发器，持有通道配置但不持有告警状态"""

    def __init__(self, service_name: str = 'ops-monitor',
                 channels: Optional[List[Union[AlertChannel, Dict[str, Any]]]] = None,
                 alerter_factory: Callable[[AlertChannel], BaseAlerter] = create_alerter,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        初始化通知分发器

        Args:
            service_name: 写入通知内容的服务名
            channels: 初始通道列表（AlertChannel 或配置字典）
            alerter_factory: 根据通道创建告警器的函数
            clock: 时间源
        """
        self.service_name = service_name
        self._alerter_factory = alerter_factory
        self._clock = clock or datetime.now
        self._alerters: Dict[str, BaseAlerter] = {}
        self.sent_count = 0
        self.failed_count = 0
        self.logger = get_logger('dispatcher')

        for channel in channels or []:
            self.add_channel(channel)

    def add_channel(self, channel: Union[AlertChannel, Dict[str, Any]]) -> AlertChannel:
        """
        添加通知通道，添加时完成校验

        Args:
            channel: AlertChannel 或通道配置字典

        Returns:
            AlertChannel: 已添加的通道

        Raises:
            ValidationError: 配置不合法或名称重复
        """
        if isinstance(channel, dict):
            channel = channel_from_dict(channel)
        elif isinstance(channel, AlertChannel):
            channel.validate()
        else:
            raise ValidationError(f"通道必须是 AlertChannel 或配置字典: {type(channel)}")

        if channel.name in self._alerters:
            raise ValidationError(f"通道名称重复: {channel.name}", field='name',
                                  context={'channel': channel.name})

        self._alerters[channel.name] = self._alerter_factory(channel)
        self.logger.info(f"已添加通知通道: {channel.name} ({channel.type.value})")
        return channel

    def remove_channel(self, name: str) -> bool:
        """
        移除通知通道

        Args:
            name: 通道名称

        Returns:
            bool: 是否成功移除
        """
        if self._alerters.pop(name, None) is None:
            return False
        self.logger.info(f"已移除通知通道: {name}")
        return True

    def get_channels(self) -> List[AlertChannel]:
        return [alerter.channel for alerter in self._alerters.values()]

    def reload_channels(self, channels: List[Union[AlertChannel, Dict[str, Any]]]) -> None:
        """
        整体替换通道配置，任何一个通道校验失败时保持原配置不变

        Raises:
            ValidationError: 新配置不合法
        """
        staging = NotificationDispatcher(self.service_name, channels,
                                         self._alerter_factory, self._clock)
        self._alerters = staging._alerters
        self.logger.info(f"通知通道已重新加载，共 {len(self._alerters)} 个")

    async def send(self, alert: Alert, event: str = EVENT_FIRED) -> DispatchReport:
        """
        把告警投递到所有启用的通道

        任何通道的失败都不会抛出，也不会阻止其它通道的投递。

        Args:
            alert: 已提交的告警
            event: fired 或 resolved

        Returns:
            DispatchReport: 各通道的投递结果
        """
        report = DispatchReport(alert_id=alert.id, event=event)
        alerters = [a for a in self._alerters.values() if a.channel.enabled]
        if not alerters:
            self.logger.warning("没有启用的通知通道，跳过告警发送")
            return report

        payload = NotificationPayload(alert=alert, service_name=self.service_name,
                                      timestamp=self._clock(), event=event)
        report.results = list(await asyncio.gather(
            *(self._deliver_to(alerter, payload) for alerter in alerters)))

        self._log_report(report, alert)
        return report

    async def _deliver_to(self, alerter: BaseAlerter,
                          payload: NotificationPayload) -> ChannelResult:
        """向单个通道投递，异常在此边界内收敛"""
        try:
            await alerter.deliver(payload)
            self.sent_count += 1
            return ChannelResult(alerter.name, alerter.alerter_type, True)
        except DeliveryError as e:
            self.failed_count += 1
            self.logger.error(f"通道 {alerter.name} 发送失败: {e.format_error()}",
                              extra={'context': e.context})
            return ChannelResult(alerter.name, alerter.alerter_type, False,
                                 e.message, e.kind.value)
        except Exception as e:
            self.failed_count += 1
            self.logger.error(f"通道 {alerter.name} 发送异常: {e}", exc_info=True)
            return ChannelResult(alerter.name, alerter.alerter_type, False,
                                 str(e), ErrorKind.DELIVERY_ERROR.value)

    def _log_report(self, report: DispatchReport, alert: Alert) -> None:
        if report.succeeded:
            self.logger.info(
                f"告警发送成功 {len(report.succeeded)}/{report.attempted} 个通道 "
                f"(规则: {alert.rule_name}, 事件: {report.event})"
            )
        if report.failed:
            self.logger.warning(
                f"以下通道发送失败: {', '.join(report.failed)} (规则: {alert.rule_name})"
            )

    async def test_channels(self) -> DispatchReport:
        """向所有启用的通道发送一条测试告警"""
        now = self._clock()
        alert = Alert(
            id=f"test-{uuid.uuid4().hex[:8]}",
            rule_id='test',
            rule_name='通道连通性测试',
            severity=Severity.LOW,
            message='这是一条测试告警，用于验证通知通道配置是否正确',
            snapshot={'test': True},
            fired_at=now
        )
        self.logger.info("开始测试通知通道")
        return await self.send(alert)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'channels': [alerter.get_config_summary() for alerter in self._alerters.values()],
            'enabled_channels': sum(1 for a in self._alerters.values() if a.channel.enabled),
            'sent_count': self.sent_count,
            'failed_count': self.failed_count
        }
