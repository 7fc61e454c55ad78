"""聊天类通道告警器（Slack、Discord）"""

from typing import Dict, Any, List

from .base import NotificationPayload, EVENT_RESOLVED
from .webhook_alerter import HttpJsonAlerter
from ..models.alert import Severity

SLACK_COLORS = {
    Severity.CRITICAL: 'danger',
    Severity.HIGH: 'warning',
    Severity.MEDIUM: '#ffaa00',
    Severity.LOW: 'good',
}

DISCORD_COLORS = {
    Severity.CRITICAL: 0xff0000,
    Severity.HIGH: 0xff6600,
    Severity.MEDIUM: 0xffaa00,
    Severity.LOW: 0x00ff00,
}

RESOLVED_SLACK_COLOR = 'good'
RESOLVED_DISCORD_COLOR = 0x00ff00


def _title(payload: NotificationPayload) -> str:
    alert = payload.alert
    if payload.event == EVENT_RESOLVED:
        return f"✅ 已恢复: {alert.rule_name}"
    return f"🚨 [{alert.severity.value.upper()}] {alert.rule_name}"


def _snapshot_fields(payload: NotificationPayload) -> List[Dict[str, str]]:
    alert = payload.alert
    fields = [
        {'name': '级别', 'value': alert.severity.value},
        {'name': '触发时间', 'value': alert.fired_at.strftime('%Y-%m-%d %H:%M:%S')},
    ]
    if 'metric' in alert.snapshot:
        fields.append({'name': '指标', 'value': str(alert.snapshot['metric'])})
    if 'value' in alert.snapshot:
        fields.append({'name': '当前值', 'value': str(alert.snapshot['value'])})
    if 'threshold' in alert.snapshot:
        fields.append({'name': '阈值', 'value': str(alert.snapshot['threshold'])})
    if alert.resolved_at:
        fields.append({'name': '恢复时间',
                       'value': alert.resolved_at.strftime('%Y-%m-%d %H:%M:%S')})
    return fields


class SlackAlerter(HttpJsonAlerter):
    """Slack incoming webhook 告警器，按级别设置附件颜色"""

    def build_message(self, payload: NotificationPayload) -> Dict[str, Any]:
        alert = payload.alert
        color = RESOLVED_SLACK_COLOR if payload.event == EVENT_RESOLVED \
            else SLACK_COLORS[alert.severity]

        message: Dict[str, Any] = {
            'text': _title(payload),
            'attachments': [{
                'color': color,
                'title': alert.rule_name,
                'text': alert.message,
                'fields': [{'title': f['name'], 'value': f['value'], 'short': True}
                           for f in _snapshot_fields(payload)],
                'footer': payload.service_name,
                'ts': int(payload.timestamp.timestamp())
            }]
        }
        if self.config.channel:
            message['channel'] = self.config.channel
        if self.config.username:
            message['username'] = self.config.username
        return message

    async def deliver(self, payload: NotificationPayload) -> None:
        await self._post_json(self.config.webhook_url, self.build_message(payload),
                              alert_id=payload.alert.id)


class DiscordAlerter(HttpJsonAlerter):
    """Discord webhook 告警器，使用 embed 展示告警"""

    def build_message(self, payload: NotificationPayload) -> Dict[str, Any]:
        alert = payload.alert
        color = RESOLVED_DISCORD_COLOR if payload.event == EVENT_RESOLVED \
            else DISCORD_COLORS[alert.severity]

        message: Dict[str, Any] = {
            'embeds': [{
                'title': _title(payload),
                'description': alert.message,
                'color': color,
                'fields': [dict(f, inline=True) for f in _snapshot_fields(payload)],
                'timestamp': payload.timestamp.isoformat(),
                'footer': {'text': payload.service_name}
            }]
        }
        if self.config.username:
            message['username'] = self.config.username
        return message

    async def deliver(self, payload: NotificationPayload) -> None:
        await self._post_json(self.config.webhook_url, self.build_message(payload),
                              alert_id=payload.alert.id)
