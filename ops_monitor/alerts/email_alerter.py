"""邮件告警器实现"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any

import aiosmtplib

from .base import BaseAlerter, NotificationPayload, EVENT_RESOLVED
from ..models.channel import AlertChannel
from ..utils.exceptions import DeliveryError

DEFAULT_BODY_TEMPLATE = """运维监控告警通知

服务名称: {service_name}
告警规则: {rule_name}
告警级别: {severity}
告警状态: {status}
触发时间: {fired_at}
告警内容: {message}
{details}
---
此邮件由运维监控系统自动发送，请勿回复。
"""


class EmailAlerter(BaseAlerter):
    """邮件告警器，通过SMTP协议发送邮件告警"""

    def __init__(self, channel: AlertChannel):
        super().__init__(channel)
        self.smtp_server = self.config.smtp_server
        self.smtp_port = self.config.smtp_port
        self.from_email = self.config.sender
        self.to_emails = list(self.config.to)

    async def deliver(self, payload: NotificationPayload) -> None:
        """
        发送告警邮件

        Args:
            payload: 通知内容

        Raises:
            DeliveryError: SMTP发送失败
        """
        email_msg = self._create_email_message(payload)

        try:
            await aiosmtplib.send(
                email_msg,
                hostname=self.smtp_server,
                port=self.smtp_port,
                username=self.config.username,
                password=self.config.password,
                use_tls=self.config.use_tls,
                start_tls=self.config.start_tls,
                timeout=self.get_timeout()
            )
        except Exception as e:
            raise DeliveryError(f"SMTP发送失败: {e}", channel=self.name,
                                channel_type=self.alerter_type,
                                context={'alert_id': payload.alert.id}, cause=e)

        self.logger.info(f"邮件告警发送成功: {self.from_email} -> {', '.join(self.to_emails)}")

    def _create_email_message(self, payload: NotificationPayload) -> MIMEMultipart:
        alert = payload.alert
        status = '已恢复' if payload.event == EVENT_RESOLVED else '触发'

        email_msg = MIMEMultipart()
        email_msg['From'] = formataddr((self.config.from_name, self.from_email))
        email_msg['To'] = ', '.join(self.to_emails)
        email_msg['Subject'] = (f"[{alert.severity.value.upper()}] {alert.rule_name} "
                                f"- {payload.service_name} ({status})")

        details = "\n".join(f"{key}: {value}" for key, value in alert.snapshot.items())
        body = DEFAULT_BODY_TEMPLATE.format(
            service_name=payload.service_name,
            rule_name=alert.rule_name,
            severity=alert.severity.value,
            status=status,
            fired_at=alert.fired_at.strftime('%Y-%m-%d %H:%M:%S'),
            message=alert.message,
            details=details
        )
        email_msg.attach(MIMEText(body, 'plain', 'utf-8'))
        return email_msg

    def get_config_summary(self) -> Dict[str, Any]:
        summary = super().get_config_summary()
        summary.update({
            'smtp_server': self.smtp_server,
            'smtp_port': self.smtp_port,
            'from_email': self.from_email,
            'to_emails_count': len(self.to_emails),
            'use_tls': self.config.use_tls,
            'start_tls': self.config.start_tls
        })
        return summary
