"""通知通道配置模型

每种通道类型对应一个独立的配置类，在添加通道时完成校验。
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Union
from urllib.parse import urlparse

from ..utils.exceptions import ValidationError

_EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class ChannelType(Enum):
    """通道类型"""
    WEBHOOK = "webhook"
    SLACK = "slack"
    DISCORD = "discord"
    EMAIL = "email"


def _check_url(url: Any, field_name: str) -> None:
    if not url or not isinstance(url, str):
        raise ValidationError(f"缺少 {field_name} 配置", field=field_name)
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError(f"{field_name} 格式无效: {url}", field=field_name)


def _check_timeout(timeout: Any) -> None:
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValidationError(f"timeout 必须是正数: {timeout}", field='timeout')


@dataclass(frozen=True)
class WebhookChannelConfig:
    """通用 webhook，发送结构化 JSON"""
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = 'POST'
    timeout: float = 10.0

    @property
    def kind(self) -> ChannelType:
        return ChannelType.WEBHOOK

    def validate(self) -> None:
        _check_url(self.url, 'url')
        if self.method.upper() not in ('POST', 'PUT', 'PATCH'):
            raise ValidationError(f"不支持的HTTP方法: {self.method}", field='method')
        if not isinstance(self.headers, dict):
            raise ValidationError("headers 必须是字典类型", field='headers')
        _check_timeout(self.timeout)


@dataclass(frozen=True)
class SlackChannelConfig:
    """Slack incoming webhook"""
    webhook_url: str
    channel: Optional[str] = None
    username: Optional[str] = None
    timeout: float = 10.0

    @property
    def kind(self) -> ChannelType:
        return ChannelType.SLACK

    def validate(self) -> None:
        _check_url(self.webhook_url, 'webhook_url')
        _check_timeout(self.timeout)


@dataclass(frozen=True)
class DiscordChannelConfig:
    """Discord webhook"""
    webhook_url: str
    username: Optional[str] = None
    timeout: float = 10.0

    @property
    def kind(self) -> ChannelType:
        return ChannelType.DISCORD

    def validate(self) -> None:
        _check_url(self.webhook_url, 'webhook_url')
        _check_timeout(self.timeout)


@dataclass(frozen=True)
class EmailChannelConfig:
    """SMTP 邮件通道"""
    to: List[str]
    smtp_server: str
    smtp_port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_email: Optional[str] = None
    from_name: str = '运维监控系统'
    use_tls: bool = False
    start_tls: bool = True
    timeout: float = 30.0

    @property
    def kind(self) -> ChannelType:
        return ChannelType.EMAIL

    @property
    def sender(self) -> str:
        return self.from_email or self.username or ''

    def validate(self) -> None:
        if not self.smtp_server:
            raise ValidationError("缺少SMTP服务器配置", field='smtp_server')
        if isinstance(self.smtp_port, bool) or not isinstance(self.smtp_port, int) \
                or self.smtp_port <= 0:
            raise ValidationError(f"SMTP端口无效: {self.smtp_port}", field='smtp_port')
        if not self.to or not isinstance(self.to, list):
            raise ValidationError("缺少收件人邮箱配置", field='to')
        if not self.sender:
            raise ValidationError("缺少发件人邮箱配置", field='from_email')
        for address in list(self.to) + [self.sender]:
            if not isinstance(address, str) or not _EMAIL_PATTERN.match(address):
                raise ValidationError(f"邮箱格式无效: {address}", field='to')
        if self.use_tls and self.start_tls:
            raise ValidationError("不能同时启用 use_tls 和 start_tls", field='use_tls')
        _check_timeout(self.timeout)


ChannelConfig = Union[WebhookChannelConfig, SlackChannelConfig,
                      DiscordChannelConfig, EmailChannelConfig]


@dataclass
class AlertChannel:
    """已配置的通知通道"""
    name: str
    config: ChannelConfig
    enabled: bool = True

    @property
    def type(self) -> ChannelType:
        return self.config.kind

    def validate(self) -> None:
        if not self.name or not isinstance(self.name, str):
            raise ValidationError("通道名称不能为空", field='name')
        try:
            self.config.validate()
        except ValidationError as e:
            e.context.setdefault('channel', self.name)
            e.context.setdefault('channel_type', self.type.value)
            raise

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type.value,
            'enabled': self.enabled
        }


_CONFIG_FIELDS = {
    ChannelType.WEBHOOK: (WebhookChannelConfig, ('url', 'headers', 'method', 'timeout')),
    ChannelType.SLACK: (SlackChannelConfig, ('webhook_url', 'channel', 'username', 'timeout')),
    ChannelType.DISCORD: (DiscordChannelConfig, ('webhook_url', 'username', 'timeout')),
    ChannelType.EMAIL: (EmailChannelConfig, ('to', 'smtp_server', 'smtp_port', 'username',
                                             'password', 'from_email', 'from_name',
                                             'use_tls', 'start_tls', 'timeout')),
}


def channel_from_dict(data: Dict[str, Any]) -> AlertChannel:
    """
    从配置字典创建通道

    Args:
        data: 通道配置，例如 {name, type, enabled, url, headers}

    Returns:
        AlertChannel: 已校验的通道

    Raises:
        ValidationError: 类型未知或字段不合法
    """
    if not isinstance(data, dict):
        raise ValidationError("通道配置必须是字典类型")

    name = data.get('name')
    raw_type = data.get('type')
    try:
        channel_type = ChannelType(str(raw_type).lower())
    except ValueError:
        valid = [t.value for t in ChannelType]
        raise ValidationError(f"不支持的通道类型: {raw_type}，支持的类型: {valid}",
                              field='type', context={'channel': name})

    config_cls, fields = _CONFIG_FIELDS[channel_type]
    kwargs = {key: data[key] for key in fields if key in data}
    if channel_type is ChannelType.EMAIL and isinstance(kwargs.get('to'), str):
        kwargs['to'] = [kwargs['to']]

    try:
        config = config_cls(**kwargs)
    except TypeError as e:
        raise ValidationError(f"通道 '{name}' 配置缺少必需字段: {e}",
                              context={'channel': name, 'channel_type': channel_type.value},
                              cause=e)

    channel = AlertChannel(name=name, config=config, enabled=bool(data.get('enabled', True)))
    channel.validate()
    return channel
