"""告警通知模块"""

from .base import BaseAlerter, NotificationPayload, EVENT_FIRED, EVENT_RESOLVED
from .chat_alerters import SlackAlerter, DiscordAlerter
from .dispatcher import NotificationDispatcher, DispatchReport, ChannelResult, create_alerter
from .email_alerter import EmailAlerter
from .webhook_alerter import WebhookAlerter

__all__ = [
    'BaseAlerter', 'NotificationPayload', 'EVENT_FIRED', 'EVENT_RESOLVED',
    'NotificationDispatcher', 'DispatchReport', 'ChannelResult', 'create_alerter',
    'WebhookAlerter', 'SlackAlerter', 'DiscordAlerter', 'EmailAlerter'
]
