"""数据模型模块"""

from .alert import AlertRule, Alert, Severity, Condition
from .channel import (AlertChannel, ChannelType, WebhookChannelConfig, SlackChannelConfig,
                      DiscordChannelConfig, EmailChannelConfig, channel_from_dict)
from .health import ComponentCheck, SystemHealth, HealthStatus
from .metric import Metric, MetricUnit, PerformanceRecord
from .recovery import DisasterEvent, DisasterType, RecoveryAction, ActionOutcome

__all__ = [
    'AlertRule', 'Alert', 'Severity', 'Condition',
    'AlertChannel', 'ChannelType', 'WebhookChannelConfig', 'SlackChannelConfig',
    'DiscordChannelConfig', 'EmailChannelConfig', 'channel_from_dict',
    'ComponentCheck', 'SystemHealth', 'HealthStatus',
    'Metric', 'MetricUnit', 'PerformanceRecord',
    'DisasterEvent', 'DisasterType', 'RecoveryAction', 'ActionOutcome'
]
