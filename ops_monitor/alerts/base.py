"""告警器基类"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any

from ..models.alert import Alert
from ..models.channel import AlertChannel
from ..utils.log_manager import get_logger

EVENT_FIRED = 'fired'
EVENT_RESOLVED = 'resolved'


@dataclass
class NotificationPayload:
    """所有通道统一的通知内容"""
    alert: Alert
    service_name: str
    timestamp: datetime = field(default_factory=datetime.now)
    event: str = EVENT_FIRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'alert': self.alert.to_dict(),
            'timestamp': self.timestamp.isoformat(),
            'service_name': self.service_name,
            'event': self.event
        }


class BaseAlerter(ABC):
    """告警器抽象基类，每个实例对应一个已校验的通知通道"""

    def __init__(self, channel: AlertChannel):
        """
        初始化告警器

        Args:
            channel: 通知通道
        """
        self.channel = channel
        self.name = channel.name
        self.config = channel.config
        self.alerter_type = channel.type.value
        self.logger = get_logger(f'alerter.{self.alerter_type}.{self.name}')

    @abstractmethod
    async def deliver(self, payload: NotificationPayload) -> None:
        """
        投递一条通知

        Args:
            payload: 通知内容

        Raises:
            DeliveryError: 投递失败
        """
        pass

    def get_timeout(self) -> float:
        """
        获取超时时间配置

        Returns:
            float: 超时时间（秒）
        """
        return float(self.config.timeout)

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.alerter_type,
            'enabled': self.channel.enabled,
            'timeout': self.get_timeout()
        }
