"""进程管理协作方

灾难恢复只负责发出重启请求，真正的重启由进程管理器（systemd、supervisord 等）完成。
"""

import signal
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional, List

import psutil

from ..utils.exceptions import RecoveryActionError
from ..utils.log_manager import get_logger


class BaseProcessSupervisor(ABC):
    """进程管理器抽象基类"""

    @abstractmethod
    async def request_restart(self, reason: str) -> None:
        """
        请求重启被监控的服务

        Args:
            reason: 重启原因

        Raises:
            RecoveryActionError: 请求发送失败
        """
        pass


class SignalProcessSupervisor(BaseProcessSupervisor):
    """向指定进程发送信号，由外部进程管理器负责拉起"""

    def __init__(self, pid: int, signal_name: str = 'SIGTERM'):
        """
        初始化

        Args:
            pid: 目标进程ID
            signal_name: 信号名称，如 SIGTERM、SIGHUP
        """
        try:
            self.signal = signal.Signals[signal_name]
        except KeyError:
            raise ValueError(f"未知的信号: {signal_name}")
        self.pid = pid
        self.logger = get_logger('supervisor.signal')

    async def request_restart(self, reason: str) -> None:
        try:
            psutil.Process(self.pid).send_signal(self.signal)
        except psutil.Error as e:
            raise RecoveryActionError(f"向进程 {self.pid} 发送 {self.signal.name} 失败: {e}",
                                      action='restart_service',
                                      context={'pid': self.pid}, cause=e)

        self.logger.warning(f"已向进程 {self.pid} 发送 {self.signal.name}，原因: {reason}")


class LoggingProcessSupervisor(BaseProcessSupervisor):
    """只记录重启请求，不做任何操作"""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.logger = get_logger('supervisor.logging')

    async def request_restart(self, reason: str) -> None:
        self.requests.append({'reason': reason, 'requested_at': datetime.now()})
        self.logger.warning(f"收到服务重启请求（未配置进程管理器）: {reason}")


def supervisor_from_config(config: Optional[Dict[str, Any]]) -> BaseProcessSupervisor:
    """根据 disaster_recovery.supervisor 配置创建进程管理器"""
    config = config or {}
    if config.get('pid'):
        return SignalProcessSupervisor(config['pid'], config.get('signal', 'SIGTERM'))
    return LoggingProcessSupervisor()
