"""工具模块"""

from .exceptions import (OpsMonitorError, ErrorKind, ValidationError, NotFoundError,
                         ProbeTimeoutError, DeliveryError, RecoveryActionError,
                         ConfigError, SchedulerError)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'OpsMonitorError', 'ErrorKind', 'ValidationError', 'NotFoundError',
    'ProbeTimeoutError', 'DeliveryError', 'RecoveryActionError',
    'ConfigError', 'SchedulerError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
