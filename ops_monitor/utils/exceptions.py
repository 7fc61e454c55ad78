"""自定义异常类和错误分类

所有异常都携带一个封闭的 ErrorKind 和结构化的上下文字典，
调用方按种类匹配，而不是解析错误消息文本。
"""

import traceback
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(Enum):
    """错误种类枚举"""
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    PROBE_TIMEOUT = "probe_timeout"
    DELIVERY_ERROR = "delivery_error"
    RECOVERY_ACTION_ERROR = "recovery_action_error"
    CONFIG_ERROR = "config_error"
    SCHEDULER_ERROR = "scheduler_error"


class OpsMonitorError(Exception):
    """监控与自动恢复系统基础异常类"""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN_ERROR,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.context = context or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'kind': self.kind.value,
            'message': self.message,
            'context': self.context,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.kind.name}] {self.message}"
        if self.context:
            context_str = ", ".join([f"{k}={v}" for k, v in self.context.items()])
            error_msg += f" (详情: {context_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ValidationError(OpsMonitorError):
    """规则或通道配置不合法，在添加时拒绝"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if field:
            context['field'] = field
        super().__init__(message, ErrorKind.VALIDATION_ERROR, context,
                         recoverable=False, **kwargs)


class NotFoundError(OpsMonitorError):
    """规则、告警或灾难事件ID不存在"""

    def __init__(self, message: str, resource: Optional[str] = None,
                 resource_id: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if resource:
            context['resource'] = resource
        if resource_id:
            context['resource_id'] = resource_id
        super().__init__(message, ErrorKind.NOT_FOUND, context,
                         recoverable=False, **kwargs)


class ProbeTimeoutError(OpsMonitorError):
    """探针执行超时（内部使用，映射为unhealthy组件检查结果）"""

    def __init__(self, message: str, probe_name: Optional[str] = None,
                 timeout: Optional[float] = None, **kwargs):
        context = kwargs.pop('context', {})
        if probe_name:
            context['probe_name'] = probe_name
        if timeout is not None:
            context['timeout'] = timeout
        super().__init__(message, ErrorKind.PROBE_TIMEOUT, context, **kwargs)


class DeliveryError(OpsMonitorError):
    """单个通知通道投递失败"""

    def __init__(self, message: str, channel: Optional[str] = None,
                 channel_type: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if channel:
            context['channel'] = channel
        if channel_type:
            context['channel_type'] = channel_type
        super().__init__(message, ErrorKind.DELIVERY_ERROR, context, **kwargs)


class RecoveryActionError(OpsMonitorError):
    """恢复动作执行失败"""

    def __init__(self, message: str, action: Optional[str] = None,
                 event_id: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if action:
            context['action'] = action
        if event_id:
            context['event_id'] = event_id
        super().__init__(message, ErrorKind.RECOVERY_ACTION_ERROR, context, **kwargs)


class ConfigError(OpsMonitorError):
    """配置文件相关异常"""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_path:
            context['config_path'] = config_path
        super().__init__(message, ErrorKind.CONFIG_ERROR, context,
                         recoverable=False, **kwargs)


class SchedulerError(OpsMonitorError):
    """调度器相关异常"""

    def __init__(self, message: str, task_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if task_name:
            context['task_name'] = task_name
        super().__init__(message, ErrorKind.SCHEDULER_ERROR, context, **kwargs)
