"""异常类测试"""

import pytest
from datetime import datetime

from ops_monitor.utils.exceptions import (
    OpsMonitorError,
    ErrorKind,
    ValidationError,
    NotFoundError,
    ProbeTimeoutError,
    DeliveryError,
    RecoveryActionError,
    ConfigError,
    SchedulerError
)


class TestErrorKind:
    """错误种类测试"""

    def test_error_kind_values(self):
        """测试错误种类取值"""
        assert ErrorKind.VALIDATION_ERROR.value == "validation_error"
        assert ErrorKind.NOT_FOUND.value == "not_found"
        assert ErrorKind.PROBE_TIMEOUT.value == "probe_timeout"
        assert ErrorKind.DELIVERY_ERROR.value == "delivery_error"
        assert ErrorKind.RECOVERY_ACTION_ERROR.value == "recovery_action_error"

    def test_error_kind_is_closed(self):
        """测试错误种类是封闭集合"""
        assert len(list(ErrorKind)) == 8


class TestOpsMonitorError:
    """基础异常测试"""

    def test_basic_error_creation(self):
        """测试基础错误创建"""
        error = OpsMonitorError("测试错误")

        assert str(error) == "测试错误"
        assert error.message == "测试错误"
        assert error.kind == ErrorKind.UNKNOWN_ERROR
        assert error.context == {}
        assert error.cause is None
        assert error.recoverable is True
        assert isinstance(error.timestamp, datetime)

    def test_error_with_cause(self):
        """测试带原因的错误"""
        cause = ValueError("原始错误")
        error = OpsMonitorError("包装错误", cause=cause)

        assert error.cause is cause
        assert "原因: 原始错误" in error.format_error()

    def test_format_error_with_context(self):
        """测试格式化带上下文的错误"""
        error = OpsMonitorError("测试错误", ErrorKind.NOT_FOUND, {'rule_id': 'cpu-high'})

        assert error.format_error() == "[NOT_FOUND] 测试错误 (详情: rule_id=cpu-high)"

    def test_to_dict(self):
        """测试转换为字典"""
        error = OpsMonitorError("测试错误", ErrorKind.CONFIG_ERROR, {'key': 'value'},
                                recoverable=False)
        error_dict = error.to_dict()

        assert error_dict['kind'] == 'config_error'
        assert error_dict['message'] == "测试错误"
        assert error_dict['context'] == {'key': 'value'}
        assert error_dict['recoverable'] is False
        assert error_dict['cause'] is None


class TestSpecificErrors:
    """具体异常类测试"""

    def test_validation_error(self):
        error = ValidationError("阈值无效", field='threshold', context={'rule_id': 'r1'})

        assert error.kind == ErrorKind.VALIDATION_ERROR
        assert error.context == {'rule_id': 'r1', 'field': 'threshold'}
        assert error.recoverable is False

    def test_not_found_error(self):
        error = NotFoundError("告警不存在", resource='alert', resource_id='a-1')

        assert error.kind == ErrorKind.NOT_FOUND
        assert error.context['resource'] == 'alert'
        assert error.context['resource_id'] == 'a-1'

    def test_probe_timeout_error(self):
        error = ProbeTimeoutError("探针超时", probe_name='db', timeout=5.0)

        assert error.kind == ErrorKind.PROBE_TIMEOUT
        assert error.context == {'probe_name': 'db', 'timeout': 5.0}

    def test_delivery_error(self):
        cause = ConnectionError("连接被拒绝")
        error = DeliveryError("发送失败", channel='ops', channel_type='webhook',
                              context={'status': 500}, cause=cause)

        assert error.kind == ErrorKind.DELIVERY_ERROR
        assert error.context == {'status': 500, 'channel': 'ops', 'channel_type': 'webhook'}
        assert error.cause is cause

    def test_recovery_action_error(self):
        error = RecoveryActionError("还原失败", action='restore_backup', event_id='e-1')

        assert error.kind == ErrorKind.RECOVERY_ACTION_ERROR
        assert error.context == {'action': 'restore_backup', 'event_id': 'e-1'}

    def test_config_error(self):
        error = ConfigError("配置文件不存在", config_path='/tmp/missing.yaml')

        assert error.kind == ErrorKind.CONFIG_ERROR
        assert error.context['config_path'] == '/tmp/missing.yaml'
        assert error.recoverable is False

    def test_scheduler_error(self):
        error = SchedulerError("任务已存在", task_name='health_check')

        assert error.kind == ErrorKind.SCHEDULER_ERROR
        assert error.context['task_name'] == 'health_check'

    def test_all_errors_are_ops_monitor_errors(self):
        """测试所有异常都继承自基础异常"""
        for error_cls in (ValidationError, NotFoundError, ProbeTimeoutError, DeliveryError,
                          RecoveryActionError, ConfigError, SchedulerError):
            assert issubclass(error_cls, OpsMonitorError)

        with pytest.raises(OpsMonitorError):
            raise DeliveryError("发送失败")
