"""
日志管理器测试模块
"""

import logging
import os
import tempfile

import pytest

from ops_monitor.utils.log_manager import (
    LogManager, LogLevel, ContextFormatter, get_logger, configure_logging, log_manager
)


class TestLogManager:
    """日志管理器测试类"""

    def setup_method(self):
        """每个测试方法前的设置"""
        # 重置单例实例
        LogManager._instance = None
        LogManager._initialized = False

    def teardown_method(self):
        LogManager().cleanup()
        LogManager._instance = None
        LogManager._initialized = False

    def test_singleton_pattern(self):
        """测试单例模式"""
        manager1 = LogManager()
        manager2 = LogManager()

        assert manager1 is manager2

    def test_default_configuration(self):
        """测试默认配置"""
        manager = LogManager()

        settings = manager.settings
        assert settings.level == LogLevel.INFO
        assert settings.file is None
        assert settings.max_bytes == 10 * 1024 * 1024
        assert settings.backups == 5
        assert settings.console is True
        assert manager.is_configured is False

    def test_configure_log_level(self):
        """测试日志级别配置"""
        manager = LogManager()

        manager.configure({'log_level': 'debug'})

        assert manager.settings.level == LogLevel.DEBUG
        assert logging.getLogger('ops_monitor').level == logging.DEBUG

    def test_configure_invalid_log_level(self):
        manager = LogManager()

        with pytest.raises(ValueError, match="无效的日志级别"):
            manager.configure({'log_level': 'VERBOSE'})

        assert manager.settings.level == LogLevel.INFO

    def test_component_levels(self):
        """测试按组件设置日志级别"""
        manager = LogManager()

        manager.configure({'log_level': 'WARNING', 'component_levels': {'dispatcher': 'debug'}})

        assert logging.getLogger('ops_monitor.dispatcher').level == logging.DEBUG
        assert logging.getLogger('ops_monitor').level == logging.WARNING
        assert manager.get_log_stats()['component_levels'] == {'dispatcher': 'DEBUG'}

        manager.cleanup()

        assert logging.getLogger('ops_monitor.dispatcher').level == logging.NOTSET

    def test_invalid_component_level(self):
        manager = LogManager()

        with pytest.raises(ValueError):
            manager.configure({'component_levels': {'dispatcher': 'LOUD'}})

    def test_configure_file_logging(self):
        """测试文件日志输出"""
        manager = LogManager()

        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = os.path.join(temp_dir, 'logs', 'ops-monitor.log')
            manager.configure({'log_file': log_file, 'enable_console': False,
                               'max_log_size': 1024, 'log_backup_count': 2})

            logger = manager.get_logger('rule_engine')
            logger.info("测试日志消息", extra={'context': {'rule_id': 'cpu-high'}})
            for handler in logging.getLogger('ops_monitor').handlers:
                handler.flush()

            with open(log_file, encoding='utf-8') as f:
                content = f.read()

            stats = manager.get_log_stats()
            manager.cleanup()

        assert "测试日志消息 [rule_id=cpu-high]" in content
        assert stats['handlers_count'] == 1
        assert stats['max_file_size'] == 1024
        assert stats['backup_count'] == 2

    def test_reconfigure_replaces_handlers(self):
        manager = LogManager()

        manager.configure({})
        manager.configure({})

        assert len(logging.getLogger('ops_monitor').handlers) == 1

    def test_get_logger_namespace(self):
        manager = LogManager()

        assert manager.get_logger('dispatcher').name == 'ops_monitor.dispatcher'
        assert manager.get_logger('ops_monitor.main').name == 'ops_monitor.main'

    def test_set_level(self):
        manager = LogManager()
        manager.configure({'log_level': 'INFO'})

        manager.set_level(LogLevel.ERROR)

        root = logging.getLogger('ops_monitor')
        assert root.level == logging.ERROR
        assert all(handler.level == logging.ERROR for handler in root.handlers)
        assert manager.get_log_stats()['log_level'] == 'ERROR'

    def test_cleanup(self):
        manager = LogManager()
        manager.configure({})

        manager.cleanup()

        assert logging.getLogger('ops_monitor').handlers == []
        assert manager.get_log_stats()['configured'] is False


class TestContextFormatter:
    """上下文格式化器测试"""

    def test_appends_context(self):
        formatter = ContextFormatter('%(message)s')
        record = logging.LogRecord('x', logging.INFO, __file__, 1, "告警触发", None, None)
        record.context = {'alert_id': 'a-1', 'severity': 'high'}

        assert formatter.format(record) == "告警触发 [alert_id=a-1, severity=high]"

    def test_without_context(self):
        formatter = ContextFormatter('%(message)s')
        record = logging.LogRecord('x', logging.INFO, __file__, 1, "普通消息", None, None)

        assert formatter.format(record) == "普通消息"


def test_module_helpers():
    """测试便捷函数"""
    configure_logging({'log_level': 'WARNING'})

    assert get_logger('scheduler').name == 'ops_monitor.scheduler'
    assert log_manager.get_log_stats()['log_level'] == 'WARNING'

    log_manager.cleanup()
