"""
日志管理器模块

为指标存储、告警引擎、通知分发和灾难恢复等组件提供统一的日志记录。
所有组件记录器挂在 ops_monitor 命名空间下，处理器只安装在命名空间根上；
支持控制台与轮转文件输出、按组件单独设置级别，以及在日志行末尾附加
extra={'context': {...}} 中的结构化上下文。
"""

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List

ROOT_LOGGER_NAME = 'ops_monitor'

FILE_LINE_FORMAT = '%(asctime)s %(levelname)-8s %(name)s (%(filename)s:%(lineno)d) %(message)s'
CONSOLE_LINE_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'
TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def parse(cls, value: Any) -> 'LogLevel':
        if isinstance(value, LogLevel):
            return value
        name = str(value).upper()
        if name not in cls.__members__:
            raise ValueError(f"无效的日志级别: {name}")
        return cls[name]


@dataclass
class LogSettings:
    """当前生效的日志设置，对应 global 配置段中的日志相关键"""
    level: LogLevel = LogLevel.INFO
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backups: int = 5
    console: bool = True
    component_levels: Dict[str, LogLevel] = field(default_factory=dict)

    def merged(self, config: Dict[str, Any]) -> 'LogSettings':
        """返回合并了配置字典后的新设置，非法级别抛出 ValueError"""
        components = dict(self.component_levels)
        for component, level in (config.get('component_levels') or {}).items():
            components[component] = LogLevel.parse(level)

        return LogSettings(
            level=LogLevel.parse(config['log_level']) if 'log_level' in config else self.level,
            file=config.get('log_file', self.file),
            max_bytes=config.get('max_log_size', self.max_bytes),
            backups=config.get('log_backup_count', self.backups),
            console=config.get('enable_console', self.console),
            component_levels=components
        )


class ContextFormatter(logging.Formatter):
    """在消息后追加 extra={'context': {...}} 中的键值对"""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, 'context', None)
        if isinstance(context, dict) and context:
            pairs = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"{message} [{pairs}]"
        return message


class LogManager:
    """
    日志管理器类

    进程内唯一：组件模块在导入时即可通过 get_logger 取得记录器，
    之后由应用在读取配置后调用 configure 安装处理器。
    """

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.settings = LogSettings()
        self._root = logging.getLogger(ROOT_LOGGER_NAME)
        self._configured = False
        self._initialized = True

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(self, config: Dict[str, Any]) -> None:
        """
        根据配置（通常是 global 配置段）安装日志处理器

        Args:
            config: 日志配置字典，可选键：
                - log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
                - log_file: 日志文件路径，设置后启用文件输出
                - max_log_size: 单个日志文件最大字节数
                - log_backup_count: 轮转备份文件数量
                - enable_console: 是否输出到控制台
                - component_levels: 组件名到级别的映射，如 {'dispatcher': 'DEBUG'}

        Raises:
            ValueError: 日志级别无效，此时保留原有设置
        """
        self.settings = self.settings.merged(config)
        self._replace_handlers(self._build_handlers())
        self._apply_component_levels()
        self._configured = True

    def _build_handlers(self) -> List[logging.Handler]:
        handlers: List[logging.Handler] = []
        level = self.settings.level.value

        if self.settings.console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(ContextFormatter(CONSOLE_LINE_FORMAT, datefmt=TIMESTAMP_FORMAT))
            handlers.append(console)

        if self.settings.file:
            Path(self.settings.file).parent.mkdir(parents=True, exist_ok=True)
            rotating = logging.handlers.RotatingFileHandler(
                self.settings.file,
                maxBytes=self.settings.max_bytes,
                backupCount=self.settings.backups,
                encoding='utf-8'
            )
            rotating.setFormatter(ContextFormatter(FILE_LINE_FORMAT, datefmt=TIMESTAMP_FORMAT))
            handlers.append(rotating)

        for handler in handlers:
            handler.setLevel(level)
        return handlers

    def _replace_handlers(self, handlers: List[logging.Handler]) -> None:
        for old in list(self._root.handlers):
            self._root.removeHandler(old)
            old.close()

        self._root.setLevel(self.settings.level.value)
        for handler in handlers:
            self._root.addHandler(handler)

    def _apply_component_levels(self) -> None:
        for component, level in self.settings.component_levels.items():
            self.get_logger(component).setLevel(level.value)

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取组件日志记录器

        Args:
            name: 组件名称，如 'rule_engine' 或 'alerter.webhook.ops'

        Returns:
            ops_monitor.<name> 日志记录器
        """
        if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
            return logging.getLogger(name)
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')

    def set_level(self, level: LogLevel) -> None:
        """修改命名空间根及其处理器的级别，组件级别不受影响"""
        level = LogLevel.parse(level)
        self.settings.level = level
        self._root.setLevel(level.value)
        for handler in self._root.handlers:
            handler.setLevel(level.value)

    def get_log_stats(self) -> Dict[str, Any]:
        settings = self.settings
        stats = {
            'configured': self._configured,
            'log_level': settings.level.name,
            'console_enabled': settings.console,
            'log_file': settings.file,
            'max_file_size': settings.max_bytes,
            'backup_count': settings.backups,
            'component_levels': {name: level.name
                                 for name, level in settings.component_levels.items()},
            'handlers_count': len(self._root.handlers)
        }

        if settings.file and os.path.exists(settings.file):
            stats['current_log_size'] = os.path.getsize(settings.file)

        return stats

    def cleanup(self) -> None:
        """关闭并移除所有处理器，组件级别恢复为继承"""
        self._replace_handlers([])
        for component in self.settings.component_levels:
            self.get_logger(component).setLevel(logging.NOTSET)
        self._configured = False


log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    log_manager.configure(config)
