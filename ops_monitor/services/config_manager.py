"""配置管理器"""

import os
from typing import Dict, Any, Optional, List

import yaml

from ..utils.exceptions import ConfigError
from ..utils.config_validator import ConfigValidator
from ..utils.log_manager import get_logger

SECTION_VALIDATORS = {
    'global': ConfigValidator.validate_global_config,
    'metrics': ConfigValidator.validate_metrics_config,
    'health': ConfigValidator.validate_health_config,
    'alerting': ConfigValidator.validate_alerting_config,
    'channels': ConfigValidator.validate_channels_config,
    'disaster_recovery': ConfigValidator.validate_disaster_recovery_config,
}

DEFAULT_GLOBAL_CONFIG: Dict[str, Any] = {
    'service_name': 'ops-monitor',
    'log_level': 'INFO',
    'log_file': None,
    'max_log_size': 10 * 1024 * 1024,
    'log_backup_count': 5,
    'component_levels': {}
}

DEFAULT_METRICS_CONFIG: Dict[str, Any] = {
    'max_per_series': 1000,
    'retention_hours': 24,
    'cleanup_interval': 300,
    'summary_window_minutes': 60,
    'enable_system_sampler': True,
    'sampling_interval': 30,
    'default_tags': {}
}

DEFAULT_HEALTH_CONFIG: Dict[str, Any] = {
    'interval': 60,
    'probe_timeout': 5,
    'register_default_probes': True,
    'probes': {}
}

DEFAULT_ALERTING_CONFIG: Dict[str, Any] = {
    'interval': 30,
    'lookback_seconds': 300,
    'max_history': 1000,
    'notify_on_resolve': False,
    'use_default_rules': True,
    'rules': []
}


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: Optional[str] = None):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径，为空时使用全部默认值
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        if self.config_path is None:
            self.logger.info("未指定配置文件，使用默认配置")
            return self.load_dict({})

        self.logger.info(f"开始加载配置文件: {self.config_path}")

        try:
            if not os.path.exists(self.config_path):
                raise ConfigError(f"配置文件不存在: {self.config_path}",
                                  config_path=self.config_path)

            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)

            if config is None:
                raise ConfigError("配置文件为空", config_path=self.config_path)

            return self.load_dict(config)

        except ConfigError as e:
            self.logger.error(e.message)
            raise
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path, cause=e)
        except OSError as e:
            self.logger.error(f"读取配置文件失败: {e}")
            raise ConfigError(f"读取配置文件失败: {e}", config_path=self.config_path, cause=e)

    def load_dict(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        校验并使用一份已解析的配置

        Raises:
            ConfigError: 配置验证失败
        """
        self._validate_config(config)
        self.config = config

        rules_count = len(config.get('alerting', {}).get('rules', []))
        channels_count = len(config.get('channels', []))
        probes_count = len(config.get('health', {}).get('probes', {}))
        self.logger.info(f"配置验证成功，包含 {rules_count} 条自定义规则、"
                         f"{channels_count} 个通知通道和 {probes_count} 个自定义探针")
        return self.config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型", config_path=self.config_path)

        unknown = set(config) - set(SECTION_VALIDATORS)
        if unknown:
            self.logger.warning(f"忽略未知的配置段: {', '.join(sorted(unknown))}")

        for section, validator in SECTION_VALIDATORS.items():
            if section in config:
                self.logger.debug(f"验证配置段: {section}")
                validator(config[section])

    def _section(self, name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(defaults)
        merged.update(self.config.get(name) or {})
        return merged

    def get_global_config(self) -> Dict[str, Any]:
        return self._section('global', DEFAULT_GLOBAL_CONFIG)

    def get_metrics_config(self) -> Dict[str, Any]:
        return self._section('metrics', DEFAULT_METRICS_CONFIG)

    def get_health_config(self) -> Dict[str, Any]:
        return self._section('health', DEFAULT_HEALTH_CONFIG)

    def get_alerting_config(self) -> Dict[str, Any]:
        return self._section('alerting', DEFAULT_ALERTING_CONFIG)

    def get_channels_config(self) -> List[Dict[str, Any]]:
        return list(self.config.get('channels') or [])

    def get_disaster_recovery_config(self) -> Dict[str, Any]:
        """
        获取灾难恢复配置

        嵌套段的默认值由灾难恢复编排器合并，这里只返回文件中的内容。
        """
        return dict(self.config.get('disaster_recovery') or {})

    def get_service_name(self) -> str:
        return self.get_global_config()['service_name']
