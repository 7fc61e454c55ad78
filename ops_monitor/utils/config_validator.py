"""配置验证工具"""

from typing import Dict, Any

from .exceptions import ConfigError, ValidationError
from ..models.alert import AlertRule, Condition, Severity, parse_enum
from ..models.channel import channel_from_dict

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
SUPPORTED_PROBE_TYPES = ['http', 'memory', 'cpu', 'disk', 'metric', 'process']
RULE_REQUIRED_FIELDS = ('name', 'condition', 'threshold', 'severity')


def _require_dict(value: Any, section: str) -> None:
    if not isinstance(value, dict):
        raise ConfigError(f"{section} 配置必须是字典类型")


def _require_positive(section: Dict[str, Any], key: str, section_name: str,
                      allow_zero: bool = False) -> None:
    value = section.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{section_name}.{key} 必须是数值")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{section_name}.{key} 必须是正数")


class ConfigValidator:
    """配置验证器，逐段校验配置文件"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(global_config, 'global')

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        _require_positive(global_config, 'max_log_size', 'global')
        _require_positive(global_config, 'log_backup_count', 'global', allow_zero=True)

        component_levels = global_config.get('component_levels')
        if component_levels is not None:
            _require_dict(component_levels, 'global.component_levels')
            for component, level in component_levels.items():
                if str(level).upper() not in VALID_LOG_LEVELS:
                    raise ConfigError(f"组件 {component} 的日志级别无效: {level}",
                                      context={'field': f'component_levels.{component}'})

    @staticmethod
    def validate_metrics_config(metrics_config: Dict[str, Any]) -> None:
        """
        验证指标存储配置

        Args:
            metrics_config: metrics 配置段

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(metrics_config, 'metrics')
        for key in ('max_per_series', 'retention_hours', 'cleanup_interval',
                    'summary_window_minutes', 'sampling_interval'):
            _require_positive(metrics_config, key, 'metrics')

        default_tags = metrics_config.get('default_tags')
        if default_tags is not None and not isinstance(default_tags, dict):
            raise ConfigError("metrics.default_tags 必须是字典类型")

    @staticmethod
    def validate_health_config(health_config: Dict[str, Any]) -> None:
        """
        验证健康聚合配置

        Args:
            health_config: health 配置段

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(health_config, 'health')
        _require_positive(health_config, 'interval', 'health')
        _require_positive(health_config, 'probe_timeout', 'health')

        probes = health_config.get('probes', {})
        _require_dict(probes, 'health.probes')
        for probe_name, probe_config in probes.items():
            _require_dict(probe_config, f"health.probes.{probe_name}")
            probe_type = probe_config.get('type')
            if probe_type not in SUPPORTED_PROBE_TYPES:
                raise ConfigError(
                    f"探针 '{probe_name}' 的类型 '{probe_type}' 不受支持。"
                    f"支持的类型: {SUPPORTED_PROBE_TYPES}")
            _require_positive(probe_config, 'weight', f"health.probes.{probe_name}")
            _require_positive(probe_config, 'timeout', f"health.probes.{probe_name}")

    @staticmethod
    def validate_alerting_config(alerting_config: Dict[str, Any]) -> None:
        """
        验证告警引擎配置，规则条目按添加时的规则逐条校验

        Args:
            alerting_config: alerting 配置段

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(alerting_config, 'alerting')
        for key in ('interval', 'lookback_seconds', 'max_history'):
            _require_positive(alerting_config, key, 'alerting')

        rules = alerting_config.get('rules', [])
        if not isinstance(rules, list):
            raise ConfigError("alerting.rules 配置必须是列表类型")

        seen_ids = set()
        for index, rule_config in enumerate(rules):
            if not isinstance(rule_config, dict):
                raise ConfigError(f"alerting.rules[{index}] 必须是字典类型")
            try:
                if rule_config.get('id') and \
                        not all(key in rule_config for key in RULE_REQUIRED_FIELDS):
                    # 只给出部分字段的条目视为对已有规则（如默认规则）的覆盖
                    _validate_rule_override(rule_config)
                    rule_id = str(rule_config['id'])
                else:
                    rule_id = AlertRule.from_dict(rule_config).id
            except ValidationError as e:
                raise ConfigError(f"alerting.rules[{index}] 无效: {e.message}",
                                  context=dict(e.context), cause=e)
            if 'id' in rule_config:
                if rule_id in seen_ids:
                    raise ConfigError(f"规则ID重复: {rule_id}")
                seen_ids.add(rule_id)

    @staticmethod
    def validate_channels_config(channels_config: Any, section: str = 'channels') -> None:
        """
        验证通知通道配置

        Args:
            channels_config: 通道配置列表
            section: 配置段名称，用于错误信息

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(channels_config, list):
            raise ConfigError(f"{section} 配置必须是列表类型")

        names = set()
        for index, channel_config in enumerate(channels_config):
            try:
                channel = channel_from_dict(channel_config)
            except ValidationError as e:
                raise ConfigError(f"{section}[{index}] 无效: {e.message}",
                                  context=dict(e.context), cause=e)
            if channel.name in names:
                raise ConfigError(f"通道名称重复: {channel.name}")
            names.add(channel.name)

    @staticmethod
    def validate_disaster_recovery_config(dr_config: Dict[str, Any]) -> None:
        """
        验证灾难恢复配置

        Args:
            dr_config: disaster_recovery 配置段

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(dr_config, 'disaster_recovery')
        _require_positive(dr_config, 'failure_threshold', 'disaster_recovery')

        thresholds = dr_config.get('recovery_thresholds', {})
        _require_dict(thresholds, 'disaster_recovery.recovery_thresholds')
        for key in ('max_memory_usage', 'max_cpu_usage', 'max_disk_usage'):
            _require_positive(thresholds, key, 'disaster_recovery.recovery_thresholds')
            value = thresholds.get(key)
            if value is not None and value > 100:
                raise ConfigError(f"disaster_recovery.recovery_thresholds.{key} 不能超过100")
        _require_positive(thresholds, 'max_error_rate', 'disaster_recovery.recovery_thresholds')

        actions = dr_config.get('recovery_actions', {})
        _require_dict(actions, 'disaster_recovery.recovery_actions')
        _require_positive(actions, 'escalation_time', 'disaster_recovery.recovery_actions')

        health_checks = dr_config.get('health_checks', {})
        _require_dict(health_checks, 'disaster_recovery.health_checks')
        _require_positive(health_checks, 'interval', 'disaster_recovery.health_checks')
        _require_positive(health_checks, 'timeout', 'disaster_recovery.health_checks')

        groups = dr_config.get('component_groups', {})
        _require_dict(groups, 'disaster_recovery.component_groups')
        valid_groups = ['service_down', 'resource_exhaustion', 'high_error_rate']
        for group_name, members in groups.items():
            if group_name not in valid_groups:
                raise ConfigError(
                    f"未知的组件分组: {group_name}，支持的分组: {valid_groups}")
            if not isinstance(members, list):
                raise ConfigError(f"component_groups.{group_name} 必须是列表类型")

        if 'notifications' in dr_config:
            ConfigValidator.validate_channels_config(
                dr_config['notifications'], 'disaster_recovery.notifications')

        supervisor = dr_config.get('supervisor', {})
        _require_dict(supervisor, 'disaster_recovery.supervisor')
        pid = supervisor.get('pid')
        if pid is not None and (isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0):
            raise ConfigError("disaster_recovery.supervisor.pid 必须是正整数")
