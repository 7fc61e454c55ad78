"""告警规则与告警相关的数据模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Any, Optional

from ..utils.exceptions import ValidationError


class Severity(Enum):
    """严重级别"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Condition(Enum):
    """阈值比较条件"""
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    NEQ = "neq"

    def evaluate(self, value: float, threshold: float) -> bool:
        """
        比较指标值与阈值

        Args:
            value: 指标当前值
            threshold: 规则阈值

        Returns:
            bool: 条件是否成立
        """
        if self is Condition.GT:
            return value > threshold
        if self is Condition.LT:
            return value < threshold
        if self is Condition.EQ:
            return value == threshold
        return value != threshold

    @property
    def symbol(self) -> str:
        return {'gt': '>', 'lt': '<', 'eq': '==', 'neq': '!='}[self.value]


def parse_enum(enum_cls, raw, field_name: str):
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).lower())
    except ValueError:
        valid = [item.value for item in enum_cls]
        raise ValidationError(f"{field_name} 必须是以下值之一: {valid}，实际为: {raw}",
                              field=field_name)


@dataclass
class AlertRule:
    """
    告警规则

    metric 可以是精确的指标名，也可以是 shell 风格通配符（如 system.*.usage）。
    last_fired_at 只会向前推进，冷却期从最近一次触发时间开始计算。
    """
    id: str
    name: str
    metric: str
    condition: Condition
    threshold: float
    severity: Severity
    enabled: bool = True
    cooldown: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    last_fired_at: Optional[datetime] = None
    description: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """
        校验规则字段

        Raises:
            ValidationError: 规则不合法
        """
        if not self.id or not isinstance(self.id, str):
            raise ValidationError("规则ID不能为空", field='id')
        if not self.name or not isinstance(self.name, str):
            raise ValidationError("规则名称不能为空", field='name',
                                  context={'rule_id': self.id})
        if not self.metric or not isinstance(self.metric, str):
            raise ValidationError("规则必须指定指标选择器", field='metric',
                                  context={'rule_id': self.id})
        if not isinstance(self.condition, Condition):
            raise ValidationError("condition 类型无效", field='condition',
                                  context={'rule_id': self.id})
        if not isinstance(self.severity, Severity):
            raise ValidationError("severity 类型无效", field='severity',
                                  context={'rule_id': self.id})
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, (int, float)):
            raise ValidationError("threshold 必须是数值", field='threshold',
                                  context={'rule_id': self.id})
        if not isinstance(self.cooldown, timedelta) or self.cooldown.total_seconds() < 0:
            raise ValidationError("cooldown 必须是非负时长", field='cooldown',
                                  context={'rule_id': self.id})

    def in_cooldown(self, now: datetime) -> bool:
        """判断规则在给定时刻是否仍处于冷却期"""
        if self.last_fired_at is None:
            return False
        return now < self.last_fired_at + self.cooldown

    def mark_fired(self, at: datetime) -> None:
        if self.last_fired_at is None or at > self.last_fired_at:
            self.last_fired_at = at

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertRule':
        """
        从配置字典创建规则

        Args:
            data: 规则配置，cooldown 以秒为单位

        Returns:
            AlertRule: 已校验的规则

        Raises:
            ValidationError: 配置不合法
        """
        if not isinstance(data, dict):
            raise ValidationError("规则配置必须是字典类型")

        metric = data.get('metric', data.get('metric_selector'))
        for required in ('name', 'condition', 'threshold', 'severity'):
            if required not in data:
                raise ValidationError(f"规则缺少必需的配置项: {required}", field=required)
        if metric is None:
            raise ValidationError("规则缺少必需的配置项: metric", field='metric')

        cooldown_raw = data.get('cooldown', 300)
        if isinstance(cooldown_raw, timedelta):
            cooldown = cooldown_raw
        elif isinstance(cooldown_raw, (int, float)) and not isinstance(cooldown_raw, bool):
            cooldown = timedelta(seconds=cooldown_raw)
        else:
            raise ValidationError("cooldown 必须是秒数", field='cooldown')

        threshold = data['threshold']
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValidationError("threshold 必须是数值", field='threshold')

        rule = cls(
            id=str(data.get('id') or uuid.uuid4()),
            name=data['name'],
            metric=metric,
            condition=parse_enum(Condition, data['condition'], 'condition'),
            threshold=float(threshold),
            severity=parse_enum(Severity, data['severity'], 'severity'),
            enabled=bool(data.get('enabled', True)),
            cooldown=cooldown,
            description=data.get('description', ''),
            tags=dict(data.get('tags') or {})
        )
        rule.validate()
        return rule

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'metric': self.metric,
            'condition': self.condition.value,
            'threshold': self.threshold,
            'severity': self.severity.value,
            'enabled': self.enabled,
            'cooldown': self.cooldown.total_seconds(),
            'last_fired_at': self.last_fired_at.isoformat() if self.last_fired_at else None,
            'description': self.description,
            'tags': dict(self.tags)
        }


@dataclass
class Alert:
    """由规则触发的告警，同一规则同一时刻至多有一个未解决的告警"""
    id: str
    rule_id: str
    rule_name: str
    severity: Severity
    message: str
    snapshot: Dict[str, Any] = field(default_factory=dict)
    fired_at: datetime = field(default_factory=datetime.now)
    resolved: bool = False
    resolved_at: Optional[datetime] = None

    def resolve(self, at: datetime) -> None:
        self.resolved = True
        self.resolved_at = at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'rule_id': self.rule_id,
            'rule_name': self.rule_name,
            'severity': self.severity.value,
            'message': self.message,
            'snapshot': dict(self.snapshot),
            'fired_at': self.fired_at.isoformat(),
            'resolved': self.resolved,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None
        }
