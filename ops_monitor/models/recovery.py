"""灾难事件数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

from .alert import Severity


class DisasterType(Enum):
    """灾难事件类型"""
    SERVICE_DOWN = "service_down"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    HIGH_ERROR_RATE = "high_error_rate"
    CUSTOM = "custom"


class RecoveryAction(Enum):
    """恢复动作"""
    RESTART_SERVICE = "restart_service"
    RESTORE_BACKUP = "restore_backup"
    NOTIFY_ADMINS = "notify_admins"
    ESCALATE = "escalate"


class ActionOutcome(Enum):
    """恢复动作结果"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


def format_action(action: RecoveryAction, outcome: ActionOutcome,
                  detail: Optional[str] = None) -> str:
    """
    生成 recovery_actions_taken 中的一条记录

    格式为 "<action>:<outcome>"，失败时附带 ":<detail>"。
    """
    entry = f"{action.value}:{outcome.value}"
    if detail:
        entry = f"{entry}:{detail}"
    return entry


@dataclass
class DisasterEvent:
    """一次持续性的系统降级事件，以及针对它执行过的恢复动作"""
    id: str
    type: DisasterType
    severity: Severity
    description: str
    detected_at: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    recovery_actions_taken: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def record_action(self, action: RecoveryAction, outcome: ActionOutcome,
                      detail: Optional[str] = None) -> str:
        entry = format_action(action, outcome, detail)
        self.recovery_actions_taken.append(entry)
        return entry

    def resolve(self, at: datetime) -> None:
        self.resolved = True
        self.resolved_at = at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'severity': self.severity.value,
            'description': self.description,
            'detected_at': self.detected_at.isoformat(),
            'resolved': self.resolved,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'recovery_actions_taken': list(self.recovery_actions_taken),
            'metadata': dict(self.metadata)
        }
