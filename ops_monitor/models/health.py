"""组件健康与系统健康的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List


class HealthStatus(Enum):
    """健康状态"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def score(self) -> int:
        """单个组件状态对应的分值"""
        return {'healthy': 100, 'degraded': 60, 'unhealthy': 0}[self.value]

    @classmethod
    def from_score(cls, score: float) -> 'HealthStatus':
        if score >= 80:
            return cls.HEALTHY
        if score >= 50:
            return cls.DEGRADED
        return cls.UNHEALTHY


@dataclass
class ComponentCheck:
    """单个组件的检查结果，每次聚合都会重新计算"""
    name: str
    status: HealthStatus
    message: Optional[str] = None
    latency: float = 0.0  # 毫秒
    checked_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'status': self.status.value,
            'message': self.message,
            'latency': self.latency,
            'checked_at': self.checked_at.isoformat(),
            'metadata': dict(self.metadata)
        }


@dataclass
class SystemHealth:
    """由组件检查结果推导出的系统健康快照"""
    status: HealthStatus
    score: int
    components: Dict[str, ComponentCheck] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=datetime.now)

    def failing_components(self, include_degraded: bool = True) -> List[ComponentCheck]:
        """
        获取非健康的组件

        Args:
            include_degraded: 是否包含 degraded 状态的组件

        Returns:
            List[ComponentCheck]: 非健康组件列表
        """
        failing = []
        for check in self.components.values():
            if check.status is HealthStatus.UNHEALTHY:
                failing.append(check)
            elif include_degraded and check.status is HealthStatus.DEGRADED:
                failing.append(check)
        return failing

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'score': self.score,
            'components': {name: check.to_dict() for name, check in self.components.items()},
            'updated_at': self.updated_at.isoformat()
        }
