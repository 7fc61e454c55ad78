"""指标相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any


class MetricUnit(Enum):
    """指标单位"""
    MS = "ms"
    COUNT = "count"
    BYTES = "bytes"
    PERCENT = "percent"
    RATE = "rate"


@dataclass(frozen=True)
class Metric:
    """单个带时间戳的数值观测，写入后不可修改"""
    name: str
    value: float
    unit: MetricUnit
    timestamp: datetime
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': self.value,
            'unit': self.unit.value,
            'timestamp': self.timestamp.isoformat(),
            'tags': dict(self.tags)
        }


@dataclass(frozen=True)
class PerformanceRecord:
    """操作耗时记录，用于推导延迟和错误率"""
    operation: str
    duration: float  # 毫秒
    timestamp: datetime
    success: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'duration': self.duration,
            'timestamp': self.timestamp.isoformat(),
            'success': self.success,
            'metadata': dict(self.metadata)
        }
