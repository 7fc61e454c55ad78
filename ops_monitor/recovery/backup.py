"""备份协作方接口

备份的创建、存储格式和校验由外部实现，灾难恢复只依赖列出和还原两个操作。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional, List, Iterable

BACKUP_COMPLETED = 'completed'


@dataclass
class BackupMetadata:
    """备份元数据"""
    id: str
    timestamp: datetime
    type: str = 'full'
    status: str = BACKUP_COMPLETED
    size: int = 0
    files: int = 0
    checksum: str = ''
    description: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseBackupProvider(ABC):
    """备份提供者抽象基类"""

    @abstractmethod
    async def list_backups(self, filters: Optional[Dict[str, Any]] = None) -> List[BackupMetadata]:
        """
        列出备份

        Args:
            filters: 过滤条件，例如 {'status': 'completed', 'type': 'full'}

        Returns:
            List[BackupMetadata]: 备份列表
        """
        pass

    @abstractmethod
    async def restore_backup(self, backup_id: str, overwrite: bool = False) -> None:
        """
        还原备份

        Args:
            backup_id: 备份ID
            overwrite: 是否覆盖现有数据

        Raises:
            Exception: 还原失败
        """
        pass


def latest_successful_backup(backups: Iterable[BackupMetadata]) -> Optional[BackupMetadata]:
    """状态为 completed 且时间最新的备份"""
    completed = [b for b in backups if b.status == BACKUP_COMPLETED]
    if not completed:
        return None
    return max(completed, key=lambda b: b.timestamp)
