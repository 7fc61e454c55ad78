"""灾难恢复协作方接口"""

from .backup import BackupMetadata, BaseBackupProvider, latest_successful_backup, BACKUP_COMPLETED
from .supervisor import (BaseProcessSupervisor, SignalProcessSupervisor,
                         LoggingProcessSupervisor, supervisor_from_config)

__all__ = ['BackupMetadata', 'BaseBackupProvider', 'latest_successful_backup',
           'BACKUP_COMPLETED', 'BaseProcessSupervisor', 'SignalProcessSupervisor',
           'LoggingProcessSupervisor', 'supervisor_from_config']
