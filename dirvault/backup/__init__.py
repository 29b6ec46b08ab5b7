"""
Backup module for dirvault.

This module handles the core backup functionality including:
- Change-set selection (full and incremental)
- Compression
- Output writing (archive and mirror)
- Watermark persistence
- Retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, execute_backup
from .sources import ChangeSetSelector, SourceUnavailable
from .compression import create_archive, CompressionError
from .storage import LocalStorage, DestinationUnavailable, WriteError
from .retention import RetentionManager, RetentionWarning
from .state import StatePersister, PersistError
from .lock import RunLock, LockError

__all__ = [
    'BackupExecutor',
    'execute_backup',
    'ChangeSetSelector',
    'SourceUnavailable',
    'create_archive',
    'CompressionError',
    'LocalStorage',
    'DestinationUnavailable',
    'WriteError',
    'RetentionManager',
    'RetentionWarning',
    'StatePersister',
    'PersistError',
    'RunLock',
    'LockError'
]
