"""
Value types passed between the backup components for a single run.

Nothing here is persisted; the only durable state is the watermark written
by the state persister.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Tuple


class SelectionMode(str, Enum):
    FULL = 'Full'
    INCREMENTAL = 'Incremental'


class ArtifactKind(str, Enum):
    ARCHIVE = 'Archive'
    MIRROR_SNAPSHOT = 'MirrorSnapshot'


class RunStatus(str, Enum):
    SUCCESS = 'Success'
    NO_CHANGES = 'NoChanges'
    FAILED = 'Failed'


class RunState(str, Enum):
    """Orchestrator states, in pipeline order."""

    IDLE = 'Idle'
    VALIDATING = 'Validating'
    SELECTING = 'Selecting'
    WRITING = 'Writing'
    PERSISTING = 'Persisting'
    PRUNING = 'Pruning'
    DONE = 'Done'
    NO_CHANGES = 'NoChanges'
    FAILED = 'Failed'


@dataclass(frozen=True)
class FileRecord:
    relative_path: str
    modified_at: datetime
    size_bytes: int


@dataclass(frozen=True)
class ChangeSet:
    """Files selected for one run. Order is irrelevant."""

    source_path: str
    mode: SelectionMode
    records: Tuple[FileRecord, ...] = ()

    @property
    def file_count(self) -> int:
        return len(self.records)

    @property
    def total_bytes(self) -> int:
        return sum(record.size_bytes for record in self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records

    def relative_paths(self) -> List[str]:
        return sorted(record.relative_path for record in self.records)


@dataclass(frozen=True)
class BackupArtifact:
    path: str
    created_at: datetime
    kind: ArtifactKind
    size_bytes: int = 0

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'created_at': self.created_at.isoformat(),
            'kind': self.kind.value,
            'size_bytes': self.size_bytes
        }


@dataclass
class BackupRunResult:
    """Outcome of one orchestrator run."""

    status: RunStatus
    state: RunState
    artifact: Optional[BackupArtifact] = None
    error: Optional[Exception] = None
    files_written: int = 0
    bytes_written: int = 0
    warnings: List[Exception] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    watermark: Optional[datetime] = None
    failed_in: Optional[RunState] = None
    logs: List[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.status == RunStatus.FAILED else 0

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'state': self.state.value,
            'exit_code': self.exit_code,
            'artifact': self.artifact.to_dict() if self.artifact else None,
            'error': str(self.error) if self.error is not None else None,
            'error_type': self.error_type,
            'files_written': self.files_written,
            'bytes_written': self.bytes_written,
            'warnings': [str(w) for w in self.warnings],
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'watermark': self.watermark.isoformat() if self.watermark else None,
            'failed_in': self.failed_in.value if self.failed_in else None,
            'logs': self.logs
        }
