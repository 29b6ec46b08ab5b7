"""
Change-set selection for backup runs.

Walks the source tree and decides which files belong in this run:
- Full: every regular file under the source directory
- Incremental: only files modified strictly after the last watermark
"""

import os
import stat
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .models import ChangeSet, FileRecord, SelectionMode


logger = logging.getLogger(__name__)


class SourceUnavailable(Exception):
    """Raised when the source directory cannot be read."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ChangeSetSelector:
    """
    Enumerates the files to include in a backup run.

    Only metadata is read (one stat per file); file contents are never opened.
    """

    def validate(self, source_path: str):
        """
        Check that the source directory exists and is readable.

        Raises:
            SourceUnavailable: If the directory is missing or not readable
        """
        source = Path(source_path)

        if not source.exists():
            raise SourceUnavailable(f"Source directory does not exist: {source_path}", source_path)

        if not source.is_dir():
            raise SourceUnavailable(f"Source path is not a directory: {source_path}", source_path)

        if not os.access(source, os.R_OK | os.X_OK):
            raise SourceUnavailable(f"Source directory is not readable: {source_path}", source_path)

    def select(
        self,
        source_path: str,
        incremental_enabled: bool,
        last_backup_timestamp: Optional[datetime]
    ) -> ChangeSet:
        """
        Build the change set for one run.

        Args:
            source_path: Root of the tree to back up
            incremental_enabled: Whether incremental selection is configured
            last_backup_timestamp: Watermark of the last successful run, if any

        Returns:
            ChangeSet (possibly empty)

        Raises:
            SourceUnavailable: If the tree cannot be enumerated
        """
        self.validate(source_path)

        if incremental_enabled and last_backup_timestamp is not None:
            mode = SelectionMode.INCREMENTAL
            watermark = _as_aware(last_backup_timestamp)
        else:
            mode = SelectionMode.FULL
            watermark = None

        records = []
        for record in self._enumerate(source_path):
            if watermark is not None and not record.modified_at > watermark:
                continue
            records.append(record)

        change_set = ChangeSet(source_path=source_path, mode=mode, records=tuple(records))

        logger.info(
            f"Selected {change_set.file_count} files ({change_set.total_bytes} bytes) "
            f"from {source_path} (mode: {mode.value})"
        )

        return change_set

    def _enumerate(self, source_path: str) -> List[FileRecord]:
        """Stat every regular file under source_path. Symlinks are not followed."""
        root = Path(source_path)
        records = []

        def on_error(error: OSError):
            raise SourceUnavailable(
                f"Failed to read {error.filename or source_path}: {error.strerror or error}",
                error.filename or source_path
            ) from error

        for directory, _dirnames, filenames in os.walk(root, onerror=on_error):
            for name in filenames:
                file_path = Path(directory) / name

                try:
                    st = file_path.lstat()
                except PermissionError as e:
                    raise SourceUnavailable(f"Permission denied accessing {file_path}: {e}", str(file_path)) from e
                except FileNotFoundError:
                    # Removed while walking
                    continue

                if not stat.S_ISREG(st.st_mode):
                    continue

                records.append(FileRecord(
                    relative_path=file_path.relative_to(root).as_posix(),
                    modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    size_bytes=st.st_size
                ))

        return records


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)
