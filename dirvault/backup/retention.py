"""
Retention policy enforcement for backups.

Keeps the newest N archives in the destination directory and deletes the
rest. Mirror destinations hold a single tree and are never pruned by count.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Pattern, Union

from dirvault.settings import ConfigurationError
from .compression import ARCHIVE_NAME_PATTERN
from .storage import LocalStorage, newest_first


logger = logging.getLogger(__name__)


class RetentionWarning(Exception):
    """A prior backup could not be deleted. Never fails the run."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


@dataclass
class PruneResult:
    deleted: List[str] = field(default_factory=list)
    warnings: List[RetentionWarning] = field(default_factory=list)


class RetentionManager:
    """
    Manages count-based retention of backup archives.

    Archives are ordered newest first by creation time, with ties broken by
    the timestamp and collision suffix embedded in the name.
    """

    def __init__(self):
        """Initialize retention manager."""
        self.logs = []

    def prune(
        self,
        destination_path: str,
        naming_pattern: Union[str, Pattern] = ARCHIVE_NAME_PATTERN,
        max_retained_backups: int = 10
    ) -> PruneResult:
        """
        Delete the oldest archives beyond the retention window.

        Args:
            destination_path: Directory holding the archives
            naming_pattern: Regex matched against file names
            max_retained_backups: Number of newest archives to keep

        Returns:
            PruneResult with deleted paths and non-fatal warnings

        Raises:
            ConfigurationError: If max_retained_backups < 1
        """
        if max_retained_backups < 1:
            raise ConfigurationError(
                f"MaxBackups must be at least 1, got {max_retained_backups}", 'MaxBackups'
            )

        pattern = re.compile(naming_pattern) if isinstance(naming_pattern, str) else naming_pattern
        storage = LocalStorage(destination_path)
        result = PruneResult()

        try:
            archives = newest_first(storage.list_archives(pattern))
        except OSError as e:
            warning = RetentionWarning(f"Failed to list archives in {destination_path}: {e}", destination_path)
            self._log(str(warning))
            result.warnings.append(warning)
            return result

        to_delete = archives[max_retained_backups:]

        self._log(
            f"Retention: {len(archives)} archives found, keeping {min(len(archives), max_retained_backups)}, "
            f"deleting {len(to_delete)}"
        )

        for archive in to_delete:
            try:
                storage.delete(archive['name'])
                result.deleted.append(archive['path'])
                self._log(f"Deleted archive: {archive['path']}")
            except OSError as e:
                warning = RetentionWarning(f"Failed to delete archive {archive['path']}: {e}", archive['path'])
                self._log(str(warning))
                result.warnings.append(warning)

        return result

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
