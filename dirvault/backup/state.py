"""
Watermark persistence.

The configuration store is rewritten with only `lastBackupDate` changed,
using write-new-then-rename so the previous file stays readable until the
new one is complete.
"""

import os
import json
import stat
import tempfile
import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from dirvault.settings import BackupConfiguration, ConfigurationError, read_document, format_timestamp


logger = logging.getLogger(__name__)

WATERMARK_FIELD = 'lastBackupDate'


class PersistError(Exception):
    """Raised when the watermark of a successful backup cannot be committed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class StatePersister:
    """Commits the watermark of a successful run to the configuration store."""

    def commit(self, config: BackupConfiguration, new_timestamp: datetime) -> BackupConfiguration:
        """
        Record new_timestamp as the last successful backup.

        Args:
            config: Configuration the run was started with
            new_timestamp: Instant captured when selection began

        Returns:
            A new BackupConfiguration carrying the updated watermark

        Raises:
            PersistError: If the store cannot be read or replaced
        """
        path = config.config_path
        if not path:
            raise PersistError("Configuration has no backing file to persist to")

        try:
            document = read_document(path)
        except ConfigurationError as e:
            raise PersistError(f"Failed to read configuration store {path}: {e}", path) from e

        document[WATERMARK_FIELD] = format_timestamp(new_timestamp)

        try:
            _atomic_write_json(path, document)
        except OSError as e:
            raise PersistError(f"Failed to write configuration store {path}: {e}", path) from e

        logger.info(f"Watermark committed: {document[WATERMARK_FIELD]}")

        return replace(config, last_backup_timestamp=new_timestamp)


def _atomic_write_json(path: str, document: dict):
    """Write document next to path, fsync it, then rename over path keeping its permissions."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, temp_path = tempfile.mkstemp(prefix='.', suffix='.tmp', dir=directory)

    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=4)
            f.write('\n')
            f.flush()
            os.fsync(f.fileno())
        # mkstemp creates the file 0600
        if os.path.exists(path):
            os.chmod(temp_path, stat.S_IMODE(os.stat(path).st_mode))
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
