"""
Output writers for backup runs.

Supports:
- Archive: one timestamped container per run, published by atomic rename
- Mirror: a directory tree kept parallel to the source, updated in place
"""

import os
import shutil
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Callable, List, Dict, Any, Pattern

from .compression import (
    create_archive,
    generate_archive_filename,
    strip_archive_extension,
    archive_extension,
    get_archive_size,
    archive_name_order,
    ARCHIVE_NAME_PATTERN,
    CompressionError
)
from .models import ChangeSet, BackupArtifact, ArtifactKind
from .progress import run_with_heartbeat, DEFAULT_INTERVAL_SECONDS


logger = logging.getLogger(__name__)

OUTPUT_MODES = ('Archive', 'Mirror')


class DestinationUnavailable(Exception):
    """Raised when the destination volume or directory cannot be used."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class WriteError(Exception):
    """Raised when writing the backup output fails."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class LocalStorage:
    """
    Handler for writing backups to a local or locally-mounted directory.

    Archives land directly in the destination:
    {destination}/Backup-{YYYYMMDD-HHMMSS}.{ext}

    A mirror reproduces the source layout under the destination and never
    deletes files that were removed from the source.
    """

    def __init__(
        self,
        destination_path: str,
        compression_format: str = 'zip',
        progress_callback: Optional[Callable[[float], None]] = None,
        progress_interval: float = DEFAULT_INTERVAL_SECONDS,
        require_mount_point: bool = False
    ):
        """
        Initialize local storage handler.

        Args:
            destination_path: Directory that receives the backup output
            compression_format: Archive format for Archive mode
            progress_callback: Liveness hook invoked while a write is running
            progress_interval: Seconds between progress callbacks
            require_mount_point: Refuse destinations that live on the root filesystem
        """
        self.base_path = Path(destination_path)
        self.compression_format = compression_format
        self.progress_callback = progress_callback
        self.progress_interval = progress_interval
        self.require_mount_point = require_mount_point

    def ensure_available(self):
        """
        Verify the destination volume is mounted and the directory is usable.

        Only the final directory level is ever created. A destination whose
        parent is missing (e.g. an unplugged drive or unmounted mount point)
        is reported instead of being recreated on another volume.

        Raises:
            DestinationUnavailable: If the destination cannot be written to
        """
        destination = self.base_path
        anchor = destination.anchor

        if anchor and not os.path.exists(anchor):
            raise DestinationUnavailable(
                f"Destination volume {anchor} is not available for {destination}", str(destination)
            )

        if destination.exists():
            if not destination.is_dir():
                raise DestinationUnavailable(f"Destination is not a directory: {destination}", str(destination))
            if not os.access(destination, os.W_OK | os.X_OK):
                raise DestinationUnavailable(f"Destination is not writable: {destination}", str(destination))
            self._check_mounted(destination)
            return

        parent = destination.parent
        if not parent.is_dir():
            raise DestinationUnavailable(
                f"Destination volume is not available: {parent} does not exist", str(destination)
            )

        self._check_mounted(parent)

        if not os.access(parent, os.W_OK | os.X_OK):
            raise DestinationUnavailable(f"Permission denied creating {destination}", str(destination))

    def _check_mounted(self, existing: Path):
        """
        With require_mount_point, reject a directory on the system root's device.

        An unmounted mount point is still an empty directory on the root
        filesystem, so existence alone cannot tell it apart from the volume.
        """
        if not self.require_mount_point:
            return

        system_root = os.path.abspath(os.sep)
        if _device_of(str(existing)) == _device_of(system_root):
            raise DestinationUnavailable(
                f"Destination volume is not mounted: {existing} is on the same device as {system_root}",
                str(self.base_path)
            )

    def write(self, change_set: ChangeSet, mode: str) -> BackupArtifact:
        """
        Materialize the change set at the destination.

        Args:
            change_set: Files selected for this run
            mode: Output strategy ('Archive' or 'Mirror')

        Returns:
            BackupArtifact describing what was written

        Raises:
            DestinationUnavailable: If the destination volume is missing
            WriteError: If writing fails
            ValueError: If mode is invalid
        """
        if mode not in OUTPUT_MODES:
            raise ValueError(f"Invalid output mode: {mode}. Valid options: {list(OUTPUT_MODES)}")

        self.ensure_available()

        try:
            self.base_path.mkdir(exist_ok=True)
        except OSError as e:
            raise DestinationUnavailable(
                f"Failed to create destination directory {self.base_path}: {e}", str(self.base_path)
            ) from e

        if mode == 'Archive':
            return self.store_archive(change_set)
        return self.mirror(change_set)

    def store_archive(self, change_set: ChangeSet) -> BackupArtifact:
        """
        Write the change set as a single archive.

        The container is built under a hidden temporary name and renamed into
        place only after it has been closed, so a failed write never leaves a
        file that matches the archive naming pattern.

        Raises:
            WriteError: If the archive cannot be written or published
        """
        started_at = datetime.now()
        filename = generate_archive_filename(self.compression_format, started_at)
        temp_path = self.base_path / f".{filename}.partial"

        logger.info(f"Writing archive {filename} ({change_set.file_count} files)")

        try:
            run_with_heartbeat(
                lambda: create_archive(
                    change_set.source_path,
                    change_set.relative_paths(),
                    str(temp_path),
                    self.compression_format
                ),
                self.progress_callback,
                self.progress_interval
            )
            final_path = self._unique_archive_path(filename)
            os.replace(temp_path, final_path)
        except (CompressionError, OSError) as e:
            self._discard(temp_path)
            raise WriteError(f"Failed to write archive {filename} to {self.base_path}: {e}", str(self.base_path)) from e
        except BaseException:
            self._discard(temp_path)
            raise

        size = get_archive_size(str(final_path))
        logger.info(f"Archive written: {final_path} ({size / 1024 / 1024:.2f} MB)")

        return BackupArtifact(
            path=str(final_path),
            created_at=started_at.astimezone(timezone.utc),
            kind=ArtifactKind.ARCHIVE,
            size_bytes=size
        )

    def mirror(self, change_set: ChangeSet) -> BackupArtifact:
        """
        Copy each selected file to the same relative path under the destination.

        Existing copies are overwritten. A failure part-way through leaves the
        files copied so far in place.

        Raises:
            WriteError: If any file cannot be copied
        """
        started_at = datetime.now(timezone.utc)
        source_root = Path(change_set.source_path)

        logger.info(f"Mirroring {change_set.file_count} files to {self.base_path}")

        def copy_all():
            for record in change_set.records:
                dest_path = self.base_path / record.relative_path
                try:
                    dest_path.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(source_root / record.relative_path, dest_path)
                except PermissionError as e:
                    raise WriteError(f"Permission denied writing to {dest_path}: {e}", str(dest_path)) from e
                except OSError as e:
                    raise WriteError(f"Failed to copy {record.relative_path} to {dest_path}: {e}", str(dest_path)) from e

        run_with_heartbeat(copy_all, self.progress_callback, self.progress_interval)

        return BackupArtifact(
            path=str(self.base_path),
            created_at=started_at,
            kind=ArtifactKind.MIRROR_SNAPSHOT,
            size_bytes=change_set.total_bytes
        )

    def delete(self, filename: str):
        """
        Delete an archive from the destination.

        Args:
            filename: Name of the archive inside the destination

        Raises:
            OSError: If deletion fails
        """
        full_path = self.base_path / filename
        if full_path.exists():
            full_path.unlink()

    def list_archives(self, naming_pattern: Optional[Pattern] = None) -> List[Dict[str, Any]]:
        """
        List backup archives in the destination.

        Args:
            naming_pattern: Compiled regex file names must match
                (defaults to the Backup-YYYYMMDD-HHMMSS convention)

        Returns:
            List of dicts with 'name', 'path', 'created' and 'size' keys
        """
        if not self.base_path.is_dir():
            return []

        pattern = naming_pattern or ARCHIVE_NAME_PATTERN
        archives = []

        for entry in self.base_path.iterdir():
            if pattern.match(entry.name) is None or not entry.is_file():
                continue

            # Archives are never modified after publishing, so mtime is their creation time
            stat = entry.stat()
            created = stat.st_mtime

            archives.append({
                'name': entry.name,
                'path': str(entry),
                'created': datetime.fromtimestamp(created, tz=timezone.utc),
                'size': stat.st_size
            })

        return archives

    def get_full_path(self, filename: str) -> str:
        """Get full filesystem path of a file in the destination."""
        return str(self.base_path / filename)

    def _unique_archive_path(self, filename: str) -> Path:
        """Never overwrite an existing archive; append -N on a same-second collision."""
        candidate = self.base_path / filename
        if not candidate.exists():
            return candidate

        stem = strip_archive_extension(filename)
        extension = archive_extension(filename)
        counter = 1
        while True:
            candidate = self.base_path / f"{stem}-{counter}{extension}"
            if not candidate.exists():
                return candidate
            counter += 1

    @staticmethod
    def _discard(path: Path):
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove temporary archive {path}: {e}")


def newest_first(archives: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order list_archives() entries newest first: creation time, then publish order of the name."""
    return sorted(archives, key=lambda a: (a['created'], archive_name_order(a['name'])), reverse=True)


def _device_of(path: str) -> int:
    return os.stat(path).st_dev
