"""
Compression handlers for backup archives.

Supports multiple formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import re
import tarfile
import zipfile
from pathlib import Path
from typing import Iterable
from datetime import datetime


ARCHIVE_PREFIX = 'Backup'
TIMESTAMP_FORMAT = '%Y%m%d-%H%M%S'

EXTENSION_MAP = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}

# Backup-20240115-020000.zip, or Backup-20240115-020000-1.zip after a same-second collision
ARCHIVE_NAME_PATTERN = re.compile(
    r'^' + ARCHIVE_PREFIX + r'-(?P<stamp>\d{8}-\d{6})(?:-(?P<seq>\d+))?\.(?:zip|tar\.gz|tar\.bz2|tar\.xz|tar)$'
)


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(
    source_root: str,
    relative_paths: Iterable[str],
    archive_path: str,
    compression_format: str = 'zip'
) -> str:
    """
    Create a compressed archive containing the given files.

    Each member is stored at its path relative to source_root.

    Args:
        source_root: Directory the relative paths are resolved against
        relative_paths: POSIX-style paths of the files to include
        archive_path: Full output path, extension included
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        archive_path

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    relative_paths = list(relative_paths)
    if not relative_paths:
        raise CompressionError("No files provided")

    if compression_format not in EXTENSION_MAP:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(EXTENSION_MAP.keys())}"
        )

    handler = _create_zip if compression_format == 'zip' else _create_tar

    try:
        handler(Path(source_root), relative_paths, archive_path, compression_format)
        return archive_path
    except Exception as e:
        raise CompressionError(f"Failed to create archive {archive_path}: {e}") from e


def _create_zip(source_root: Path, relative_paths: list, archive_path: str, compression_format: str):
    """
    Create a ZIP archive.

    Args:
        source_root: Root the members are relative to
        relative_paths: Member paths
        archive_path: Output archive path
        compression_format: Not used for zip, kept for interface consistency
    """
    # strict_timestamps=False clamps pre-1980 mtimes instead of failing
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED, strict_timestamps=False) as zipf:
        for relative_path in relative_paths:
            zipf.write(source_root / relative_path, relative_path)


def _create_tar(source_root: Path, relative_paths: list, archive_path: str, compression_format: str):
    """
    Create a TAR archive with optional compression.

    Args:
        source_root: Root the members are relative to
        relative_paths: Member paths
        archive_path: Output archive path
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz', 'none')
    """
    mode_map = {
        'tar.gz': 'w:gz',
        'tar.bz2': 'w:bz2',
        'tar.xz': 'w:xz',
        'none': 'w'
    }

    mode = mode_map.get(compression_format, 'w:gz')

    with tarfile.open(archive_path, mode) as tar:
        for relative_path in relative_paths:
            tar.add(source_root / relative_path, arcname=relative_path, recursive=False)


def generate_archive_filename(compression_format: str, timestamp: datetime = None) -> str:
    """
    Generate a standardized archive filename.

    Format: Backup-{YYYYMMDD-HHMMSS}.{ext}

    Args:
        compression_format: Compression format
        timestamp: Time the write started (defaults to now)

    Returns:
        Filename (without path)
    """
    if timestamp is None:
        timestamp = datetime.now()

    extension = EXTENSION_MAP.get(compression_format, 'zip')

    return f"{ARCHIVE_PREFIX}-{timestamp.strftime(TIMESTAMP_FORMAT)}.{extension}"


def strip_archive_extension(filename: str) -> str:
    """
    Strip archive extension from filename.

    Handles multi-part extensions like .tar.gz, .tar.bz2, .tar.xz

    Args:
        filename: Archive filename with extension

    Returns:
        Filename without extension
    """
    for extension in ('.tar.gz', '.tar.bz2', '.tar.xz', '.zip', '.tar'):
        if filename.endswith(extension):
            return filename[:-len(extension)]

    return os.path.splitext(filename)[0]


def archive_extension(filename: str) -> str:
    """Return the archive extension of filename, including the leading dot."""
    return filename[len(strip_archive_extension(filename)):]


def is_archive_name(filename: str) -> bool:
    """Check whether filename follows the backup archive naming convention."""
    return ARCHIVE_NAME_PATTERN.match(filename) is not None


def archive_name_order(filename: str) -> tuple:
    """
    Sort key placing archive names in the order they were published.

    Backup-20240101-120000-1.zip follows Backup-20240101-120000.zip; a plain
    string comparison gets this backwards since '-' sorts before '.'. Names
    outside the convention compare by the name itself.
    """
    match = ARCHIVE_NAME_PATTERN.match(filename)
    if match is None:
        return (filename, 0)
    return (match.group('stamp'), int(match.group('seq') or 0))


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")
