"""
Backup configuration store.

Loads the JSON configuration document that describes what to back up and
where, validates it eagerly and returns an immutable BackupConfiguration.

Document layout:
    {
        "SourceDirectory": "C:/Users/me/Documents",
        "BackupDirectory": "E:/Backups",
        "MaxBackups": 10,
        "Incremental": false,
        "OutputMode": "Archive",
        "ArchiveFormat": "zip",
        "RequireMountPoint": false,
        "lastBackupDate": "2024-01-15T12:00:00+00:00",
        "Schedule": {"Enabled": true, "Frequency": "Daily", "Time": "02:00"}
    }
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any


DEFAULT_MAX_BACKUPS = 10
DEFAULT_OUTPUT_MODE = 'Archive'
DEFAULT_ARCHIVE_FORMAT = 'zip'

OUTPUT_MODES = ('Archive', 'Mirror')
ARCHIVE_FORMATS = ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')
SCHEDULE_FREQUENCIES = ('Daily', 'Weekly', 'Hourly')
DAYS_OF_WEEK = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')

_TIME_OF_DAY = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')


class ConfigurationError(Exception):
    """Raised when the configuration store is missing, unreadable or invalid."""

    def __init__(self, message: str, field_name: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name
        self.path = path


@dataclass(frozen=True)
class ScheduleSettings:
    """Recurrence consumed by the scheduler adapter only."""

    enabled: bool = False
    frequency: str = 'Daily'
    time: str = '02:00'
    day_of_week: str = 'Sunday'

    @property
    def hour(self) -> int:
        return int(self.time.split(':')[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(':')[1])


@dataclass(frozen=True)
class BackupConfiguration:
    """
    One backup definition, loaded once per run.

    The only field the engine ever changes is last_backup_timestamp, and it
    does so by building a new value (see StatePersister), never in place.
    """

    source_path: str
    destination_path: str
    max_retained_backups: int = DEFAULT_MAX_BACKUPS
    incremental_enabled: bool = False
    last_backup_timestamp: Optional[datetime] = None
    output_mode: str = DEFAULT_OUTPUT_MODE
    archive_format: str = DEFAULT_ARCHIVE_FORMAT
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    require_mount_point: bool = False
    config_path: Optional[str] = None

    def __post_init__(self):
        if not self.source_path:
            raise ConfigurationError("SourceDirectory is required", 'SourceDirectory')
        if not self.destination_path:
            raise ConfigurationError("BackupDirectory is required", 'BackupDirectory')
        if isinstance(self.max_retained_backups, bool) or not isinstance(self.max_retained_backups, int):
            raise ConfigurationError(
                f"MaxBackups must be an integer, got {self.max_retained_backups!r}", 'MaxBackups'
            )
        if self.max_retained_backups < 1:
            raise ConfigurationError(
                f"MaxBackups must be at least 1, got {self.max_retained_backups}", 'MaxBackups'
            )
        if self.output_mode not in OUTPUT_MODES:
            raise ConfigurationError(
                f"Invalid OutputMode: {self.output_mode}. Valid options: {list(OUTPUT_MODES)}",
                'OutputMode'
            )
        if self.archive_format not in ARCHIVE_FORMATS:
            raise ConfigurationError(
                f"Invalid ArchiveFormat: {self.archive_format}. Valid options: {list(ARCHIVE_FORMATS)}",
                'ArchiveFormat'
            )

    @property
    def is_archive_mode(self) -> bool:
        return self.output_mode == 'Archive'


def load_configuration(path: str) -> BackupConfiguration:
    """
    Load and validate the configuration store.

    Args:
        path: Path to the JSON configuration file

    Returns:
        Validated BackupConfiguration

    Raises:
        ConfigurationError: If the file cannot be read or any field is invalid
    """
    document = read_document(path)

    try:
        return parse_configuration(document, config_path=path)
    except ConfigurationError as e:
        e.path = path
        raise


def read_document(path: str) -> Dict[str, Any]:
    """Read the raw configuration document as a dict."""
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            document = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {path}", path=path) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file is not valid JSON: {path}: {e}", path=path) from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration file {path}: {e}", path=path) from e

    if not isinstance(document, dict):
        raise ConfigurationError(f"Configuration root must be an object: {path}", path=path)

    return document


def parse_configuration(document: Dict[str, Any], config_path: Optional[str] = None) -> BackupConfiguration:
    """
    Build a BackupConfiguration from a raw document, applying defaults.

    Raises:
        ConfigurationError: If a field is missing or has the wrong type
    """
    source = _require_string(document, 'SourceDirectory')
    destination = _require_string(document, 'BackupDirectory')

    max_backups = document.get('MaxBackups', DEFAULT_MAX_BACKUPS)
    if max_backups is None:
        max_backups = DEFAULT_MAX_BACKUPS

    incremental = document.get('Incremental', False)
    if not isinstance(incremental, bool):
        raise ConfigurationError(f"Incremental must be true or false, got {incremental!r}", 'Incremental')

    require_mount_point = document.get('RequireMountPoint', False)
    if not isinstance(require_mount_point, bool):
        raise ConfigurationError(
            f"RequireMountPoint must be true or false, got {require_mount_point!r}", 'RequireMountPoint'
        )

    return BackupConfiguration(
        source_path=source,
        destination_path=destination,
        max_retained_backups=max_backups,
        incremental_enabled=incremental,
        last_backup_timestamp=parse_timestamp(document.get('lastBackupDate')),
        output_mode=document.get('OutputMode') or DEFAULT_OUTPUT_MODE,
        archive_format=document.get('ArchiveFormat') or DEFAULT_ARCHIVE_FORMAT,
        schedule=parse_schedule(document.get('Schedule')),
        require_mount_point=require_mount_point,
        config_path=config_path
    )


def parse_schedule(section: Optional[Dict[str, Any]]) -> ScheduleSettings:
    """Validate the Schedule section. A missing section means disabled."""
    if section is None:
        return ScheduleSettings()

    if not isinstance(section, dict):
        raise ConfigurationError("Schedule must be an object", 'Schedule')

    enabled = section.get('Enabled', False)
    if not isinstance(enabled, bool):
        raise ConfigurationError(f"Schedule.Enabled must be true or false, got {enabled!r}", 'Schedule.Enabled')

    frequency = section.get('Frequency', 'Daily')
    if frequency not in SCHEDULE_FREQUENCIES:
        raise ConfigurationError(
            f"Unsupported schedule frequency: {frequency}. Valid options: {list(SCHEDULE_FREQUENCIES)}",
            'Schedule.Frequency'
        )

    time_of_day = section.get('Time', '02:00')
    if not isinstance(time_of_day, str) or not _TIME_OF_DAY.match(time_of_day):
        raise ConfigurationError(f"Schedule.Time must be HH:MM, got {time_of_day!r}", 'Schedule.Time')

    day_of_week = section.get('DayOfWeek', 'Sunday')
    if day_of_week not in DAYS_OF_WEEK:
        raise ConfigurationError(f"Invalid Schedule.DayOfWeek: {day_of_week}", 'Schedule.DayOfWeek')

    return ScheduleSettings(
        enabled=enabled,
        frequency=frequency,
        time=time_of_day,
        day_of_week=day_of_week
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 watermark into an aware datetime.

    Naive values are interpreted as local time.
    """
    if value is None or value == '':
        return None

    if not isinstance(value, str):
        raise ConfigurationError(f"lastBackupDate must be an ISO-8601 string, got {value!r}", 'lastBackupDate')

    # fromisoformat only accepts a trailing Z from 3.11 on
    text = value[:-1] + '+00:00' if value.endswith('Z') else value

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ConfigurationError(f"lastBackupDate is not ISO-8601: {value!r}", 'lastBackupDate') from e

    if parsed.tzinfo is None:
        parsed = parsed.astimezone()

    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a watermark for the configuration store."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).isoformat()


def _require_string(document: Dict[str, Any], key: str) -> str:
    value = document.get(key)
    if value is None or value == '':
        raise ConfigurationError(f"{key} is required", key)
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a path string, got {value!r}", key)
    return value
