"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Acquire the run lock
2. Validating: source readable, destination volume present
3. Selecting: build the change set (empty -> NoChanges, nothing else happens)
4. Writing: archive or mirror the change set
5. Persisting: commit the watermark captured when selection began
6. Pruning: enforce archive retention (warnings only)
7. Release the run lock
"""

import logging
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Optional, Callable

from dirvault.settings import BackupConfiguration, ConfigurationError, load_configuration
from .models import BackupRunResult, RunState, RunStatus
from .sources import ChangeSetSelector
from .storage import LocalStorage
from .retention import RetentionManager, RetentionWarning
from .state import StatePersister
from .lock import RunLock, lock_path_for
from .compression import ARCHIVE_NAME_PATTERN
from .progress import log_progress, DEFAULT_INTERVAL_SECONDS


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one configuration.

    States: Idle -> Validating -> Selecting -> Writing -> Persisting ->
    Pruning -> Done, with Failed reachable from Validating through
    Persisting and NoChanges reachable from Selecting.
    """

    def __init__(
        self,
        config: BackupConfiguration,
        progress_callback: Optional[Callable[[float], None]] = log_progress,
        progress_interval: float = DEFAULT_INTERVAL_SECONDS,
        lock_path: Optional[str] = None
    ):
        """
        Initialize backup executor.

        Args:
            config: Validated configuration for this run
            progress_callback: Liveness hook invoked while the write runs
            progress_interval: Seconds between progress callbacks
            lock_path: Advisory lock file; defaults to one next to the configuration store
        """
        self.config = config
        self.progress_callback = progress_callback
        self.progress_interval = progress_interval

        if lock_path is None and config.config_path:
            lock_path = lock_path_for(config.config_path)
        self.lock_path = lock_path

        self.selector = ChangeSetSelector()
        self.storage = LocalStorage(
            config.destination_path,
            compression_format=config.archive_format,
            progress_callback=progress_callback,
            progress_interval=progress_interval,
            require_mount_point=config.require_mount_point
        )
        self.retention = RetentionManager()
        self.persister = StatePersister()

        self.state = RunState.IDLE
        self.result = None
        self.logs = []

    def execute(self) -> BackupRunResult:
        """
        Execute the backup.

        Returns:
            BackupRunResult; failures are recorded on it rather than raised
        """
        self.result = BackupRunResult(
            status=RunStatus.FAILED,
            state=RunState.IDLE,
            started_at=datetime.now(timezone.utc)
        )

        self._log(f"Starting backup: {self.config.source_path} -> {self.config.destination_path}")

        try:
            with self._run_lock():
                self._execute_workflow()

        except Exception as e:
            self.result.status = RunStatus.FAILED
            self.result.error = e
            self.result.failed_in = self.state
            self._transition(RunState.FAILED)
            self._log(f"Backup failed during {self.result.failed_in.value}: {type(e).__name__}: {e}", logging.ERROR)

        finally:
            self.result.completed_at = datetime.now(timezone.utc)
            self.result.logs = list(self.logs)

        return self.result

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        config = self.config

        # Step 1: Validate before any side effect
        self._transition(RunState.VALIDATING)
        self.selector.validate(config.source_path)
        self.storage.ensure_available()

        # Step 2: Select; the watermark is taken before enumeration starts
        self._transition(RunState.SELECTING)
        new_timestamp = datetime.now(timezone.utc)
        change_set = self.selector.select(
            config.source_path,
            config.incremental_enabled,
            config.last_backup_timestamp
        )
        self._log(
            f"Change set: {change_set.file_count} files, {change_set.total_bytes} bytes "
            f"(mode: {change_set.mode.value})"
        )

        if change_set.is_empty:
            self.result.status = RunStatus.NO_CHANGES
            self._transition(RunState.NO_CHANGES)
            self._log("No changes since last backup, nothing to do")
            return

        # Step 3: Write
        self._transition(RunState.WRITING)
        artifact = self.storage.write(change_set, config.output_mode)
        self.result.artifact = artifact
        self.result.files_written = change_set.file_count
        self.result.bytes_written = change_set.total_bytes
        self._log(f"{artifact.kind.value} written: {artifact.path}")

        # Step 4: Persist the watermark
        self._transition(RunState.PERSISTING)
        self.config = self.persister.commit(config, new_timestamp)
        self.result.watermark = new_timestamp
        self._log(f"Watermark updated to {new_timestamp.isoformat()}")

        # Step 5: Prune; nothing here can fail the run
        self._transition(RunState.PRUNING)
        if config.is_archive_mode:
            self._prune()
        else:
            self._log("Mirror mode, skipping retention")

        self.result.status = RunStatus.SUCCESS
        self._transition(RunState.DONE)
        self._log("Backup completed successfully")

    def _prune(self):
        try:
            prune_result = self.retention.prune(
                self.config.destination_path,
                ARCHIVE_NAME_PATTERN,
                self.config.max_retained_backups
            )
        except Exception as e:
            warning = RetentionWarning(f"Retention pass failed: {e}", self.config.destination_path)
            self.result.warnings.append(warning)
            self._log(str(warning), logging.WARNING)
            return

        for path in prune_result.deleted:
            self._log(f"Deleted old archive: {path}")
        for warning in prune_result.warnings:
            self._log(f"Warning: {warning}", logging.WARNING)
        self.result.warnings.extend(prune_result.warnings)

    def _run_lock(self):
        if self.lock_path is None:
            return nullcontext()
        return RunLock(self.lock_path)

    def _transition(self, state: RunState):
        self.state = state
        self.result.state = state
        logger.debug(f"Backup state: {state.value}")

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def execute_backup(
    config_path: str,
    progress_callback: Optional[Callable[[float], None]] = log_progress,
    progress_interval: float = DEFAULT_INTERVAL_SECONDS
) -> BackupRunResult:
    """
    Load the configuration store and execute one backup run.

    Configuration errors are reported as a Failed result before any file is
    touched.

    Args:
        config_path: Path to the JSON configuration store
        progress_callback: Liveness hook invoked while the write runs
        progress_interval: Seconds between progress callbacks

    Returns:
        BackupRunResult
    """
    try:
        config = load_configuration(config_path)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration {config_path}: {e}")
        now = datetime.now(timezone.utc)
        return BackupRunResult(
            status=RunStatus.FAILED,
            state=RunState.FAILED,
            error=e,
            failed_in=RunState.IDLE,
            started_at=now,
            completed_at=now,
            logs=[f"[{now.strftime('%Y-%m-%d %H:%M:%S UTC')}] Invalid configuration: {e}"]
        )

    executor = BackupExecutor(config, progress_callback=progress_callback, progress_interval=progress_interval)
    return executor.execute()
