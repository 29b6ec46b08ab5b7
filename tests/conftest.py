"""
Shared pytest fixtures for dirvault tests.

This module provides fixtures for:
- Flask app and test client
- Source trees with controlled modification times
- Configuration store files
- Mock fixtures for the scheduler
"""

import os
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from dirvault import create_app
from dirvault.settings import load_configuration


# Fixed modification times (2024-01-01 00:00:01 UTC and on)
BASE_MTIME = datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()


def set_mtime(path, offset_seconds):
    """Set a file's mtime to BASE_MTIME + offset_seconds."""
    mtime = BASE_MTIME + offset_seconds
    os.utime(path, (mtime, mtime))


def mtime_instant(offset_seconds):
    """The aware datetime matching set_mtime(path, offset_seconds)."""
    return datetime.fromtimestamp(BASE_MTIME + offset_seconds, tz=timezone.utc)


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source tree with known modification times.

    Creates:
    - a.txt (t=1)
    - b.txt (t=2)
    - docs/c.txt (t=3)
    """
    source = tmp_path / 'source'
    source.mkdir()

    (source / 'a.txt').write_text('alpha')
    (source / 'b.txt').write_text('bravo')
    (source / 'docs').mkdir()
    (source / 'docs' / 'c.txt').write_text('charlie')

    set_mtime(source / 'a.txt', 1)
    set_mtime(source / 'b.txt', 2)
    set_mtime(source / 'docs' / 'c.txt', 3)

    return source


@pytest.fixture
def dest_dir(tmp_path):
    """Destination directory (not created; the writer creates the leaf)."""
    return tmp_path / 'backups'


@pytest.fixture
def write_config(tmp_path, source_dir, dest_dir):
    """
    Factory writing a configuration store and returning its path.

    Keyword arguments override document keys; pass None to drop a key.
    """
    config_path = tmp_path / 'backup-config.json'

    def _write(**overrides):
        document = {
            'SourceDirectory': str(source_dir),
            'BackupDirectory': str(dest_dir),
            'MaxBackups': 10,
            'Incremental': False,
            'Schedule': {'Enabled': True, 'Frequency': 'Daily', 'Time': '02:00'}
        }
        for key, value in overrides.items():
            if value is None:
                document.pop(key, None)
            else:
                document[key] = value

        config_path.write_text(json.dumps(document, indent=4))
        return str(config_path)

    return _write


@pytest.fixture
def backup_config(write_config):
    """A loaded default configuration backed by a file."""
    return load_configuration(write_config())


@pytest.fixture(scope='function')
def app(write_config):
    """
    Create Flask app with test configuration.

    Scheduler disabled, no log file, configuration store in a temp directory.
    """
    app = create_app('testing')
    app.config.update({
        'BACKUP_CONFIG_FILE': write_config(),
        'PROGRESS_INTERVAL_SECONDS': 0
    })

    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('dirvault.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.timezone = timezone.utc
        scheduler_instance.get_jobs.return_value = []
        scheduler_instance.get_job.return_value = None

        yield scheduler_instance
