"""
Unit tests for the advisory run lock (dirvault/backup/lock.py).
"""

import os
from unittest.mock import patch

import pytest

from dirvault.backup import lock as lock_module
from dirvault.backup.lock import RunLock, LockError, lock_path_for


class TestRunLock:
    """Test RunLock acquisition and release."""

    def test_lock_path_for(self):
        """Test the lock lives next to the configuration store."""
        assert lock_path_for('/etc/dirvault/config.json') == '/etc/dirvault/config.json.lock'

    def test_acquire_and_release(self, tmp_path):
        """Test the lock file holds our PID and is removed on release."""
        path = str(tmp_path / 'run.lock')

        with RunLock(path) as lock:
            assert lock.acquired
            with open(path) as f:
                assert f.read() == str(os.getpid())

        assert not os.path.exists(path)

    def test_second_acquire_fails(self, tmp_path):
        """Test a held lock rejects a concurrent run."""
        path = str(tmp_path / 'run.lock')

        with RunLock(path):
            with pytest.raises(LockError, match="holds"):
                RunLock(path).acquire()

        # Still released by the owner
        assert not os.path.exists(path)

    def test_released_on_exception(self, tmp_path):
        """Test the lock is released on every exit path."""
        path = str(tmp_path / 'run.lock')

        with pytest.raises(RuntimeError):
            with RunLock(path):
                raise RuntimeError("boom")

        assert not os.path.exists(path)

    def test_stale_lock_is_replaced(self, tmp_path):
        """Test a lock file left without a live holder is taken over."""
        path = tmp_path / 'run.lock'
        # PIDs this large are never allocated
        path.write_text('99999999')

        with RunLock(str(path)):
            assert path.read_text() == str(os.getpid())

    def test_unreadable_owner_is_stale(self, tmp_path):
        """Test a lock without a PID is replaced."""
        path = tmp_path / 'run.lock'
        path.write_text('garbage')

        with RunLock(str(path)) as lock:
            assert lock.acquired

    def test_release_without_acquire(self, tmp_path):
        """Test releasing an unacquired lock does nothing."""
        path = tmp_path / 'run.lock'
        path.write_text('123')

        RunLock(str(path)).release()

        assert path.exists()

    def test_lock_in_missing_directory(self, tmp_path):
        """Test lock creation failure raises LockError."""
        with pytest.raises(LockError, match="Failed to create lock"):
            RunLock(str(tmp_path / 'missing' / 'run.lock')).acquire()

    def test_stale_file_cannot_be_taken_twice(self, tmp_path):
        """Test two runs finding the same leftover file do not both get the lock."""
        path = tmp_path / 'run.lock'
        path.write_text('99999999')

        with RunLock(str(path)):
            with pytest.raises(LockError, match=f"pid {os.getpid()}"):
                RunLock(str(path)).acquire()

    @pytest.mark.skipif(not hasattr(os, 'fork'), reason="requires fork")
    def test_lock_of_crashed_process_is_free(self, tmp_path):
        """Test a holder that exits without releasing leaves no lock behind."""
        path = str(tmp_path / 'run.lock')

        child = os.fork()
        if child == 0:
            RunLock(path).acquire()
            os._exit(0)
        os.waitpid(child, 0)

        assert os.path.exists(path)
        with RunLock(path) as lock:
            assert lock.acquired

    @pytest.mark.skipif(os.name == 'nt', reason="open files cannot be unlinked on Windows")
    def test_retries_when_file_replaced_before_locking(self, tmp_path):
        """Test a lock file unlinked by its previous holder mid-acquire is not trusted."""
        path = tmp_path / 'run.lock'
        attempts = []
        real_lock_fd = lock_module._lock_fd

        def released_in_between(fd):
            if not attempts:
                # The previous holder releases and unlinks after our open
                os.remove(path)
            attempts.append(fd)
            real_lock_fd(fd)

        with patch('dirvault.backup.lock._lock_fd', released_in_between):
            with RunLock(str(path)):
                assert len(attempts) == 2
                assert path.read_text() == str(os.getpid())
                # A newcomer sees the same file we locked
                with pytest.raises(LockError):
                    RunLock(str(path)).acquire()

        assert not path.exists()
