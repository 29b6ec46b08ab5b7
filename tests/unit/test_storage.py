"""
Unit tests for output writers (dirvault/backup/storage.py).

Tests LocalStorage archive and mirror strategies and destination checks.
"""

import os
import zipfile
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from dirvault.backup.storage import LocalStorage, DestinationUnavailable, WriteError
from dirvault.backup.sources import ChangeSetSelector
from dirvault.backup.compression import CompressionError
from dirvault.backup.models import ArtifactKind


@pytest.fixture
def full_change_set(source_dir):
    return ChangeSetSelector().select(str(source_dir), False, None)


class TestDestinationAvailability:
    """Test LocalStorage.ensure_available."""

    def test_existing_destination(self, dest_dir):
        """Test an existing writable directory is accepted."""
        dest_dir.mkdir()

        LocalStorage(str(dest_dir)).ensure_available()

    def test_missing_leaf_with_existing_parent(self, dest_dir):
        """Test a missing leaf under an existing parent is accepted."""
        LocalStorage(str(dest_dir)).ensure_available()

        # Validation itself never creates anything
        assert not dest_dir.exists()

    def test_missing_parent_is_unavailable(self, tmp_path):
        """Test an absent volume/mount point is reported, not created."""
        destination = tmp_path / 'unmounted-drive' / 'Backups'

        with pytest.raises(DestinationUnavailable, match="not available") as exc_info:
            LocalStorage(str(destination)).ensure_available()

        assert exc_info.value.path == str(destination)
        assert not (tmp_path / 'unmounted-drive').exists()

    def test_destination_is_a_file(self, tmp_path):
        """Test a file at the destination path is rejected."""
        destination = tmp_path / 'backups'
        destination.write_text('not a directory')

        with pytest.raises(DestinationUnavailable, match="not a directory"):
            LocalStorage(str(destination)).ensure_available()

    def test_missing_volume_anchor(self, dest_dir):
        """Test a missing drive letter / root is reported."""
        with patch('dirvault.backup.storage.os.path.exists', return_value=False):
            with pytest.raises(DestinationUnavailable, match="volume"):
                LocalStorage(str(dest_dir)).ensure_available()

    def test_write_fails_without_side_effects(self, tmp_path, full_change_set):
        """Test write() refuses an unavailable destination before writing."""
        destination = tmp_path / 'unmounted-drive' / 'Backups'

        with pytest.raises(DestinationUnavailable):
            LocalStorage(str(destination)).write(full_change_set, 'Archive')

        assert not (tmp_path / 'unmounted-drive').exists()


def fake_devices(mounted):
    """_device_of stand-in: paths under any of `mounted` get device 2, everything else device 1."""
    def device_of(path):
        resolved = os.path.abspath(path)
        for mount in mounted:
            if resolved == str(mount) or resolved.startswith(str(mount) + os.sep):
                return 2
        return 1
    return device_of


class TestMountPointRequirement:
    """Test the RequireMountPoint volume check."""

    def test_unmounted_mount_point_rejected(self, tmp_path, full_change_set):
        """Test an empty mount point on the root device is not written into."""
        mount_point = tmp_path / 'mnt' / 'usb'
        mount_point.mkdir(parents=True)
        destination = mount_point / 'Backups'

        with patch('dirvault.backup.storage._device_of', fake_devices([])):
            with pytest.raises(DestinationUnavailable, match="not mounted") as exc_info:
                LocalStorage(str(destination), require_mount_point=True).write(full_change_set, 'Archive')

        assert exc_info.value.path == str(destination)
        assert not destination.exists()

    def test_mounted_volume_accepted(self, tmp_path):
        """Test a parent on its own device passes."""
        mount_point = tmp_path / 'mnt' / 'usb'
        mount_point.mkdir(parents=True)

        with patch('dirvault.backup.storage._device_of', fake_devices([mount_point])):
            LocalStorage(str(mount_point / 'Backups'), require_mount_point=True).ensure_available()

    def test_existing_destination_on_root_device_rejected(self, dest_dir):
        """Test an existing destination folder is checked as well."""
        dest_dir.mkdir()

        with patch('dirvault.backup.storage._device_of', fake_devices([])):
            with pytest.raises(DestinationUnavailable, match="not mounted"):
                LocalStorage(str(dest_dir), require_mount_point=True).ensure_available()

    def test_check_disabled_by_default(self, tmp_path):
        """Test the device is not consulted unless requested."""
        with patch('dirvault.backup.storage._device_of') as mock_device:
            LocalStorage(str(tmp_path / 'Backups')).ensure_available()

        mock_device.assert_not_called()


class TestArchiveWrite:
    """Test the Archive strategy."""

    @freeze_time("2024-01-15 02:00:00")
    def test_archive_written_with_timestamp_name(self, dest_dir, full_change_set):
        """Test archive name and artifact metadata."""
        artifact = LocalStorage(str(dest_dir)).write(full_change_set, 'Archive')

        assert os.path.basename(artifact.path) == 'Backup-20240115-020000.zip'
        assert artifact.kind == ArtifactKind.ARCHIVE
        assert artifact.size_bytes == os.path.getsize(artifact.path)

    def test_archive_contains_relative_paths(self, dest_dir, full_change_set):
        """Test every selected file is archived at its relative path."""
        artifact = LocalStorage(str(dest_dir)).write(full_change_set, 'Archive')

        with zipfile.ZipFile(artifact.path, 'r') as zipf:
            assert sorted(zipf.namelist()) == ['a.txt', 'b.txt', 'docs/c.txt']

    def test_archive_tar_format(self, dest_dir, full_change_set):
        """Test configured compression format is honoured."""
        artifact = LocalStorage(str(dest_dir), compression_format='tar.gz').write(full_change_set, 'Archive')

        assert artifact.path.endswith('.tar.gz')

    def test_no_temporary_file_left_after_success(self, dest_dir, full_change_set):
        """Test only the final archive remains."""
        LocalStorage(str(dest_dir)).write(full_change_set, 'Archive')

        assert [p.name for p in dest_dir.iterdir() if p.name.endswith('.partial')] == []
        assert len(list(dest_dir.iterdir())) == 1

    def test_failed_write_leaves_no_artifact(self, dest_dir, full_change_set):
        """Test a failed write leaves neither a partial nor a final archive."""
        def broken_archive(source_root, relative_paths, archive_path, compression_format):
            with open(archive_path, 'wb') as f:
                f.write(b'partial')
            raise CompressionError("disk full")

        with patch('dirvault.backup.storage.create_archive', side_effect=broken_archive):
            with pytest.raises(WriteError, match="disk full"):
                LocalStorage(str(dest_dir)).write(full_change_set, 'Archive')

        assert list(dest_dir.iterdir()) == []

    def test_failed_rename_cleans_up(self, dest_dir, full_change_set):
        """Test a failed publish removes the temporary archive."""
        with patch('dirvault.backup.storage.os.replace', side_effect=OSError("device removed")):
            with pytest.raises(WriteError, match="device removed"):
                LocalStorage(str(dest_dir)).write(full_change_set, 'Archive')

        assert list(dest_dir.iterdir()) == []

    @freeze_time("2024-01-15 02:00:00")
    def test_same_second_collision_gets_suffix(self, dest_dir, full_change_set):
        """Test an existing archive is never overwritten."""
        storage = LocalStorage(str(dest_dir))

        first = storage.write(full_change_set, 'Archive')
        second = storage.write(full_change_set, 'Archive')

        assert os.path.basename(first.path) == 'Backup-20240115-020000.zip'
        assert os.path.basename(second.path) == 'Backup-20240115-020000-1.zip'

    def test_progress_callback_invoked_during_slow_write(self, dest_dir, full_change_set):
        """Test the heartbeat fires while the archive is being written."""
        import time
        from dirvault.backup import storage as storage_module

        calls = []
        real_create_archive = storage_module.create_archive

        def slow_archive(*args, **kwargs):
            time.sleep(0.35)
            return real_create_archive(*args, **kwargs)

        storage = LocalStorage(str(dest_dir), progress_callback=calls.append, progress_interval=0.1)

        with patch('dirvault.backup.storage.create_archive', side_effect=slow_archive):
            storage.write(full_change_set, 'Archive')

        assert len(calls) >= 1

    def test_invalid_mode(self, dest_dir, full_change_set):
        """Test unknown output mode raises ValueError."""
        with pytest.raises(ValueError, match="Invalid output mode"):
            LocalStorage(str(dest_dir)).write(full_change_set, 'Cloud')


class TestMirrorWrite:
    """Test the Mirror strategy."""

    def test_mirror_recreates_tree(self, dest_dir, source_dir, full_change_set):
        """Test files are copied to the same relative paths."""
        artifact = LocalStorage(str(dest_dir)).write(full_change_set, 'Mirror')

        assert artifact.kind == ArtifactKind.MIRROR_SNAPSHOT
        assert artifact.path == str(dest_dir)
        assert (dest_dir / 'docs' / 'c.txt').read_text() == 'charlie'
        assert (dest_dir / 'a.txt').read_text() == 'alpha'

    def test_mirror_preserves_mtime(self, dest_dir, source_dir, full_change_set):
        """Test copy2 keeps modification times."""
        LocalStorage(str(dest_dir)).write(full_change_set, 'Mirror')

        assert os.path.getmtime(dest_dir / 'a.txt') == os.path.getmtime(source_dir / 'a.txt')

    def test_mirror_overwrites_existing_copy(self, dest_dir, source_dir, full_change_set):
        """Test an existing mirrored file is replaced."""
        dest_dir.mkdir()
        (dest_dir / 'a.txt').write_text('stale')

        LocalStorage(str(dest_dir)).write(full_change_set, 'Mirror')

        assert (dest_dir / 'a.txt').read_text() == 'alpha'

    def test_mirror_keeps_files_removed_from_source(self, dest_dir, source_dir):
        """Test deletions in the source are not propagated."""
        storage = LocalStorage(str(dest_dir))
        storage.write(ChangeSetSelector().select(str(source_dir), False, None), 'Mirror')

        (source_dir / 'a.txt').unlink()
        storage.write(ChangeSetSelector().select(str(source_dir), False, None), 'Mirror')

        assert (dest_dir / 'a.txt').exists()

    def test_mirror_copy_failure(self, dest_dir, full_change_set):
        """Test a copy failure raises WriteError."""
        with patch('dirvault.backup.storage.shutil.copy2', side_effect=OSError("I/O error")):
            with pytest.raises(WriteError, match="I/O error"):
                LocalStorage(str(dest_dir)).write(full_change_set, 'Mirror')


class TestListAndDelete:
    """Test archive listing and deletion."""

    def test_list_archives_filters_by_pattern(self, dest_dir):
        """Test only archive-named files are listed."""
        dest_dir.mkdir()
        (dest_dir / 'Backup-20240101-000000.zip').write_bytes(b'a')
        (dest_dir / '.Backup-20240102-000000.zip.partial').write_bytes(b'b')
        (dest_dir / 'notes.txt').write_text('c')

        archives = LocalStorage(str(dest_dir)).list_archives()

        assert [a['name'] for a in archives] == ['Backup-20240101-000000.zip']
        assert archives[0]['size'] == 1

    def test_list_archives_missing_destination(self, dest_dir):
        """Test a missing destination lists nothing."""
        assert LocalStorage(str(dest_dir)).list_archives() == []

    def test_delete(self, dest_dir):
        """Test deleting an archive."""
        dest_dir.mkdir()
        (dest_dir / 'Backup-20240101-000000.zip').write_bytes(b'a')

        LocalStorage(str(dest_dir)).delete('Backup-20240101-000000.zip')

        assert not (dest_dir / 'Backup-20240101-000000.zip').exists()

    def test_get_full_path(self, dest_dir):
        """Test full path resolution."""
        assert LocalStorage(str(dest_dir)).get_full_path('x.zip') == str(dest_dir / 'x.zip')
