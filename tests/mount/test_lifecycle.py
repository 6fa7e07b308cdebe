"""Tests for the mount lifecycle manager."""

import sys

import pytest
from conftest import MarkerProbe, fake_mount_command, ready_marker

from with_mount.exceptions import CleanupError, MountSetupError
from with_mount.models import MountRequest
from with_mount.mount import MountLifecycleManager


class TestMountStart:
    """Test establishing a mount."""

    def test_temporary_mount(self, probe):
        """Test mounting on a fresh temporary directory."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command("a.txt")), probe=probe
        )
        handle = manager.start()
        try:
            assert handle.is_temporary is True
            assert handle.path.is_dir()
            assert handle.path.name.startswith("with-mount.")
            assert (handle.path / "a.txt").exists()
            assert probe.waited == [handle.path]
            assert handle.pid is not None
        finally:
            manager.stop()

        assert not handle.path.exists()
        assert handle.process.poll() is not None

    def test_custom_mountpoint_is_kept(self, probe, mountpoint):
        """Test a caller-supplied mountpoint is never removed."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command("a.txt"), mountpoint=mountpoint),
            probe=probe,
        )
        handle = manager.start()
        assert handle.path == mountpoint
        assert handle.is_temporary is False

        manager.stop()
        assert mountpoint.is_dir()
        assert probe.stopped == [mountpoint]

    def test_missing_custom_mountpoint(self, probe, tmp_path):
        """Test a nonexistent mountpoint fails before anything is started."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command(), mountpoint=tmp_path / "nope"),
            probe=probe,
        )
        with pytest.raises(MountSetupError, match="does not exist"):
            manager.start()
        assert manager.handle is None
        manager.stop()
        assert probe.stopped == []

    def test_custom_mountpoint_is_a_file(self, probe, tmp_path):
        """Test a regular file is rejected as a mountpoint."""
        target = tmp_path / "file"
        target.write_text("not a directory")
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command(), mountpoint=target),
            probe=probe,
        )
        with pytest.raises(MountSetupError, match="is not a directory"):
            manager.start()
        assert manager.handle is None
        assert target.read_text() == "not a directory"

    def test_missing_placeholder_cleans_up_temp_dir(self, probe):
        """Test the directory allocated before the placeholder check is removed."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=[sys.executable, "-c", "pass"]), probe=probe
        )
        with pytest.raises(MountSetupError, match="MOUNTPOINT"):
            manager.start()

        path = manager.handle.path
        assert path.exists()
        assert manager.handle.process is None

        manager.stop()
        assert not path.exists()
        # Nothing was mounted, so nothing is unmounted.
        assert probe.stopped == []

    def test_mount_command_not_found(self, probe):
        """Test an unknown mount command is a setup error."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=["/nonexistent/mounter", "MOUNTPOINT"]), probe=probe
        )
        with pytest.raises(MountSetupError, match="Failed to start"):
            manager.start()
        manager.stop()
        assert not manager.handle.path.exists()

    def test_readiness_failure_propagates(self, probe):
        """Test a failing mount command surfaces as MountSetupError."""
        manager = MountLifecycleManager(
            MountRequest(
                mount_command=[sys.executable, "-c", "import sys; sys.exit(2)", "MOUNTPOINT"]
            ),
            probe=probe,
        )
        with pytest.raises(MountSetupError, match="exited with 2"):
            manager.start()
        manager.stop()
        assert not manager.handle.path.exists()

    def test_empty_mount_rejected(self, probe):
        """Test an empty mount fails unless allowed."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command()), probe=probe
        )
        with pytest.raises(MountSetupError, match="empty"):
            manager.start()

        path = manager.handle.path
        manager.stop()
        assert probe.stopped == [path]
        assert not path.exists()

    def test_unlistable_mount_rejected(self, probe, unlistable_mount):
        """Test a mount that cannot be listed is a setup error."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command("a.txt")), probe=probe
        )
        with pytest.raises(MountSetupError, match="Cannot list mount"):
            manager.start()

        path = manager.handle.path
        assert unlistable_mount == [path]
        manager.stop()
        assert probe.stopped == [path]
        assert not path.exists()

    def test_empty_mount_allowed(self, probe):
        """Test --allow-empty accepts an empty mount."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command(), allow_empty=True), probe=probe
        )
        handle = manager.start()
        assert MountLifecycleManager.is_empty(handle.path)
        manager.stop()


class TestMountStop:
    """Test tearing a mount down."""

    def test_stop_is_idempotent(self, probe):
        """Test calling stop twice does nothing the second time."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command("a.txt")), probe=probe
        )
        handle = manager.start()

        manager.stop()
        manager.stop()

        assert probe.stopped == [handle.path]
        assert handle.stopped is True
        assert handle.removed is True
        assert not handle.path.exists()
        assert not ready_marker(handle.path).exists()

    def test_stop_before_start(self, probe):
        """Test stop without a handle is a no-op."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command()), probe=probe
        )
        manager.stop()
        assert probe.stopped == []

    def test_unmount_failure_raises_after_both_steps(self):
        """Test a failed unmount is reported and the directory left alone."""
        probe = MarkerProbe(fail_unmount=True)
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command("a.txt")), probe=probe
        )
        handle = manager.start()

        with pytest.raises(CleanupError) as excinfo:
            manager.stop()

        message = str(excinfo.value)
        assert "still mounted" in message
        assert "Could not remove mountpoint" in message
        # Files "on the remote" must not be deleted.
        assert (handle.path / "a.txt").exists()
        assert handle.stopped is False
        assert handle.removed is False

        for entry in handle.path.iterdir():
            entry.unlink()
        handle.path.rmdir()
        ready_marker(handle.path).unlink(missing_ok=True)

    def test_already_removed_directory(self, probe):
        """Test a temp dir that vanished counts as removed."""
        manager = MountLifecycleManager(
            MountRequest(mount_command=fake_mount_command("a.txt")), probe=probe
        )
        handle = manager.start()
        probe.stop_mount(handle.process, handle.path)
        handle.path.rmdir()

        manager.stop()
        assert handle.removed is True
