"""Mount readiness polling and teardown for mount commands run as children."""

import logging
import os
import shutil
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Protocol

from ..config import SupervisorOptions
from ..exceptions import MountSetupError, UnmountError

logger = logging.getLogger(__name__)


class MountProbe(Protocol):
    """Waits for a mount to appear and takes it down again."""

    def wait_for_mount(self, process: subprocess.Popen, path: Path) -> None:
        """Block until ``path`` is usable; raise MountSetupError otherwise."""
        ...

    def stop_mount(self, process: subprocess.Popen | None, path: Path) -> None:
        """Stop the mount command and wait until ``path`` is unmounted."""
        ...


class SystemMountProbe:
    """
    Probe backed by the kernel's view of mountpoints.

    The mount command is considered ready once ``path`` becomes a mountpoint.
    Tearing down signals the mount command's whole process group, which is
    how FUSE tools such as rclone and sshfs expect to be stopped, and falls
    back to ``fusermount -u``/``umount`` if the mount outlives its process.
    """

    def __init__(self, options: SupervisorOptions | None = None) -> None:
        self.options = options or SupervisorOptions()

    def is_mounted(self, path: Path) -> bool:
        return os.path.ismount(path)

    def wait_for_mount(self, process: subprocess.Popen, path: Path) -> None:
        deadline = (
            time.monotonic() + self.options.mount_timeout
            if self.options.mount_timeout is not None
            else None
        )

        while not self.is_mounted(path):
            returncode = process.poll()
            if returncode is not None and returncode != 0:
                raise MountSetupError(
                    f"Mount command exited with status {returncode} before "
                    f"{path} was mounted"
                )
            if deadline is not None and time.monotonic() >= deadline:
                raise MountSetupError(
                    f"Timed out after {self.options.mount_timeout}s waiting for "
                    f"{path} to be mounted"
                )
            time.sleep(self.options.poll_interval)

        logger.debug(f"{path} is mounted")

    def stop_mount(self, process: subprocess.Popen | None, path: Path) -> None:
        if process is None or process.poll() is not None:
            # Daemonized or already gone: nothing to signal or wait for.
            if not self.is_mounted(path):
                return
        else:
            self._stop_process_group(process)
            if self._wait_unmounted(path):
                return

        for cmd in self._unmount_commands(path):
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.options.stop_timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.debug(f"Unmount command {cmd} failed: {e}")
                continue

            if result.returncode == 0 and self._wait_unmounted(path):
                logger.info(f"Unmounted {path} with {cmd[0]}")
                return
            logger.debug(
                f"{' '.join(cmd)} failed (rc={result.returncode}): "
                f"{result.stderr.strip()}"
            )

        raise UnmountError(f"{path} is still mounted")

    def _stop_process_group(self, process: subprocess.Popen) -> None:
        """SIGTERM the mount command's group, then SIGKILL if it lingers."""
        if process.poll() is not None:
            return

        for sig in (signal.SIGTERM, signal.SIGKILL):
            try:
                os.killpg(process.pid, sig)
            except ProcessLookupError:
                pass
            except PermissionError:
                process.send_signal(sig)

            try:
                process.wait(timeout=self.options.stop_timeout)
                logger.debug(
                    f"Mount command {process.pid} exited with {process.returncode}"
                )
                return
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"Mount command {process.pid} ignored {signal.Signals(sig).name}"
                )

    def _wait_unmounted(self, path: Path) -> bool:
        deadline = time.monotonic() + self.options.stop_timeout
        while self.is_mounted(path):
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.options.poll_interval)
        return True

    @staticmethod
    def _unmount_commands(path: Path) -> list[list[str]]:
        mount_str = str(path)
        commands = []
        if sys.platform != "darwin":
            for name in ("fusermount3", "fusermount"):
                if shutil.which(name):
                    commands.append([name, "-u", mount_str])
                    break
        commands.append(["umount", mount_str])
        return commands
