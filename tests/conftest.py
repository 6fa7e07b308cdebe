"""Shared fixtures: a stand-in mount command and a probe that understands it."""

import errno
import os
import subprocess
import sys
import time
from pathlib import Path

import pytest

from with_mount.exceptions import MountSetupError, UnmountError

# Writes the given files into the mountpoint, then signals readiness through a
# sibling "<mountpoint>.ready" file and stays up like a FUSE daemon would.
FAKE_MOUNT_SCRIPT = """
import pathlib, sys, time
path = pathlib.Path(sys.argv[1])
for name in sys.argv[2:]:
    (path / name).write_text("remote data")
pathlib.Path(str(path) + ".ready").touch()
time.sleep(60)
"""


def fake_mount_command(*files: str) -> list[str]:
    return [sys.executable, "-c", FAKE_MOUNT_SCRIPT, "MOUNTPOINT", *files]


def ready_marker(path: Path) -> Path:
    return Path(str(path) + ".ready")


class MarkerProbe:
    """Considers the fake mount ready once its marker exists."""

    def __init__(self, timeout: float = 10.0, fail_unmount: bool = False) -> None:
        self.timeout = timeout
        self.fail_unmount = fail_unmount
        self.waited: list[Path] = []
        self.stopped: list[Path] = []
        self.processes: list[subprocess.Popen] = []

    def wait_for_mount(self, process: subprocess.Popen, path: Path) -> None:
        self.waited.append(path)
        self.processes.append(process)
        deadline = time.monotonic() + self.timeout
        while not ready_marker(path).exists():
            if process.poll() is not None:
                raise MountSetupError(f"mount exited with {process.returncode}")
            if time.monotonic() >= deadline:
                raise MountSetupError("timed out")
            time.sleep(0.01)

    def stop_mount(self, process: subprocess.Popen | None, path: Path) -> None:
        self.stopped.append(path)
        if process is not None and process.poll() is None:
            process.terminate()
            process.wait(timeout=5)
        if self.fail_unmount:
            raise UnmountError(f"{path} is still mounted")
        # The remote's files vanish from the directory once unmounted.
        ready_marker(path).unlink(missing_ok=True)
        if path.is_dir():
            for entry in path.iterdir():
                entry.unlink()


@pytest.fixture
def probe():
    return MarkerProbe()


@pytest.fixture
def unlistable_mount(monkeypatch):
    """Make the next directory listing fail like a dead FUSE endpoint."""
    real_scandir = os.scandir
    calls = []

    def scandir(path="."):
        calls.append(path)
        if len(calls) == 1:
            raise OSError(errno.ENOTCONN, os.strerror(errno.ENOTCONN), str(path))
        return real_scandir(path)

    monkeypatch.setattr("with_mount.mount.lifecycle.os.scandir", scandir)
    return calls


@pytest.fixture
def mountpoint(tmp_path):
    path = tmp_path / "mnt"
    path.mkdir()
    return path
