"""Mount lifecycle: allocate a mountpoint, mount it, and tear it down."""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..config import SupervisorOptions
from ..exceptions import CleanupError, MountSetupError
from ..interrupts import deferred_interrupts
from ..models import MOUNTPOINT_PLACEHOLDER, MountRequest
from .readiness import MountProbe, SystemMountProbe

logger = logging.getLogger(__name__)

TEMP_PREFIX = "with-mount."


@dataclass
class MountHandle:
    """A mountpoint directory and the mount command serving it."""

    path: Path
    is_temporary: bool
    process: subprocess.Popen | None = None
    stopped: bool = False
    removed: bool = False

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None


class MountLifecycleManager:
    """
    Owns the single mount of a supervisor run.

    ``start()`` goes from nothing to a populated, usable mount. ``stop()``
    undoes whatever part of that succeeded and may be called any number of
    times, including after a failed or interrupted ``start()``.
    """

    def __init__(
        self,
        request: MountRequest,
        options: SupervisorOptions | None = None,
        probe: MountProbe | None = None,
    ) -> None:
        self.request = request
        self.options = options or SupervisorOptions()
        self.probe = probe or SystemMountProbe(self.options)
        self.handle: MountHandle | None = None

    def start(self) -> MountHandle:
        """
        Establish the mount.

        Returns:
            The handle of the mounted, non-empty mountpoint

        Raises:
            MountSetupError: If any step fails. Resources allocated before
                the failure stay on ``self.handle`` for ``stop()``.
        """
        handle = self._allocate_mountpoint()

        if not self.request.has_placeholder:
            raise MountSetupError(
                f"Mount command does not contain the {MOUNTPOINT_PLACEHOLDER} "
                "placeholder"
            )
        command = self.request.render(handle.path)

        logger.info(f"Mounting at {handle.path}: {' '.join(command)}")
        with deferred_interrupts():
            try:
                handle.process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,
                )
            except OSError as e:
                raise MountSetupError(f"Failed to start mount command: {e}") from e

        self.probe.wait_for_mount(handle.process, handle.path)

        if not self.request.allow_empty and self.is_empty(handle.path):
            raise MountSetupError(
                f"Mount at {handle.path} is empty; check the remote path "
                "or pass --allow-empty"
            )

        logger.info(f"Mount ready at {handle.path}")
        return handle

    def stop(self) -> None:
        """
        Unmount and, for temporary mountpoints, remove the directory.

        Raises:
            CleanupError: If the unmount or the directory removal failed.
                Both steps are attempted before raising.
        """
        handle = self.handle
        if handle is None:
            return

        errors: list[str] = []

        # Nothing of ours is mounted there if the command never started.
        if handle.process is None:
            handle.stopped = True

        if not handle.stopped:
            try:
                self.probe.stop_mount(handle.process, handle.path)
                handle.stopped = True
                logger.info(f"Unmounted {handle.path}")
            except CleanupError as e:
                errors.append(str(e))

        if handle.is_temporary and not handle.removed:
            try:
                os.rmdir(handle.path)
                handle.removed = True
                logger.debug(f"Removed mountpoint {handle.path}")
            except FileNotFoundError:
                handle.removed = True
            except OSError as e:
                errors.append(f"Could not remove mountpoint {handle.path}: {e}")

        if errors:
            raise CleanupError("; ".join(errors))

    @staticmethod
    def is_empty(path: Path) -> bool:
        try:
            with os.scandir(path) as entries:
                return next(entries, None) is None
        except OSError as e:
            raise MountSetupError(f"Cannot list mount at {path}: {e}") from e

    def _allocate_mountpoint(self) -> MountHandle:
        if self.request.mountpoint is None:
            with deferred_interrupts():
                path = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
                self.handle = MountHandle(path=path, is_temporary=True)
            logger.debug(f"Created temporary mountpoint {path}")
        else:
            path = self.request.mountpoint.absolute()
            if not path.exists():
                raise MountSetupError(f"Mountpoint {path} does not exist")
            if not path.is_dir():
                raise MountSetupError(f"Mountpoint {path} is not a directory")
            self.handle = MountHandle(path=path, is_temporary=False)
        return self.handle
