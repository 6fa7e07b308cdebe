"""Launch the supervised program inside the mount."""

import logging
import os
import signal
import subprocess
from pathlib import Path

from .config import SupervisorOptions
from .exceptions import SpawnError
from .interrupts import deferred_interrupts
from .models import ProgramInvocation
from .mount import MountHandle

logger = logging.getLogger(__name__)

EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
SIGNAL_EXIT_BASE = 128


class ProcessLauncher:
    """Runs one program with the mountpoint as its working directory."""

    def __init__(
        self,
        options: SupervisorOptions | None = None,
        original_cwd: str | Path | None = None,
    ) -> None:
        self.options = options or SupervisorOptions()
        self.original_cwd = str(original_cwd or os.getcwd())
        self.process: subprocess.Popen | None = None

    def build_env(self) -> dict[str, str]:
        """Environment for the child: ours plus the original working directory."""
        env = dict(os.environ)
        env.update(self.options.extra_env)
        env[self.options.original_cwd_env] = self.original_cwd
        return env

    def spawn(self, handle: MountHandle, invocation: ProgramInvocation) -> None:
        """
        Start the program.

        Raises:
            SpawnError: With exit code 127 if the program does not exist and
                126 if it exists but cannot be executed
        """
        logger.info(f"Running {' '.join(invocation.argv)} in {handle.path}")
        env = self.build_env()
        with deferred_interrupts():
            try:
                self.process = subprocess.Popen(
                    invocation.argv,
                    cwd=handle.path,
                    env=env,
                )
            except FileNotFoundError as e:
                raise SpawnError(
                    f"{invocation.program}: command not found", EXIT_NOT_FOUND
                ) from e
            except OSError as e:
                raise SpawnError(
                    f"{invocation.program}: cannot execute: {e.strerror or e}",
                    EXIT_NOT_EXECUTABLE,
                ) from e

    def wait(self) -> int:
        """Wait for the program and return its exit status."""
        if self.process is None:
            raise RuntimeError("Program has not been started")
        return self.exit_status(self.process.wait())

    def run(self, handle: MountHandle, invocation: ProgramInvocation) -> int:
        self.spawn(handle, invocation)
        return self.wait()

    def terminate(self, signum: int = signal.SIGTERM) -> None:
        """Pass an interrupt on to the program and wait for it to go away."""
        process = self.process
        if process is None or process.poll() is not None:
            return

        logger.warning(
            f"Forwarding {signal.Signals(signum).name} to program (PID {process.pid})"
        )
        try:
            process.send_signal(signum)
            process.wait(timeout=self.options.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Program {process.pid} did not exit, killing it")
            process.kill()
            process.wait()

    @staticmethod
    def exit_status(returncode: int) -> int:
        """Map a Popen return code to a shell-style exit status."""
        if returncode < 0:
            return SIGNAL_EXIT_BASE - returncode
        return returncode
