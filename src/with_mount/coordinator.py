"""
Exit coordination for a supervisor run.

``ExitCoordinator.run()`` walks the run through its states::

    INIT -> ARGS_PARSED -> MOUNTING -> MOUNTED -> LAUNCHED -> EXITING

Every way out (the program exiting, a failure in any stage, or an interrupt
signal at any point) moves straight to EXITING. There the single exit status
is decided from the state reached and the outcome, and cleanup runs exactly
once: stop the program if it is still running, unmount, remove a temporary
mountpoint.
"""

import logging
import os
import signal
from pathlib import Path
from types import FrameType
from typing import Any

from .command_spec import parse_command
from .config import SupervisorOptions
from .exceptions import (
    CleanupError,
    ExternalInterrupt,
    InternalError,
    SpawnError,
    WithMountError,
)
from .interrupts import INTERRUPT_SIGNALS, defer_interrupt, interrupts_deferred
from .launcher import SIGNAL_EXIT_BASE, ProcessLauncher
from .models import ExitCause, ExitOutcome, SupervisionState
from .mount import MountLifecycleManager, MountProbe

logger = logging.getLogger(__name__)

EXIT_FAILURE = 255

# Signals passed on to a running program as-is; others become SIGTERM.
FORWARDED_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGTERM)


def decide_exit_code(outcome: ExitOutcome) -> int:
    """
    Choose the supervisor's exit status.

    The program's own status passes through once it was launched. Anything
    else that looks like success is escalated: a zero status cannot be
    legitimate before the program ran. Interrupts always give 255, which is
    indistinguishable from a program that exited 255 itself.
    """
    if outcome.cause is ExitCause.EXTERNAL_INTERRUPT:
        return EXIT_FAILURE

    if outcome.state < SupervisionState.LAUNCHED:
        if outcome.cause is ExitCause.PROGRAM_EXIT or outcome.raw_code == 0:
            return EXIT_FAILURE

    if 0 <= outcome.raw_code <= 255:
        return outcome.raw_code
    return EXIT_FAILURE


class ExitCoordinator:
    """Runs one supervised program inside one mount and owns its exit."""

    def __init__(
        self,
        options: SupervisorOptions | None = None,
        probe: MountProbe | None = None,
        original_cwd: str | Path | None = None,
    ) -> None:
        self.options = options or SupervisorOptions()
        self.probe = probe
        self.original_cwd = str(original_cwd or os.getcwd())

        self.state = SupervisionState.INIT
        self.exit_state: SupervisionState | None = None
        self.outcome: ExitOutcome | None = None
        self.received_signal: int | None = None

        self.mount: MountLifecycleManager | None = None
        self.launcher: ProcessLauncher | None = None

        self._cleaned_up = False
        self._previous_handlers: dict[int, Any] = {}

    # State machine

    def advance(self, state: SupervisionState) -> None:
        """Move forward to ``state``; moving backwards is a bug."""
        if state < self.state:
            raise InternalError(
                f"Cannot go back from {self.state.name} to {state.name}"
            )
        logger.debug(f"State {self.state.name} -> {state.name}")
        self.state = state

    def begin_exit(self) -> SupervisionState:
        """Enter EXITING, remembering the state the run ended in."""
        if self.exit_state is None:
            self.exit_state = self.state
            self.state = SupervisionState.EXITING
        return self.exit_state

    # Signals

    def install_signal_handlers(self) -> None:
        for signum in INTERRUPT_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        if self.state is SupervisionState.EXITING:
            logger.warning(f"Received {name} while cleaning up, continuing")
            return

        self.received_signal = signum
        if interrupts_deferred():
            logger.debug(f"Holding back {name} until the resource is recorded")
            defer_interrupt(signum)
            return

        self.begin_exit()
        raise ExternalInterrupt(signum)

    # Running

    def run(self, argv: list[str]) -> int:
        """
        Supervise one run and return the process exit status.

        Args:
            argv: Supervisor arguments without the program name

        Returns:
            Exit status in the range 0..255
        """
        self.install_signal_handlers()
        try:
            try:
                outcome = self._supervise(argv)
            except ExternalInterrupt as e:
                # The interrupt landed while another failure was being handled.
                outcome = self._interrupted(e)
            return self.finish(outcome)
        finally:
            self.restore_signal_handlers()

    def finish(self, outcome: ExitOutcome) -> int:
        """Record ``outcome``, clean up, and return the final exit status."""
        self.begin_exit()
        self.outcome = outcome
        code = decide_exit_code(outcome)

        try:
            self.cleanup()
        except CleanupError as e:
            logger.error(f"Cleanup failed: {e}")
            code = EXIT_FAILURE

        logger.debug(
            f"Exiting with status {code} ({outcome.cause.value} in "
            f"{outcome.state.name}, raw status {outcome.raw_code})"
        )
        return code

    def cleanup(self) -> None:
        """
        Stop the program and the mount. Runs once; later calls do nothing.

        Raises:
            CleanupError: If the mount or its directory could not be removed
        """
        if self._cleaned_up:
            return
        self._cleaned_up = True

        if self.launcher is not None:
            signum = self.received_signal
            if signum not in FORWARDED_SIGNALS:
                signum = signal.SIGTERM
            self.launcher.terminate(signum)

        if self.mount is not None:
            self.mount.stop()

    def _supervise(self, argv: list[str]) -> ExitOutcome:
        try:
            return self._run_stages(argv)
        except ExternalInterrupt as e:
            return self._interrupted(e)
        except KeyboardInterrupt:
            return self._interrupted(ExternalInterrupt(signal.SIGINT))
        except SpawnError as e:
            state = self.begin_exit()
            logger.error(str(e))
            return ExitOutcome(
                raw_code=e.exit_code,
                cause=ExitCause.SPAWN_FAILURE,
                state=state,
                message=str(e),
            )
        except WithMountError as e:
            state = self.begin_exit()
            logger.error(f"{type(e).__name__}: {e}")
            return ExitOutcome(
                raw_code=e.exit_code,
                cause=ExitCause.INTERNAL_ERROR,
                state=state,
                message=str(e),
            )
        except Exception as e:
            state = self.begin_exit()
            logger.exception(f"Unexpected error: {e}")
            return ExitOutcome(
                raw_code=EXIT_FAILURE,
                cause=ExitCause.INTERNAL_ERROR,
                state=state,
                message=str(e),
            )

    def _run_stages(self, argv: list[str]) -> ExitOutcome:
        command = parse_command(argv, self.original_cwd)
        self.options = self.options.with_overrides(mount_timeout=command.mount_timeout)
        self.advance(SupervisionState.ARGS_PARSED)

        self.mount = MountLifecycleManager(command.request, self.options, self.probe)
        self.advance(SupervisionState.MOUNTING)
        handle = self.mount.start()
        self.advance(SupervisionState.MOUNTED)

        self.launcher = ProcessLauncher(self.options, self.original_cwd)
        self.launcher.spawn(handle, command.invocation)
        self.advance(SupervisionState.LAUNCHED)

        code = self.launcher.wait()
        state = self.begin_exit()
        if code != 0:
            logger.warning(f"Program exited with status {code}")
        return ExitOutcome(raw_code=code, cause=ExitCause.PROGRAM_EXIT, state=state)

    def _interrupted(self, interrupt: ExternalInterrupt) -> ExitOutcome:
        state = self.begin_exit()
        name = signal.Signals(interrupt.signum).name
        logger.warning(f"Interrupted by {name} in state {state.name}")
        return ExitOutcome(
            raw_code=SIGNAL_EXIT_BASE + interrupt.signum,
            cause=ExitCause.EXTERNAL_INTERRUPT,
            state=state,
            message=str(interrupt),
        )
