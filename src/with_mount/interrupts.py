"""
Interrupt signals and the sections that must not be interrupted.

An interrupt raises ``ExternalInterrupt`` wherever the main thread happens to
be. Between creating a resource (a temporary directory, a child process) and
recording it on its owner, that would lose the resource. Code inside
``deferred_interrupts()`` is not interrupted; a signal arriving there is
remembered and raised when the outermost block ends.

Signals are held back here rather than blocked with ``pthread_sigmask``,
because a blocked mask is inherited by the mount command and the program.
"""

import signal
from collections.abc import Iterator
from contextlib import contextmanager

from .exceptions import ExternalInterrupt

INTERRUPT_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGQUIT, signal.SIGTERM)


class _Deferral:
    depth = 0
    pending: int | None = None


_deferral = _Deferral()


def interrupts_deferred() -> bool:
    return _deferral.depth > 0


def defer_interrupt(signum: int) -> None:
    """Remember ``signum`` for the end of the current deferred section."""
    if _deferral.pending is None:
        _deferral.pending = signum


@contextmanager
def deferred_interrupts() -> Iterator[None]:
    """
    Hold back interrupts for the duration of the block.

    Raises:
        ExternalInterrupt: On leaving the outermost block, if a signal
            arrived inside it
    """
    _deferral.depth += 1
    try:
        yield
    finally:
        _deferral.depth -= 1
        if _deferral.depth == 0 and _deferral.pending is not None:
            signum, _deferral.pending = _deferral.pending, None
            raise ExternalInterrupt(signum)
