"""
Ordered, failure-proof diagnostic output.

The supervisor keeps logging while it tears the mount down, which is exactly
when stdout or stderr may have lost their reader (``with-mount ... | head``).
Records are therefore handed to relay threads through a queue. A relay writes
with ``RelayStreamHandler``, which drops anything it cannot write, so logging
never raises into the cleanup path and never alters the exit status.

When stdout and stderr lead to the same place (a terminal, or ``2>&1``) one
relay serves both streams so their lines keep their relative order. Distinct
destinations get one relay each.
"""

import logging
import os
import queue
import sys
from logging.handlers import QueueHandler, QueueListener
from typing import IO, Any

RECORD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


class RelayStreamHandler(logging.StreamHandler):
    """A StreamHandler whose write failures are silently discarded."""

    def __init__(self, stream: IO[str]) -> None:
        super().__init__(stream)
        self.broken = False

    def emit(self, record: logging.LogRecord) -> None:
        if self.broken:
            return
        super().emit(record)

    def flush(self) -> None:
        if self.broken:
            return
        try:
            super().flush()
        except (OSError, ValueError):
            self._discard()

    def handleError(self, record: logging.LogRecord) -> None:
        # Called from emit() with the write error still active.
        self._discard()

    def _discard(self) -> None:
        """Point the stream's descriptor at /dev/null and stop writing."""
        self.broken = True
        try:
            fd = self.stream.fileno()
            devnull = os.open(os.devnull, os.O_WRONLY)
            try:
                os.dup2(devnull, fd)
            finally:
                os.close(devnull)
        except (OSError, ValueError, AttributeError):
            pass


def same_destination(first: IO[Any], second: IO[Any]) -> bool:
    """Check whether two streams write to the same file, pipe or terminal."""
    if first is second:
        return True
    try:
        first_fd, second_fd = first.fileno(), second.fileno()
    except (OSError, ValueError, AttributeError):
        return False
    if first_fd == second_fd:
        return True
    try:
        first_stat, second_stat = os.fstat(first_fd), os.fstat(second_fd)
    except OSError:
        return False
    return (first_stat.st_dev, first_stat.st_ino) == (
        second_stat.st_dev,
        second_stat.st_ino,
    )


class DiagnosticSink:
    """
    Queue-backed log relay to stdout (below WARNING) and stderr.

    Use as a context manager, or call ``start()``/``close()``. ``close()``
    drains the queues and joins the relay threads, so everything logged
    before it returns has been written or discarded.
    """

    def __init__(
        self,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr
        self.handlers: list[logging.Handler] = []
        self.relays: list[RelayStreamHandler] = []
        self._listeners: list[QueueListener] = []
        self._attached: list[logging.Logger] = []

    @property
    def shared(self) -> bool:
        return same_destination(self.stdout, self.stderr)

    @property
    def started(self) -> bool:
        return bool(self._listeners)

    def start(self) -> "DiagnosticSink":
        if self.started:
            return self

        out_relay = RelayStreamHandler(self.stdout)
        out_relay.addFilter(_BelowWarning())
        err_relay = RelayStreamHandler(self.stderr)
        err_relay.setLevel(logging.WARNING)
        self.relays = [out_relay, err_relay]
        for relay in self.relays:
            relay.setFormatter(logging.Formatter("%(message)s"))

        if self.shared:
            shared_queue: queue.Queue = queue.Queue()
            self.handlers = [QueueHandler(shared_queue)]
            self._listeners = [
                QueueListener(
                    shared_queue, out_relay, err_relay, respect_handler_level=True
                )
            ]
        else:
            out_queue: queue.Queue = queue.Queue()
            err_queue: queue.Queue = queue.Queue()
            out_handler = QueueHandler(out_queue)
            out_handler.addFilter(_BelowWarning())
            err_handler = QueueHandler(err_queue)
            err_handler.setLevel(logging.WARNING)
            self.handlers = [out_handler, err_handler]
            self._listeners = [
                QueueListener(out_queue, out_relay),
                QueueListener(err_queue, err_relay),
            ]

        for listener in self._listeners:
            listener.start()
        return self

    def attach(self, logger: logging.Logger, fmt: str = RECORD_FORMAT) -> None:
        """Route ``logger``'s records through the relays."""
        self.start()
        formatter = logging.Formatter(fmt)
        for handler in self.handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        self._attached.append(logger)

    def close(self) -> None:
        """Stop accepting records, drain the relays and join their threads."""
        for logger in self._attached:
            for handler in self.handlers:
                logger.removeHandler(handler)
        self._attached = []

        for listener in self._listeners:
            listener.stop()
        self._listeners = []

        for relay in self.relays:
            relay.flush()

    def __enter__(self) -> "DiagnosticSink":
        return self.start()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
