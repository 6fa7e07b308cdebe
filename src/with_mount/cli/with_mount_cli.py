#!/usr/bin/env python3
"""
CLI tool for running a program inside a mount that is always cleaned up.

The mount command is started in its own session, the program runs with the
mountpoint as its working directory, and the mount is stopped again however
the run ends.

Examples:
    # Back up from a temporary rclone mount
    with-mount rclone mount remote:photos MOUNTPOINT -- restic backup .

    # Reuse a fixed mountpoint that may legitimately be empty
    with-mount --mountpoint /mnt/share --allow-empty sshfs h:/ MOUNTPOINT -- ./sync
"""

import logging
import os
import sys

from with_mount.command_spec import build_parser, split_flags, wants_help
from with_mount.config import SupervisorOptions
from with_mount.coordinator import ExitCoordinator
from with_mount.diagnostics import DiagnosticSink
from with_mount.exceptions import UsageError


def setup_logging(sink: DiagnosticSink, debug: bool = False) -> None:
    """Configure logging to go through the diagnostic relays."""
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    sink.attach(root)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if wants_help(argv):
        sys.stdout.write(build_parser().format_help())
        return 0

    try:
        options = SupervisorOptions.from_env()
    except UsageError as e:
        sys.stderr.write(f"with-mount: {e}\n")
        return 1

    flags, _ = split_flags(argv)
    debug = options.debug or "-d" in flags or "--debug" in flags

    sink = DiagnosticSink()
    setup_logging(sink, debug)
    try:
        return ExitCoordinator(options).run(argv)
    finally:
        sink.close()


def _flush_std_streams() -> None:
    """Flush stdout/stderr, discarding output nobody is reading any more."""
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            try:
                devnull = os.open(os.devnull, os.O_WRONLY)
                os.dup2(devnull, stream.fileno())
                os.close(devnull)
            except (OSError, ValueError):
                pass


def run() -> None:
    """Console script entry point."""
    code = main()
    _flush_std_streams()
    sys.exit(code)


if __name__ == "__main__":
    run()
