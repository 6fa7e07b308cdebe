"""
with_mount - Run a program inside a filesystem mount that is always torn down
"""

from with_mount import exceptions
from with_mount.command_spec import ParsedCommand, parse_command
from with_mount.config import SupervisorOptions
from with_mount.coordinator import ExitCoordinator, decide_exit_code
from with_mount.diagnostics import DiagnosticSink
from with_mount.launcher import ProcessLauncher
from with_mount.models import (
    MOUNTPOINT_PLACEHOLDER,
    ExitCause,
    ExitOutcome,
    MountRequest,
    ProgramInvocation,
    SupervisionState,
)
from with_mount.mount import (
    MountHandle,
    MountLifecycleManager,
    MountProbe,
    SystemMountProbe,
)

__version__ = "0.1.0"

__all__ = [
    # Parsing
    "parse_command",
    "ParsedCommand",
    # Models
    "MountRequest",
    "ProgramInvocation",
    "ExitOutcome",
    "ExitCause",
    "SupervisionState",
    "MOUNTPOINT_PLACEHOLDER",
    # Components
    "MountHandle",
    "MountLifecycleManager",
    "MountProbe",
    "SystemMountProbe",
    "ProcessLauncher",
    "ExitCoordinator",
    "decide_exit_code",
    "DiagnosticSink",
    "SupervisorOptions",
    # Errors
    "exceptions",
]
