"""Pydantic models and enums for the mount supervisor.

This module defines the values passed between the parser, the mount
lifecycle manager, the launcher and the exit coordinator.
"""

import os
from enum import Enum, IntEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

MOUNTPOINT_PLACEHOLDER = "MOUNTPOINT"


class SupervisionState(IntEnum):
    """How far the supervisor got before it started exiting."""

    INIT = 0
    ARGS_PARSED = 1
    MOUNTING = 2
    MOUNTED = 3
    LAUNCHED = 4
    EXITING = 5


class ExitCause(str, Enum):
    """Why the supervisor is exiting."""

    PROGRAM_EXIT = "program_exit"
    SPAWN_FAILURE = "spawn_failure"
    EXTERNAL_INTERRUPT = "external_interrupt"
    INTERNAL_ERROR = "internal_error"


class MountRequest(BaseModel):
    """What to mount and where."""

    model_config = ConfigDict(frozen=True)

    mount_command: list[str] = Field(
        ..., min_length=1, description="Mount command template tokens"
    )
    mountpoint: Path | None = Field(
        default=None, description="Persistent mountpoint (default: temp dir)"
    )
    allow_empty: bool = Field(
        default=False, description="Accept a mount with no entries"
    )

    @property
    def has_placeholder(self) -> bool:
        """Whether the template references the mountpoint at all."""
        return MOUNTPOINT_PLACEHOLDER in self.mount_command

    def render(self, path: Path) -> list[str]:
        """Return the mount command with every placeholder token replaced."""
        return [
            str(path) if token == MOUNTPOINT_PLACEHOLDER else token
            for token in self.mount_command
        ]


class ProgramInvocation(BaseModel):
    """The program to run inside the mount."""

    model_config = ConfigDict(frozen=True)

    program: str = Field(..., min_length=1, description="Program path or name")
    arguments: list[str] = Field(default_factory=list, description="Program arguments")

    @classmethod
    def from_tokens(cls, tokens: list[str], cwd: str | Path) -> "ProgramInvocation":
        """
        Build an invocation from ``program [args...]``.

        Relative paths such as ``./backup`` are anchored to ``cwd`` because the
        program will run with the mountpoint as its working directory. Bare
        names are left for the ``PATH`` lookup.
        """
        program, *arguments = tokens
        if os.sep in program and not os.path.isabs(program):
            program = os.path.abspath(os.path.join(cwd, program))
        return cls(program=program, arguments=arguments)

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.arguments]


class ExitOutcome(BaseModel):
    """The single outcome of a supervisor run."""

    model_config = ConfigDict(frozen=True)

    raw_code: int = Field(..., description="Code reported by the failing stage")
    cause: ExitCause = Field(..., description="Kind of termination")
    state: SupervisionState = Field(..., description="State when exiting began")
    message: str | None = Field(default=None, description="Diagnostic text")
