"""Exceptions for the mount supervisor."""


class WithMountError(Exception):
    """Base exception for supervisor errors."""

    exit_code: int = 255


class UsageError(WithMountError):
    """Raised when the command line is malformed."""

    exit_code = 1


class MountSetupError(WithMountError):
    """Raised when the mount cannot be established or is unusable."""

    exit_code = 1


class SpawnError(WithMountError):
    """Raised when the supervised program cannot be started."""

    def __init__(self, message: str, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ExternalInterrupt(WithMountError):
    """Raised from the signal handler to unwind the running stage."""

    def __init__(self, signum: int) -> None:
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum


class InternalError(WithMountError):
    """Raised when the supervisor reaches an impossible state."""


class CleanupError(WithMountError):
    """Raised when the mount or its directory could not be cleaned up."""


class UnmountError(CleanupError):
    """Raised when unmounting fails."""
