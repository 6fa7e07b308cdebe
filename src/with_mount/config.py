"""Runtime options for the mount supervisor."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .exceptions import UsageError

ENV_PREFIX = "WITH_MOUNT_"


@dataclass(frozen=True)
class SupervisorOptions:
    """Configuration options for a supervisor run."""

    # Mount readiness
    mount_timeout: float | None = None  # seconds, None waits forever
    poll_interval: float = 0.1  # seconds

    # Teardown
    stop_timeout: float = 10.0  # seconds per escalation step

    # Child environment
    original_cwd_env: str = "WITH_MOUNT_ORIGINAL_PWD"
    extra_env: dict[str, str] = field(default_factory=dict)

    debug: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SupervisorOptions":
        """
        Build options from ``WITH_MOUNT_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Options with environment overrides applied

        Raises:
            UsageError: If a variable holds an invalid value
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        timeout = environ.get(f"{ENV_PREFIX}MOUNT_TIMEOUT")
        if timeout:
            values["mount_timeout"] = _positive_float("MOUNT_TIMEOUT", timeout)

        interval = environ.get(f"{ENV_PREFIX}POLL_INTERVAL")
        if interval:
            values["poll_interval"] = _positive_float("POLL_INTERVAL", interval)

        stop_timeout = environ.get(f"{ENV_PREFIX}STOP_TIMEOUT")
        if stop_timeout:
            values["stop_timeout"] = _positive_float("STOP_TIMEOUT", stop_timeout)

        debug = environ.get(f"{ENV_PREFIX}DEBUG", "")
        values["debug"] = debug.lower() in ("1", "true", "yes", "on")

        return cls(**values)

    def with_overrides(self, **changes: Any) -> "SupervisorOptions":
        """Return a copy with the non-None ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _positive_float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise UsageError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise UsageError(f"{ENV_PREFIX}{name} must be positive, got {raw!r}")
    return value
