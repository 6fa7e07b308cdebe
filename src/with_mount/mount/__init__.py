"""
Mount lifecycle for the supervisor.

This package allocates the mountpoint, runs the mount command, waits for the
mount to become usable and guarantees it is taken down again.
"""

from .lifecycle import MountHandle, MountLifecycleManager
from .readiness import MountProbe, SystemMountProbe

__all__ = [
    "MountHandle",
    "MountLifecycleManager",
    "MountProbe",
    "SystemMountProbe",
]
