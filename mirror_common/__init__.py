"""
Mirror Common module.

This module contains shared domain models, configuration and interfaces used
across the mirror components (server, controller, persistence).

The common module has no dependencies on other mirror_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .config import MirrorConfig
from .models import CommitInfo, MirrorRun, PushEvent, RunEvent
from .repository import RunRepository

__all__ = [
    "CommitInfo",
    "MirrorConfig",
    "MirrorRun",
    "PushEvent",
    "RunEvent",
    "RunRepository",
]
