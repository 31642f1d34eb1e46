"""
CI Common module.

This module contains shared domain models and interfaces used across
the dashboard components (server, controller, persistence).

The common module has no dependencies on other ci_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .artifacts import ArtifactStore, InvalidNameError
from .config import Settings, settings_from_args
from .models import Branch, BuildLedger, BuildRecord, HostCoordinates
from .repository import LedgerCorruptedError, LedgerRepository

__all__ = [
    "ArtifactStore",
    "Branch",
    "BuildLedger",
    "BuildRecord",
    "HostCoordinates",
    "InvalidNameError",
    "LedgerCorruptedError",
    "LedgerRepository",
    "Settings",
    "settings_from_args",
]
