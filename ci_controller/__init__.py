"""
CI Controller module.

This module contains the build reconciler and the toolchain wrapper that
run independently of the web server. The reconciler reconciles desired
state (branch heads on GitHub) with actual state (builds on disk).

The reconciler can run in the dashboard process or as a separate process
sharing the builds directory with the server.
"""

from .reconciler import Reconciler, ReconcileError
from .toolchain import StageResult, Toolchain

__all__ = ["Reconciler", "ReconcileError", "StageResult", "Toolchain"]
