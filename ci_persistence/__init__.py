"""
CI Persistence module.

This module contains the storage implementation for the build ledger.
Currently a single JSON file, but can be extended to a database.

The persistence layer depends on ci_common for domain models and interfaces,
and can be used by the controller, the server and the admin CLI.
"""

from .json_repository import JSONLedgerRepository

__all__ = ["JSONLedgerRepository"]
