"""
Abstract repository interface for ledger persistence.

This module defines the contract that any ledger store must follow,
allowing easy swapping between a JSON file, a database, etc.
"""

from abc import ABC, abstractmethod

from .models import BuildLedger


class LedgerCorruptedError(ValueError):
    """Raised when a persisted ledger exists but cannot be decoded."""


class LedgerRepository(ABC):
    """
    Abstract base class for ledger storage operations.

    The ledger is loaded once per reconciliation pass, mutated in memory
    and written back in one piece.
    """

    @abstractmethod
    def load(self) -> BuildLedger:
        """
        Load the persisted ledger.

        Returns:
            The stored ledger, or an empty one if nothing was persisted yet

        Raises:
            LedgerCorruptedError: If stored data cannot be decoded
        """
        pass

    @abstractmethod
    def save(self, ledger: BuildLedger) -> None:
        """
        Replace the persisted ledger.

        Args:
            ledger: Ledger to persist

        Raises:
            OSError: If the ledger cannot be written
        """
        pass
