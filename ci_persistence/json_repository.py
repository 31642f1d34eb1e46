"""
JSON file implementation of the ledger repository.

The whole ledger lives in a single JSON document mapping each branch name
to an array of {"sha", "success"} records, oldest first.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from ci_common.models import BuildLedger
from ci_common.repository import LedgerCorruptedError, LedgerRepository

logger = logging.getLogger(__name__)


class JSONLedgerRepository(LedgerRepository):
    """
    Single-file ledger storage.

    Writes go to a temporary file in the same directory which then replaces
    the ledger, so readers never observe a half-written document.
    """

    def __init__(self, path: str | Path = "meta.json"):
        """
        Initialize the JSON repository.

        Args:
            path: Path to the ledger file
        """
        self.path = Path(path)

    def load(self) -> BuildLedger:
        """
        Load the ledger from disk.

        Returns:
            The stored ledger, or an empty ledger if the file does not exist
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No ledger at {self.path}, starting empty")
            return BuildLedger()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LedgerCorruptedError(f"Ledger {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise LedgerCorruptedError(f"Ledger {self.path} is not a JSON object")

        try:
            return BuildLedger.from_dict(data)
        except (KeyError, TypeError) as e:
            raise LedgerCorruptedError(f"Ledger {self.path} has a malformed record: {e}") from e

    def save(self, ledger: BuildLedger) -> None:
        """
        Atomically replace the ledger file.

        Args:
            ledger: Ledger to persist

        Raises:
            OSError: If the file cannot be written
        """
        directory = self.path.parent
        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(ledger.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"Ledger saved to {self.path}")
