"""
Data models for build state tracking.

These models represent the domain objects used throughout the application,
independent of the underlying storage mechanism.
"""

from dataclasses import dataclass, field
from typing import Any

CONNECTIONS = ("mainnet", "testnet")
BUILD_TYPES = ("dev", "normal", "min")


@dataclass(frozen=True)
class Branch:
    """
    A remote branch and the commit it currently points at.

    Branches are sourced from the hosting API and never mutated locally.
    """

    name: str
    sha: str  # Head commit of the branch

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Branch":
        """Create a branch from a GitHub ``/branches`` list item."""
        return cls(name=data["name"], sha=data["commit"]["sha"])


@dataclass
class BuildRecord:
    """
    Outcome of building one commit of a branch.
    """

    sha: str
    success: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert record to dictionary format (for JSON serialization)."""
        return {"sha": self.sha, "success": self.success}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildRecord":
        """Create record from dictionary format."""
        return cls(sha=data["sha"], success=bool(data.get("success", False)))


@dataclass(frozen=True)
class HostCoordinates:
    """
    Routing coordinates encoded in a virtual host name.

    ``<branch>.<commit>.<connection>.<build_type>.<apex>``
    """

    branch: str
    commit: str
    connection: str
    build_type: str


@dataclass
class BuildLedger:
    """
    Build history per branch.

    Records of a branch are kept in build order, oldest first. All mutations
    are in-memory; persisting the ledger is the job of a LedgerRepository.
    """

    entries: dict[str, list[BuildRecord]] = field(default_factory=dict)

    def branches(self) -> list[str]:
        return list(self.entries)

    def records(self, branch: str) -> list[BuildRecord]:
        return list(self.entries.get(branch, []))

    def is_empty(self) -> bool:
        return not self.entries

    def record_build(self, branch: str, sha: str, success: bool) -> BuildRecord:
        """
        Record a build outcome.

        A previous record for the same commit is replaced: it is dropped from
        its position and the new record is appended as the newest one.

        Args:
            branch: Branch name
            sha: Commit that was built
            success: Whether install and build both succeeded

        Returns:
            The stored record
        """
        record = BuildRecord(sha=sha, success=success)
        records = [item for item in self.entries.get(branch, []) if item.sha != sha]
        records.append(record)
        self.entries[branch] = records
        return record

    def prune_retention(self, branch: str, cap: int) -> list[BuildRecord]:
        """
        Keep only the newest ``cap`` records of a branch.

        Args:
            branch: Branch name
            cap: Maximum number of records to keep

        Returns:
            The evicted records, oldest first
        """
        records = self.entries.get(branch, [])
        excess = len(records) - max(cap, 0)
        if excess <= 0:
            return []
        evicted = records[:excess]
        self.entries[branch] = records[excess:]
        return evicted

    def remove_branch(self, branch: str) -> bool:
        """
        Forget a branch entirely.

        Returns:
            True if the branch was tracked; the caller owns deleting
            the branch's artifacts
        """
        return self.entries.pop(branch, None) is not None

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Convert ledger to its persisted JSON document."""
        return {
            branch: [record.to_dict() for record in records]
            for branch, records in self.entries.items()
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildLedger":
        """Create ledger from its persisted JSON document."""
        return cls(
            entries={
                branch: [BuildRecord.from_dict(item) for item in records]
                for branch, records in data.items()
            }
        )
