"""
Unit tests for Reconciler.

These tests run real reconciliation passes against a temporary builds
directory, with the hosting API and the build commands replaced by fakes.
"""

import asyncio
import io
import zipfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from ci_client.github import GitHubError
from ci_common.artifacts import ArtifactStore
from ci_common.models import BUILD_TYPES, CONNECTIONS, Branch, BuildLedger, HostCoordinates
from ci_controller.reconciler import Reconciler, ReconcileError
from ci_controller.toolchain import StageResult, Toolchain
from ci_persistence.json_repository import JSONLedgerRepository

PROJECT = "WavesGUI"


def make_archive(sha: str) -> bytes:
    """Zip laid out like a GitHub codeload archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(f"{PROJECT}-{sha}/package.json", "{}")
        zf.writestr(f"{PROJECT}-{sha}/src/app.js", "console.log(1);")
    return buffer.getvalue()


class FakeGitHub:
    """Stands in for GitHubClient."""

    def __init__(self, branches: list[Branch]):
        self.branches = branches
        self.fail_branches = False
        self.fail_archives: set[str] = set()
        self.archive_calls: list[str] = []
        self.force_refresh_calls: list[bool] = []

    def fetch_branches(self, force_refresh: bool = False) -> list[Branch]:
        self.force_refresh_calls.append(force_refresh)
        if self.fail_branches:
            raise GitHubError("API unreachable")
        return list(self.branches)

    def fetch_commit_archive(self, sha: str) -> bytes:
        self.archive_calls.append(sha)
        if sha in self.fail_archives:
            raise GitHubError("archive unavailable")
        return make_archive(sha)


class FakeToolchain(Toolchain):
    """Real archive extraction, simulated install and build."""

    def __init__(self):
        super().__init__()
        self.failing_installs: set[str] = set()
        self.failing_builds: set[str] = set()
        self.installs: list[str] = []
        self.builds: list[str] = []

    @staticmethod
    def _sha(project_dir: Path) -> str:
        return project_dir.name.split("-", 1)[1]

    async def run_package_install(self, project_dir, log):
        sha = self._sha(project_dir)
        self.installs.append(sha)
        return StageResult(success=sha not in self.failing_installs)

    async def run_build_task(self, project_dir, log):
        sha = self._sha(project_dir)
        self.builds.append(sha)
        if sha in self.failing_builds:
            return StageResult(success=False, output="gulp: task failed\n")
        for connection in CONNECTIONS:
            for build_type in BUILD_TYPES:
                variant = project_dir / "dist" / "build" / connection / build_type
                variant.mkdir(parents=True, exist_ok=True)
                (variant / "index.html").write_text("<html></html>")
        return StageResult(success=True)


class TestReconciler:
    """Test suite for Reconciler class."""

    @pytest.fixture
    def github(self):
        return FakeGitHub([Branch("dev", "a1"), Branch("master", "m1")])

    @pytest.fixture
    def artifacts(self, tmp_path):
        return ArtifactStore(tmp_path / "builds", PROJECT)

    @pytest.fixture
    def repository(self, tmp_path):
        return JSONLedgerRepository(tmp_path / "meta.json")

    @pytest.fixture
    def toolchain(self):
        return FakeToolchain()

    @pytest.fixture
    def reconciler(self, github, artifacts, repository, toolchain):
        return Reconciler(
            github=github,
            artifacts=artifacts,
            repository=repository,
            toolchain=toolchain,
            max_builds=3,
            interval=0.05,
        )

    def seed(self, repository, artifacts, entries: dict[str, list[str]]) -> None:
        """Persist a ledger of successful builds and create their directories."""
        ledger = BuildLedger()
        for branch, shas in entries.items():
            for sha in shas:
                ledger.record_build(branch, sha, True)
                artifacts.project_dir(branch, sha).mkdir(parents=True)
        repository.save(ledger)

    def test_rejects_zero_cap(self, github, artifacts, repository):
        with pytest.raises(ValueError):
            Reconciler(github, artifacts, repository, max_builds=0)

    @pytest.mark.asyncio
    async def test_builds_every_branch_head(
        self, reconciler, github, artifacts, repository
    ):
        """Test that a first pass builds and records every remote branch."""
        await reconciler.reconcile_once()

        ledger = repository.load()
        assert ledger.records("dev")[0].to_dict() == {"sha": "a1", "success": True}
        assert ledger.records("master")[0].to_dict() == {"sha": "m1", "success": True}
        assert artifacts.exists(HostCoordinates("dev", "a1", "mainnet", "dev"))
        assert github.force_refresh_calls == [True]

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(
        self, reconciler, github, repository, toolchain
    ):
        """Test that a pass without new commits neither builds nor records anything."""
        await reconciler.reconcile_once()
        first = repository.load().to_dict()

        await reconciler.reconcile_once()

        assert github.archive_calls == ["a1", "m1"]
        assert toolchain.installs == ["a1", "m1"]
        assert repository.load().to_dict() == first

    @pytest.mark.asyncio
    async def test_removes_deleted_branches(
        self, reconciler, github, artifacts, repository
    ):
        """Test that after GC the ledger only holds remote branches."""
        self.seed(repository, artifacts, {"dev": ["a1"], "gone": ["g1"]})

        await reconciler.reconcile_once()

        ledger = repository.load()
        remote = {branch.name for branch in github.branches}
        assert set(ledger.branches()) <= remote
        assert "gone" not in ledger.branches()
        assert not artifacts.branch_dir("gone").exists()
        assert artifacts.has_commit("dev", "a1")

    @pytest.mark.asyncio
    async def test_deleted_branch_keeps_builds_of_nested_branch(
        self, reconciler, github, artifacts, repository
    ):
        """Test that removing "feature" leaves the live "feature/x" alone."""
        github.branches = [Branch("feature/x", "f2")]
        self.seed(repository, artifacts, {"feature": ["f1"], "feature/x": ["f2"]})

        await reconciler.reconcile_once()

        assert repository.load().branches() == ["feature/x"]
        assert artifacts.has_commit("feature/x", "f2")
        assert not artifacts.has_commit("feature", "f1")
        assert github.archive_calls == []

    @pytest.mark.asyncio
    async def test_retention_keeps_newest_builds(
        self, reconciler, github, artifacts, repository
    ):
        """Test that a new build evicts the oldest one beyond the cap."""
        github.branches = [Branch("dev", "d4")]
        self.seed(repository, artifacts, {"dev": ["d1", "d2", "d3"]})

        await reconciler.reconcile_once()

        records = repository.load().records("dev")
        assert [r.sha for r in records] == ["d2", "d3", "d4"]
        assert not artifacts.has_commit("dev", "d1")
        assert artifacts.has_commit("dev", "d4")

    @pytest.mark.asyncio
    async def test_retention_prunes_existing_overflow(
        self, reconciler, github, artifacts, repository
    ):
        """Test that a ledger over the cap is pruned even without new builds."""
        github.branches = [Branch("dev", "d5")]
        self.seed(repository, artifacts, {"dev": ["d1", "d2", "d3", "d4", "d5"]})

        await reconciler.reconcile_once()

        assert [r.sha for r in repository.load().records("dev")] == ["d3", "d4", "d5"]
        assert set(artifacts.list_commits("dev")) == {"d3", "d4", "d5"}
        assert not artifacts.has_commit("dev", "d1")
        assert not artifacts.has_commit("dev", "d2")
        assert github.archive_calls == []

    @pytest.mark.asyncio
    async def test_empty_ledger_resets_builds_root(
        self, reconciler, artifacts, repository
    ):
        """Test that an empty ledger wipes the builds root, unmanaged files included."""
        artifacts.ensure_root()
        stray = artifacts.root / "unrelated.txt"
        stray.write_text("not ours")
        artifacts.project_dir("dev", "a1").mkdir(parents=True)

        await reconciler.reconcile_once()

        assert not stray.exists()
        # dev@a1 was rebuilt from scratch instead of being skipped
        assert repository.load().records("dev")[0].sha == "a1"

    @pytest.mark.asyncio
    async def test_failed_build_is_recorded_and_pass_continues(
        self, reconciler, github, artifacts, repository, toolchain
    ):
        """Test that a failing build task records success=False and later branches still build."""
        toolchain.failing_builds.add("a1")

        await reconciler.reconcile_once()

        ledger = repository.load()
        assert ledger.records("dev")[0].to_dict() == {"sha": "a1", "success": False}
        assert ledger.records("master")[0].success is True
        assert not artifacts.exists(HostCoordinates("dev", "a1", "mainnet", "dev"))

    @pytest.mark.asyncio
    async def test_failed_install_skips_build_task(
        self, reconciler, repository, toolchain
    ):
        toolchain.failing_installs.add("a1")

        await reconciler.reconcile_once()

        assert repository.load().records("dev")[0].success is False
        assert "a1" not in toolchain.builds
        assert "m1" in toolchain.builds

    @pytest.mark.asyncio
    async def test_toolchain_exception_is_recorded_as_failure(
        self, reconciler, repository, toolchain
    ):
        toolchain.run_package_install = AsyncMock(side_effect=RuntimeError("boom"))

        await reconciler.reconcile_once()

        ledger = repository.load()
        assert ledger.records("dev")[0].success is False
        assert ledger.records("master")[0].success is False

    @pytest.mark.asyncio
    async def test_archive_failure_skips_only_that_branch(
        self, reconciler, github, artifacts, repository
    ):
        """Test that a failed download records nothing and is retried next pass."""
        github.fail_archives.add("a1")

        await reconciler.reconcile_once()

        ledger = repository.load()
        assert ledger.records("dev") == []
        assert ledger.records("master")[0].success is True
        assert not artifacts.has_commit("dev", "a1")

        github.fail_archives.clear()
        await reconciler.reconcile_once()

        assert repository.load().records("dev")[0].sha == "a1"

    @pytest.mark.asyncio
    async def test_branch_fetch_failure_keeps_builds(
        self, reconciler, github, artifacts, repository
    ):
        """Test that an unreachable API is not mistaken for all branches being deleted."""
        self.seed(repository, artifacts, {"dev": ["a1"]})
        github.fail_branches = True

        await reconciler.reconcile_once()

        assert repository.load().branches() == ["dev"]
        assert artifacts.has_commit("dev", "a1")
        assert github.archive_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_persists_ledger_then_raises(
        self, reconciler, repository
    ):
        """Test that a failing pass still saves the builds it completed."""
        with patch.object(
            reconciler,
            "_process_reinstall_requests",
            AsyncMock(side_effect=RuntimeError("disk on fire")),
        ):
            with pytest.raises(ReconcileError):
                await reconciler.reconcile_once()

        ledger = repository.load()
        assert [r.sha for r in ledger.records("dev")] == ["a1"]
        assert [r.sha for r in ledger.records("master")] == ["m1"]

    @pytest.mark.asyncio
    async def test_removal_error_is_fatal(self, reconciler, artifacts, repository):
        self.seed(repository, artifacts, {"gone": ["g1"]})

        with patch.object(
            artifacts, "remove_branch", side_effect=PermissionError("read-only")
        ):
            with pytest.raises(ReconcileError):
                await reconciler.reconcile_once()

    @pytest.mark.asyncio
    async def test_save_failure_raises(self, reconciler, repository):
        with patch.object(repository, "save", side_effect=OSError("disk full")):
            with pytest.raises(ReconcileError):
                await reconciler.reconcile_once()

    @pytest.mark.asyncio
    async def test_corrupted_ledger_is_not_overwritten(
        self, reconciler, repository, github
    ):
        repository.path.write_text("{broken")

        with pytest.raises(ReconcileError):
            await reconciler.reconcile_once()

        assert repository.path.read_text() == "{broken"
        assert github.archive_calls == []

    @pytest.mark.asyncio
    async def test_reinstall_request(self, reconciler, repository, toolchain):
        """Test that a queued reinstall re-runs install and build for an extracted commit."""
        await reconciler.reconcile_once()

        assert reconciler.request_reinstall("dev", "a1") is True
        assert reconciler.request_reinstall("dev", "a1") is False
        assert reconciler.pending_reinstalls == [("dev", "a1")]

        await reconciler.reconcile_once()

        assert toolchain.installs.count("a1") == 2
        assert [r.sha for r in repository.load().records("dev")] == ["a1"]
        assert reconciler.pending_reinstalls == []

    @pytest.mark.asyncio
    async def test_reinstall_of_unknown_commit_is_dropped(
        self, reconciler, toolchain
    ):
        await reconciler.reconcile_once()
        reconciler.request_reinstall("dev", "nope")

        await reconciler.reconcile_once()

        assert "nope" not in toolchain.installs
        assert reconciler.pending_reinstalls == []


class TestReconcilerLoop:
    """Test suite for the reconciliation loop lifecycle."""

    @pytest.fixture
    def reconciler(self, tmp_path):
        return Reconciler(
            github=FakeGitHub([Branch("dev", "a1")]),
            artifacts=ArtifactStore(tmp_path / "builds", PROJECT),
            repository=JSONLedgerRepository(tmp_path / "meta.json"),
            toolchain=FakeToolchain(),
            interval=60.0,
        )

    @pytest.mark.asyncio
    async def test_bootstrap_pass_when_builds_root_empty(self, reconciler):
        """Test that an empty builds root triggers an immediate pass."""
        await reconciler.start()
        await reconciler.stop()

        assert reconciler.github.archive_calls == ["a1"]
        assert not reconciler.running

    @pytest.mark.asyncio
    async def test_no_bootstrap_pass_when_builds_exist(self, reconciler):
        reconciler.artifacts.commit_dir("dev", "a1").mkdir(parents=True)

        await reconciler.start()
        await reconciler.stop()

        assert reconciler.github.archive_calls == []

    @pytest.mark.asyncio
    async def test_passes_repeat_after_interval(self, reconciler):
        """Test that passes keep running, one interval after the previous one ended."""
        reconciler.artifacts.commit_dir("dev", "a1").mkdir(parents=True)
        reconciler.interval = 0.01
        reconciler.reconcile_once = AsyncMock()

        await reconciler.start()
        await asyncio.sleep(0.2)
        await reconciler.stop()

        assert reconciler.reconcile_once.await_count >= 2

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, reconciler):
        reconciler.artifacts.commit_dir("dev", "a1").mkdir(parents=True)

        await reconciler.start()
        task = reconciler._task
        await reconciler.start()

        assert reconciler._task is task
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_failed_pass_ends_loop(self, reconciler):
        """Test that a failing pass stops the loop and wait() reports it."""
        reconciler.repository.path.write_text("{broken")

        await reconciler.start()

        with pytest.raises(ReconcileError):
            await asyncio.wait_for(reconciler.wait(), timeout=5)
        assert not reconciler.running
