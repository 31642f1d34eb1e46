"""
Build reconciler with a periodic reconciliation loop.

This module implements a controller pattern that periodically reconciles
the desired state (branch heads on GitHub) with the actual state (build
directories on disk and the build ledger), taking corrective actions when
they diverge: removing builds of deleted branches, pruning old builds and
building new commits.
"""

import asyncio
import logging

from ci_client.github import GitHubClient, GitHubError
from ci_common.artifacts import ArtifactStore
from ci_common.config import Settings
from ci_common.models import Branch, BuildLedger
from ci_common.repository import LedgerCorruptedError, LedgerRepository
from ci_persistence.json_repository import JSONLedgerRepository

from .toolchain import Toolchain

logger = logging.getLogger(__name__)


class ReconcileError(RuntimeError):
    """Raised when a reconciliation pass fails; the ledger was persisted first."""


class BuildLogAdapter(logging.LoggerAdapter):
    """Prefixes toolchain output with the branch and commit being built."""

    def process(self, msg, kwargs):
        return f"[{self.extra['branch']}@{self.extra['commit'][:7]}] {msg}", kwargs


class Reconciler:
    """
    Controller that reconciles remote branches with local builds.

    Every pass:
    1. Loads the build ledger
    2. Wipes the builds root if the ledger is empty
    3. Fetches the remote branch list
    4. Removes builds of branches that no longer exist
    5. Prunes builds beyond the retention cap
    6. Builds branch heads that have no build yet, one at a time
    7. Runs queued reinstall requests
    8. Persists the ledger, whatever happened above
    """

    def __init__(
        self,
        github: GitHubClient,
        artifacts: ArtifactStore,
        repository: LedgerRepository,
        toolchain: Toolchain | None = None,
        max_builds: int = 50,
        interval: float = 300.0,
    ):
        """
        Initialize the reconciler.

        Args:
            github: Client for the hosting API
            artifacts: Layout of the builds root
            repository: Ledger storage
            toolchain: Archive extraction and build commands
            max_builds: Builds kept per branch
            interval: Seconds between the end of a pass and the start of the next
        """
        if max_builds < 1:
            raise ValueError(f"max_builds must be at least 1, got {max_builds}")

        self.github = github
        self.artifacts = artifacts
        self.repository = repository
        self.toolchain = toolchain or Toolchain()
        self.max_builds = max_builds
        self.interval = interval

        self.ledger = BuildLedger()
        self._reinstall_requests: list[tuple[str, str]] = []
        self._running = False
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Reconciler":
        """Create a reconciler with the collaborators described by ``settings``."""
        return cls(
            github=GitHubClient(settings.repository, token=settings.github_token),
            artifacts=ArtifactStore(settings.builds_dir, settings.project_name),
            repository=JSONLedgerRepository(settings.ledger_path),
            toolchain=Toolchain(settings.install_command, settings.build_command),
            max_builds=settings.max_builds,
            interval=settings.interval_seconds,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_reinstalls(self) -> list[tuple[str, str]]:
        return list(self._reinstall_requests)

    async def start(self) -> None:
        """Start the reconciliation loop in a background task."""
        if self._running:
            logger.warning("Reconciler already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Reconciler started")

    async def stop(self) -> None:
        """
        Stop the loop.

        A pass in progress is allowed to finish; builds are never interrupted.
        """
        if self._task is None:
            return

        logger.info("Stopping reconciler...")
        self._running = False
        self._stop_event.set()
        # Failures were already logged by the pass and are reported by wait()
        await asyncio.wait([self._task])
        logger.info("Reconciler stopped")

    async def wait(self) -> None:
        """
        Wait for the loop to end.

        Raises:
            ReconcileError: If the loop ended because a pass failed
        """
        if self._task is not None:
            await self._task

    async def _run_loop(self) -> None:
        """Main reconciliation loop."""
        try:
            if self.artifacts.is_empty():
                logger.info("No builds on disk, running initial reconciliation")
                await self.reconcile_once()

            while self._running:
                if await self._sleep():
                    break
                await self.reconcile_once()
        finally:
            self._running = False

    async def _sleep(self) -> bool:
        """Sleep for one interval. Returns True if a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    def request_reinstall(self, branch: str, sha: str) -> bool:
        """
        Queue a re-run of install and build for an already extracted commit.

        The request is processed by the next reconciliation pass.

        Returns:
            False if the same request is already queued
        """
        request = (branch, sha)
        if request in self._reinstall_requests:
            return False
        self._reinstall_requests.append(request)
        logger.info(f"Queued reinstall of {branch}@{sha}")
        return True

    async def reconcile_once(self) -> None:
        """
        Perform one reconciliation pass.

        Raises:
            ReconcileError: If the ledger cannot be loaded or saved, or the pass
                hit an unexpected error. The ledger is saved before raising.
        """
        logger.info("Starting reconciliation pass")
        try:
            ledger = self.repository.load()
        except (LedgerCorruptedError, OSError) as e:
            logger.error(f"Cannot load build ledger: {e}", exc_info=True)
            raise ReconcileError(f"Cannot load build ledger: {e}") from e
        self.ledger = ledger

        error: Exception | None = None
        try:
            await self._reconcile(ledger)
        except Exception as e:
            error = e
            logger.error(f"Error in reconciliation pass: {e}", exc_info=True)
        finally:
            try:
                self.repository.save(ledger)
            except OSError as e:
                logger.error(f"Cannot save build ledger: {e}", exc_info=True)
                error = error or e

        if error is not None:
            raise ReconcileError(f"Reconciliation pass failed: {error}") from error
        logger.info("Reconciliation pass complete")

    async def _reconcile(self, ledger: BuildLedger) -> None:
        if ledger.is_empty():
            logger.info("Build ledger is empty, removing all builds")
            await asyncio.to_thread(self.artifacts.remove_all)
        self.artifacts.ensure_root()

        try:
            branches = await asyncio.to_thread(self.github.fetch_branches, True)
        except GitHubError as e:
            # An unknown branch list must not be mistaken for "all branches deleted"
            logger.warning(f"Cannot fetch branches, skipping this pass: {e}")
            return
        logger.debug(f"Reconciliation: found {len(branches)} remote branches")

        await self._remove_old_branches(ledger, branches)

        for name in ledger.branches():
            await self._enforce_retention(ledger, name)

        for branch in branches:
            await self._build_if_missing(ledger, branch)

        await self._process_reinstall_requests(ledger)

    async def _remove_old_branches(
        self, ledger: BuildLedger, branches: list[Branch]
    ) -> None:
        """Forget branches that no longer exist remotely and delete their builds."""
        remote_names = {branch.name for branch in branches}
        for name in ledger.branches():
            if name not in remote_names:
                logger.info(f"Branch {name} was deleted remotely, removing its builds")
                ledger.remove_branch(name)
                await asyncio.to_thread(self.artifacts.remove_branch, name)

    async def _enforce_retention(self, ledger: BuildLedger, branch: str) -> None:
        """Delete the oldest builds of a branch beyond the retention cap."""
        evicted = ledger.prune_retention(branch, self.max_builds)
        if not evicted:
            return

        logger.info(
            f"Builds to remove for {branch}: {', '.join(r.sha for r in evicted)}"
        )
        if not ledger.records(branch):
            ledger.remove_branch(branch)
            await asyncio.to_thread(self.artifacts.remove_branch, branch)
            return

        for record in evicted:
            await asyncio.to_thread(self.artifacts.remove_commit, branch, record.sha)

    async def _build_if_missing(self, ledger: BuildLedger, branch: Branch) -> None:
        """
        Build the head commit of a branch unless a build directory exists.

        Args:
            ledger: Ledger receiving the outcome
            branch: Remote branch with its head commit
        """
        if self.artifacts.has_commit(branch.name, branch.sha):
            logger.debug(f"Build of {branch.name}@{branch.sha} exists, skipping")
            return

        logger.info(f"Building branch {branch.name} at {branch.sha}")
        log = self._build_log(branch.name, branch.sha)

        try:
            archive = await asyncio.to_thread(
                self.github.fetch_commit_archive, branch.sha
            )
        except GitHubError as e:
            # Nothing written yet, the next pass retries
            logger.warning(f"Cannot download {branch.name}@{branch.sha}: {e}")
            return

        try:
            commit_dir = self.artifacts.commit_dir(branch.name, branch.sha)
            await asyncio.to_thread(self.toolchain.extract_archive, archive, commit_dir)
            success = await self._install(branch.name, branch.sha, log)
        except Exception as e:
            log.error(f"Build pipeline failed: {e}", exc_info=True)
            success = False

        ledger.record_build(branch.name, branch.sha, success)
        logger.info(f"Build of {branch.name}@{branch.sha} finished with success={success}")
        await self._enforce_retention(ledger, branch.name)

    async def _install(self, branch: str, sha: str, log: BuildLogAdapter) -> bool:
        """Run package install, then the build task if the install succeeded."""
        project_dir = self.artifacts.project_dir(branch, sha)

        result = await self.toolchain.run_package_install(project_dir, log)
        if not result.success:
            log.warning("Package install failed, skipping build task")
            return False

        result = await self.toolchain.run_build_task(project_dir, log)
        return result.success

    async def _process_reinstall_requests(self, ledger: BuildLedger) -> None:
        requests, self._reinstall_requests = self._reinstall_requests, []
        for branch, sha in requests:
            if not self.artifacts.project_dir(branch, sha).is_dir():
                logger.warning(f"Cannot reinstall {branch}@{sha}: no extracted project")
                continue

            logger.info(f"Reinstalling {branch}@{sha}")
            log = self._build_log(branch, sha)
            try:
                success = await self._install(branch, sha, log)
            except Exception as e:
                log.error(f"Reinstall failed: {e}", exc_info=True)
                success = False

            ledger.record_build(branch, sha, success)
            await self._enforce_retention(ledger, branch)

    @staticmethod
    def _build_log(branch: str, sha: str) -> BuildLogAdapter:
        return BuildLogAdapter(
            logging.getLogger(f"{__name__}.build"), {"branch": branch, "commit": sha}
        )
