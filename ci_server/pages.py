"""
HTML status pages of the dashboard.

Each page handler takes the parameters extracted from its route pattern and
returns a complete HTML document. Build status is read from the builds
directory, never from the reconciler's in-memory ledger.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ci_client.github import GitHubClient, GitHubError
from ci_common.artifacts import ArtifactStore
from ci_common.models import BUILD_TYPES, CONNECTIONS, HostCoordinates
from ci_controller.reconciler import Reconciler

from .router import LATEST, SiteAddress
from .templates import render_index, render_links

logger = logging.getLogger(__name__)

PageHandler = Callable[[dict[str, str]], Awaitable[str]]


class DashboardPages:
    """
    Branch, commit and build listings, plus the reinstall action.
    """

    def __init__(
        self,
        github: GitHubClient,
        artifacts: ArtifactStore,
        address: SiteAddress,
        reconciler: Reconciler | None = None,
    ):
        """
        Initialize the pages.

        Args:
            github: Client for branch lists and commit messages
            artifacts: Layout of the builds root
            address: Public address used to build variant links
            reconciler: In-process reconciler; reinstall is unavailable without one
        """
        self.github = github
        self.artifacts = artifacts
        self.address = address
        self.reconciler = reconciler

    def routes(self) -> list[tuple[str, PageHandler]]:
        """Route patterns served by these pages, in matching order."""
        return [
            ("/", self.index),
            ("/index.html", self.index),
            ("/branch/:name", self.branch),
            ("/branch/:name/commit/:commit", self.builds),
            ("/branch/:name/latest", self.latest),
            ("/branch/:name/commit/:commit/reinstall", self.reinstall),
        ]

    def get_builds_list(
        self, branch: str, commit: str, latest: bool = False
    ) -> list[dict[str, str]]:
        """
        Links to every connection/build type variant of a commit.

        Args:
            branch: Branch name
            commit: Commit sha the status is checked for
            latest: Address the variants via "latest" instead of the sha
        """
        label = LATEST if latest else commit
        items = []
        for connection in CONNECTIONS:
            for build_type in BUILD_TYPES:
                coords = HostCoordinates(branch, commit, connection, build_type)
                items.append(
                    {
                        "url": self.address.build_url(
                            branch, label, connection, build_type
                        ),
                        "text": f'Branch: "{branch}"\ncommit: {label}\n{connection} {build_type}',
                        "status": "success" if self.artifacts.exists(coords) else "fail",
                    }
                )
        return items

    def get_commit_status(self, branch: str, commit: str) -> str:
        """
        Returns:
            "success" if every variant was built, "partial" if some were, else "fail"
        """
        statuses = [item["status"] for item in self.get_builds_list(branch, commit)]
        built = statuses.count("success")
        if built == len(statuses):
            return "success"
        if built:
            return "partial"
        return "fail"

    async def index(self, params: dict[str, str]) -> str:
        message = None
        try:
            branches = await asyncio.to_thread(self.github.fetch_branches)
        except GitHubError as e:
            logger.warning(f"Cannot list branches: {e}")
            branches = []
            message = "Branch list is unavailable right now."

        links = [{"url": f"/branch/{b.name}", "text": b.name} for b in branches]
        return render_index(render_links(links), message=message)

    async def branch(self, params: dict[str, str]) -> str:
        name = params["name"]
        shas = self.artifacts.list_commits(name)
        try:
            commits = await asyncio.to_thread(self.github.fetch_commit_messages, shas)
        except GitHubError as e:
            logger.warning(f"Cannot fetch commit messages of {name}: {e}")
            commits = [(sha, sha) for sha in shas]

        links = [
            {
                "url": f"/branch/{name}/commit/{sha}",
                "text": message,
                "status": self.get_commit_status(name, sha),
            }
            for sha, message in commits
        ]
        links.append({"url": f"/branch/{name}/latest", "text": LATEST})
        return render_index(render_links(links), title=f"Branch {name}")

    async def builds(self, params: dict[str, str]) -> str:
        name, commit = params["name"], params["commit"]
        links = self.get_builds_list(name, commit)
        links.append(
            {"url": f"/branch/{name}/commit/{commit}/reinstall", "text": "reinstall"}
        )
        return render_index(render_links(links), title=f"{name} @ {commit}")

    async def latest(self, params: dict[str, str]) -> str:
        name = params["name"]
        commit = await asyncio.to_thread(self.github.get_branch_head, name)
        if commit is None:
            raise LookupError(f"Branch {name} not found")

        links = self.get_builds_list(name, commit, latest=True)
        return render_index(render_links(links), title=f"{name} @ {LATEST} ({commit})")

    async def reinstall(self, params: dict[str, str]) -> str:
        name, commit = params["name"], params["commit"]
        if self.reconciler is None:
            raise RuntimeError("Reinstall needs the builder running in this process")
        if not self.artifacts.has_commit(name, commit):
            raise LookupError(f"No build of {name}@{commit}")

        if self.reconciler.request_reinstall(name, commit):
            message = f"Reinstall of {commit} queued, it runs on the next build pass."
        else:
            message = f"Reinstall of {commit} is already queued."

        links = self.get_builds_list(name, commit)
        return render_index(
            render_links(links), title=f"{name} @ {commit}", message=message
        )
