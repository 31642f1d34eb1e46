"""
GitHub API client for branch, commit and archive lookups.

All network failures surface as GitHubError so callers can degrade
gracefully instead of handling requests' exception hierarchy.
"""

import logging
import threading
import time

import requests

from ci_common.models import Branch

logger = logging.getLogger(__name__)

USER_AGENT = "ci-dashboard"


class GitHubError(RuntimeError):
    """Raised when the hosting API cannot be reached or answers with an error."""


class GitHubClient:
    """
    Minimal client for the parts of the GitHub API the dashboard needs.

    The branch list is cached for ``cache_ttl`` seconds; commit messages are
    cached for the lifetime of the client since commits never change.
    """

    def __init__(
        self,
        repository: str,
        api_url: str = "https://api.github.com",
        archive_url: str = "https://codeload.github.com",
        token: str | None = None,
        cache_ttl: float = 3600.0,
        timeout: float = 30.0,
    ):
        """
        Initialize the client.

        Args:
            repository: Repository as "owner/name"
            api_url: Base URL of the REST API
            archive_url: Base URL serving zip archives
            token: Optional API token (raises the rate limit)
            cache_ttl: Seconds the branch list is served from cache
            timeout: Per-request timeout in seconds
        """
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.archive_url = archive_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

        # Reached from worker threads (asyncio.to_thread)
        self._lock = threading.Lock()
        self._branches: list[Branch] | None = None
        self._branches_fetched_at = 0.0
        self._messages: dict[str, str] = {}

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            raise GitHubError(f"Error requesting {url}: {e}") from e

    def fetch_branches(self, force_refresh: bool = False) -> list[Branch]:
        """
        List the remote branches with their head commits.

        Args:
            force_refresh: Bypass the cache and query the API

        Returns:
            Branches in API order

        Raises:
            GitHubError: If any page cannot be fetched
        """
        with self._lock:
            fresh = time.monotonic() - self._branches_fetched_at < self.cache_ttl
            if not force_refresh and self._branches is not None and fresh:
                return list(self._branches)

        branches: list[Branch] = []
        url: str | None = f"{self.api_url}/repos/{self.repository}/branches"
        params: dict | None = {"per_page": 100}
        while url:
            response = self._get(url, params=params)
            try:
                branches.extend(Branch.from_api(item) for item in response.json())
            except (ValueError, KeyError, TypeError) as e:
                raise GitHubError(f"Unexpected branch list from {url}: {e}") from e
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None

        logger.debug(f"Fetched {len(branches)} branches of {self.repository}")
        with self._lock:
            self._branches = branches
            self._branches_fetched_at = time.monotonic()
        return list(branches)

    def get_branch_head(self, name: str) -> str | None:
        """
        Get the head commit of a branch.

        Returns:
            Commit sha, or None if the branch does not exist
        """
        for branch in self.fetch_branches():
            if branch.name == name:
                return branch.sha
        return None

    def fetch_commit_archive(self, sha: str) -> bytes:
        """Download the zip archive of a commit."""
        url = f"{self.archive_url}/{self.repository}/zip/{sha}"
        return self._get(url).content

    def fetch_commit_message(self, sha: str) -> str:
        """Get the message of a commit."""
        with self._lock:
            if sha in self._messages:
                return self._messages[sha]

        url = f"{self.api_url}/repos/{self.repository}/git/commits/{sha}"
        try:
            message = self._get(url).json()["message"]
        except (ValueError, KeyError, TypeError) as e:
            raise GitHubError(f"Unexpected commit payload from {url}: {e}") from e

        with self._lock:
            self._messages[sha] = message
        return message

    def fetch_commit_messages(self, shas: list[str]) -> list[tuple[str, str]]:
        """Get (sha, message) pairs for several commits, in input order."""
        return [(sha, self.fetch_commit_message(sha)) for sha in shas]
