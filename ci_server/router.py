"""
Virtual host parsing.

Builds are addressed by host name:

    <branch>.<commit|latest>.<connection>.<build_type>.<apex>[:<port>]
"""

import asyncio
import logging

from ci_client.github import GitHubClient, GitHubError
from ci_common.models import HostCoordinates

logger = logging.getLogger(__name__)

LATEST = "latest"


def split_port(host: str) -> tuple[str, str | None]:
    """Split "name:port" into ("name", "port"); port is None when absent."""
    name, sep, port = host.rpartition(":")
    if sep and port.isdigit():
        return name, port
    return host, None


class SiteAddress:
    """
    Public address of the dashboard, used to build links and redirects.

    Without a configured apex, the apex is learned from the first request:
    the last label of its host name.
    """

    def __init__(self, port: int, apex: str | None = None, scheme: str = "http"):
        self.port = port
        self.apex = apex
        self.scheme = scheme

    def learn(self, host: str) -> None:
        if self.apex or not host:
            return
        name, _ = split_port(host)
        label = name.rsplit(".", 1)[-1]
        if label:
            self.apex = label
            logger.info(f"Using {label} as apex host name")

    def build_url(
        self, branch: str, commit: str, connection: str, build_type: str
    ) -> str:
        apex = self.apex or "localhost"
        return (
            f"{self.scheme}://{branch}.{commit}.{connection}.{build_type}"
            f".{apex}:{self.port}"
        )

    def default_url(self, host: str) -> str:
        """Landing page URL for a request made to ``host``."""
        name, port = split_port(host)
        apex = self.apex or name.rsplit(".", 1)[-1]
        return f"{self.scheme}://{apex}" + (f":{port}" if port else "")


class HostRouter:
    """
    Turns a Host header into build coordinates.
    """

    def __init__(self, github: GitHubClient, apex: str | None = None):
        """
        Initialize the router.

        Args:
            github: Client used to resolve "latest" to a branch head
            apex: Fixed apex host name; without it the last label is the apex
        """
        self.github = github
        self.apex = apex.lower() if apex else None

    def split_labels(self, host: str) -> list[str] | None:
        """
        Get the coordinate labels of a host, apex and port removed.

        Returns:
            The labels, or None if the host cannot encode coordinates
        """
        if not host or "/" in host or "\\" in host:
            return None

        name, _ = split_port(host)
        if self.apex and name.lower().endswith(f".{self.apex}"):
            name = name[: -len(self.apex) - 1]
            labels = name.split(".")
        else:
            labels = name.split(".")[:-1]
        return labels

    async def parse(self, host: str) -> HostCoordinates | None:
        """
        Parse a host into coordinates, resolving a "latest" commit.

        Args:
            host: Value of the Host header

        Returns:
            HostCoordinates, or None if the host is not a build host or
            "latest" cannot be resolved
        """
        labels = self.split_labels(host)
        if labels is None or len(labels) < 4:
            return None

        branch, commit, connection, build_type = labels[:4]
        if not all((branch, commit, connection, build_type)):
            return None

        if commit == LATEST:
            try:
                head = await asyncio.to_thread(self.github.get_branch_head, branch)
            except GitHubError as e:
                logger.warning(f"Cannot resolve latest commit of {branch}: {e}")
                return None
            if head is None:
                logger.debug(f"Branch {branch} not found while resolving latest")
                return None
            commit = head

        return HostCoordinates(
            branch=branch, commit=commit, connection=connection, build_type=build_type
        )
