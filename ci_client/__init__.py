"""
CI Client module.

HTTP client for the source-control hosting API the dashboard builds from.
"""

from .github import GitHubClient, GitHubError

__all__ = ["GitHubClient", "GitHubError"]
