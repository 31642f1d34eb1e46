"""
On-disk layout of build artifacts.

Every commit of a branch is extracted into its own directory under the
builds root; the build toolchain then writes one output directory per
connection and build type:

    <root>/<branch>/<sha>/<project>-<sha>/dist/build/<connection>/<build_type>

Branch and commit names are percent-encoded into single path segments.

The presence of a directory is the only signal that a build exists.
"""

import logging
import shutil
from pathlib import Path
from urllib.parse import quote, unquote

from .models import HostCoordinates

logger = logging.getLogger(__name__)

DIST_SUBDIR = Path("dist", "build")
SOURCE_SUBDIR = Path("src")


class InvalidNameError(LookupError):
    """Raised when a branch or commit name cannot name a directory under the builds root."""


def encode_segment(name: str) -> str:
    """
    Encode a branch or commit name as one directory name.

    Raises:
        InvalidNameError: For empty names, "." and ".."
    """
    if name in ("", ".", ".."):
        raise InvalidNameError(f"Invalid build name: {name!r}")
    return quote(name, safe="")


class ArtifactStore:
    """
    Maps (branch, commit, connection, build type) onto build directories.
    """

    def __init__(self, root: str | Path, project_name: str):
        """
        Initialize the artifact store.

        Args:
            root: Builds root directory
            project_name: Repository name; archives extract to "{project_name}-{sha}"
        """
        self.root = Path(root)
        self.project_name = project_name

    def branch_dir(self, branch: str) -> Path:
        """
        Directory of a branch.

        Branch names may contain "/", so each name is encoded into a single
        path segment: "feature/x" lives in "feature%2Fx", never below "feature".

        Raises:
            InvalidNameError: If the name cannot be a directory under the root
        """
        return self.root / encode_segment(branch)

    def commit_dir(self, branch: str, sha: str) -> Path:
        return self.branch_dir(branch) / encode_segment(sha)

    def project_dir(self, branch: str, sha: str) -> Path:
        """Root of the extracted package for a commit."""
        return self.commit_dir(branch, sha) / f"{self.project_name}-{encode_segment(sha)}"

    def variant_dir(self, coords: HostCoordinates) -> Path:
        return (
            self.project_dir(coords.branch, coords.commit)
            / DIST_SUBDIR
            / coords.connection
            / coords.build_type
        )

    def static_roots(self, coords: HostCoordinates) -> list[Path]:
        """
        Directories static files of a build are served from, most specific first.
        """
        project_dir = self.project_dir(coords.branch, coords.commit)
        return [self.variant_dir(coords), project_dir / SOURCE_SUBDIR, project_dir]

    def has_commit(self, branch: str, sha: str) -> bool:
        return self.commit_dir(branch, sha).is_dir()

    def exists(self, coords: HostCoordinates) -> bool:
        return self.variant_dir(coords).is_dir()

    def is_empty(self) -> bool:
        """True if the builds root is missing or holds nothing."""
        if not self.root.is_dir():
            return True
        return next(self.root.iterdir(), None) is None

    def list_commits(self, branch: str) -> list[str]:
        """
        List the commits that have a directory for a branch, oldest first.
        """
        branch_dir = self.branch_dir(branch)
        if not branch_dir.is_dir():
            return []
        commit_dirs = [path for path in branch_dir.iterdir() if path.is_dir()]
        commit_dirs.sort(key=lambda path: path.stat().st_mtime)
        return [unquote(path.name) for path in commit_dirs]

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def remove_all(self) -> None:
        """Delete the whole builds root, unmanaged files included."""
        logger.info(f"Removing all builds under {self.root}")
        self._remove_tree(self.root)

    def remove_branch(self, branch: str) -> None:
        logger.info(f"Removing builds of branch {branch}")
        self._remove_tree(self.branch_dir(branch))

    def remove_commit(self, branch: str, sha: str) -> None:
        logger.info(f"Removing build {branch}/{sha}")
        self._remove_tree(self.commit_dir(branch, sha))

    @staticmethod
    def _remove_tree(path: Path) -> None:
        # Missing is fine, anything else (permissions, busy files) propagates
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
