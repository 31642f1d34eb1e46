"""
Static file serving for build variants.

A build variant serves files from several roots; the first root holding the
requested path wins.
"""

from os import PathLike
from pathlib import Path

from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response


class MultiRootStaticFiles(StaticFiles):
    """
    StaticFiles looking a path up in an ordered list of directories.
    """

    def __init__(self, roots: list[Path]):
        """
        Args:
            roots: Directories to search, most specific first; they need not exist yet
        """
        if not roots:
            raise ValueError("At least one root directory is required")
        self.roots = [str(root) for root in roots]
        super().__init__(directory=self.roots[0], check_dir=False)

    def get_directories(
        self,
        directory: str | PathLike[str] | None = None,
        packages=None,
    ) -> list[str | PathLike[str]]:
        return list(self.roots)

    async def serve(self, request: Request) -> Response:
        """
        Serve the request path from the first root holding it.

        Returns:
            The file response, or a plain-text error when no root has the file
        """
        path = self.get_path(request.scope)
        try:
            return await self.get_response(path, request.scope)
        except HTTPException as e:
            if e.status_code == 404:
                return PlainTextResponse("404 Not found!", status_code=404)
            return PlainTextResponse(str(e.detail), status_code=e.status_code)
