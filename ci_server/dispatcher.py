"""
Per-request dispatch between build hosts and dashboard pages.

Requests to a build host (see router.py) are answered from the build's
files. Any other request is matched against the named page routes.
"""

import logging
from pathlib import Path

from fastapi import Request
from fastapi.responses import (
    FileResponse,
    HTMLResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)

from ci_common.artifacts import ArtifactStore
from ci_common.models import HostCoordinates

from .pages import PageHandler
from .router import HostRouter, SiteAddress
from .static_files import MultiRootStaticFiles

logger = logging.getLogger(__name__)

# Paths containing one of these segments are asset requests, everything
# else gets the single page app's index.html
STATIC_PATH_SEGMENTS = ("img", "css", "fonts", "js", "bower_components", "node_modules")


def is_page(path: str) -> bool:
    return not any(f"/{segment}/" in path for segment in STATIC_PATH_SEGMENTS)


def match_route(pattern: str, path: str) -> dict[str, str] | None:
    """
    Match a path against a route pattern with ":param" segments.

    Args:
        pattern: Route pattern, e.g. "/branch/:name"
        path: Request path

    Returns:
        Extracted parameters, or None if the path does not match
    """
    pattern_parts = pattern.split("/")
    path_parts = path.split("/")
    if len(pattern_parts) != len(path_parts):
        return None

    params = {}
    for expected, actual in zip(pattern_parts, path_parts):
        if expected.startswith(":"):
            params[expected[1:]] = actual
        elif expected != actual:
            return None
    return params


class RouteTable:
    """Ordered route patterns; the first match wins."""

    def __init__(self, routes: list[tuple[str, PageHandler]]):
        self.routes = list(routes)

    def resolve(self, path: str) -> tuple[PageHandler, dict[str, str]] | None:
        for pattern, handler in self.routes:
            params = match_route(pattern, path)
            if params is not None:
                return handler, params
        return None


class RequestDispatcher:
    """
    Decides how a request is answered.

    Owns the cache of static handlers, one per build variant, created on
    first use and kept for the lifetime of the process.
    """

    def __init__(
        self,
        router: HostRouter,
        artifacts: ArtifactStore,
        address: SiteAddress,
        routes: RouteTable,
    ):
        self.router = router
        self.artifacts = artifacts
        self.address = address
        self.routes = routes
        self._static_handlers: dict[Path, MultiRootStaticFiles] = {}

    async def dispatch(self, request: Request) -> Response | None:
        """
        Answer a request.

        Returns:
            The response, or None when no build host or page route applies
        """
        host = request.headers.get("host", "")
        self.address.learn(host)

        coords = await self.router.parse(host)
        if coords is None:
            return await self._dispatch_page(request)

        if not self.artifacts.exists(coords):
            return RedirectResponse(self.address.default_url(host), status_code=302)

        if is_page(request.url.path):
            index_path = self.artifacts.variant_dir(coords) / "index.html"
            if not index_path.is_file():
                return PlainTextResponse("404 Not found!", status_code=404)
            return FileResponse(index_path, media_type="text/html")

        return await self.get_static_handler(coords).serve(request)

    def get_static_handler(self, coords: HostCoordinates) -> MultiRootStaticFiles:
        path = self.artifacts.variant_dir(coords)
        handler = self._static_handlers.get(path)
        if handler is None:
            handler = MultiRootStaticFiles(self.artifacts.static_roots(coords))
            self._static_handlers[path] = handler
        return handler

    async def _dispatch_page(self, request: Request) -> Response | None:
        resolved = self.routes.resolve(request.url.path)
        if resolved is None:
            return None

        handler, params = resolved
        try:
            html = await handler(params)
        except Exception as e:
            logger.error(f"Error rendering {request.url.path}: {e}", exc_info=True)
            return PlainTextResponse(f"Error!{e}", status_code=404)
        return HTMLResponse(html)
