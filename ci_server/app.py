import logging

from fastapi import FastAPI, Request

from ci_client.github import GitHubClient
from ci_common.artifacts import ArtifactStore
from ci_common.config import Settings
from ci_controller.reconciler import Reconciler

from .dispatcher import RequestDispatcher, RouteTable
from .pages import DashboardPages
from .router import HostRouter, SiteAddress

logger = logging.getLogger(__name__)


def create_dispatcher(
    settings: Settings,
    github: GitHubClient,
    artifacts: ArtifactStore,
    reconciler: Reconciler | None = None,
) -> RequestDispatcher:
    """
    Wire the router, pages and dispatcher for the given settings.

    Args:
        settings: Resolved configuration
        github: Client for the hosting API
        artifacts: Layout of the builds root
        reconciler: In-process reconciler, enables the reinstall page

    Returns:
        A ready RequestDispatcher
    """
    scheme = "https" if settings.ssl_files else "http"
    address = SiteAddress(port=settings.port, apex=settings.hostname, scheme=scheme)
    pages = DashboardPages(github, artifacts, address, reconciler)
    return RequestDispatcher(
        router=HostRouter(github, apex=settings.hostname),
        artifacts=artifacts,
        address=address,
        routes=RouteTable(pages.routes()),
    )


def create_app(dispatcher: RequestDispatcher) -> FastAPI:
    """
    Create the dashboard application.

    Every request first goes through the dispatcher; only requests it does
    not handle reach the regular FastAPI routes.
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    app.state.dispatcher = dispatcher

    @app.middleware("http")
    async def dispatch_build_hosts(request: Request, call_next):
        response = await dispatcher.dispatch(request)
        if response is None:
            return await call_next(request)
        return response

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """
        Health check endpoint.

        Returns:
            Dictionary with status="ok" if server is running
        """
        return {"status": "ok"}

    return app
