"""Route registration — mounts all routers under ``/api/v1``."""

from fastapi import FastAPI

from livepoll_server.routes.accounts import router as accounts_router
from livepoll_server.routes.admin import router as admin_router
from livepoll_server.routes.display import router as display_router
from livepoll_server.routes.feed import router as feed_router
from livepoll_server.routes.participant import router as participant_router
from livepoll_server.routes.presentation import router as presentation_router
from livepoll_server.routes.results import router as results_router

API_PREFIX = "/api/v1"


def register_routes(app: FastAPI) -> None:
    """Include all sub-routers under the versioned API prefix."""
    app.include_router(participant_router, prefix=API_PREFIX)
    app.include_router(presentation_router, prefix=API_PREFIX)
    app.include_router(results_router, prefix=API_PREFIX)
    app.include_router(display_router, prefix=API_PREFIX)
    app.include_router(feed_router, prefix=API_PREFIX)
    app.include_router(accounts_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=API_PREFIX)
