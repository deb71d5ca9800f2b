"""Application factory module.

Provides the create_app() factory function for creating FastAPI application instances.
"""

from fastapi import APIRouter, FastAPI

from apphost.bootstrap.lifespan import lifespan
from apphost.bootstrap.routes import register_routes
from apphost.core.config import Settings
from apphost.core.exceptions import register_exception_handlers
from apphost.core.logging import setup_logging
from apphost.infrastructure.middleware import make_middlewares


def create_app(settings: Settings = None, router: APIRouter = None, configure_logging: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to build from. Defaults to the process-wide settings.
        router: Router mounted under ``/api``. Defaults to the application router.
        configure_logging: Install the loguru sinks as part of building the app.

    Returns:
        FastAPI: Configured application instance.
    """
    if settings is None:
        from apphost.core.config import settings

    if configure_logging:
        setup_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=settings.APP_DESCRIPTION,
        middleware=make_middlewares(settings),
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    register_exception_handlers(app)
    register_routes(app, settings, router=router)

    return app
