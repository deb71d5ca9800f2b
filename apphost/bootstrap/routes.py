"""Route registration module."""

from fastapi import APIRouter, FastAPI
from fastapi.staticfiles import StaticFiles


def register_routes(app: FastAPI, settings, router: APIRouter = None) -> None:
    """Mount the upload files and the API tree.

    Args:
        app: FastAPI application instance.
        settings: Provides ``UPLOAD_DIR``.
        router: Router served under ``/api``.
    """
    if router is None:
        from apphost.api import api_router as router

    # the directory is created by the lifespan, after the app is built
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")
    app.include_router(router, prefix="/api")
