"""Application lifecycle management."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from loguru import logger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Prepare storage before the first request and log the application window.

    Listener-bound services (WebSocket, scheduler) are driven by
    `ApplicationServer`, not from here.
    """
    settings = app.state.settings
    try:
        _init_storage(settings)
    except OSError as e:
        logger.error(f"Storage initialization failed: {e}")
        raise

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    try:
        yield
    finally:
        logger.info(f"{settings.APP_NAME} stopped")


def _init_storage(settings) -> None:
    for dir_path in (settings.UPLOAD_DIR, settings.UPLOAD_TMP_DIR):
        os.makedirs(dir_path, exist_ok=True)
    logger.info(f"Upload directory ready: {settings.UPLOAD_DIR}")
