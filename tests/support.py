"""Helpers shared by the test modules."""
import asyncio

from fastapi import APIRouter, Request

from apphost.api import api_router
from apphost.core.config import Settings

FRONTEND_ORIGIN = "http://frontend.test"


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "_env_file": None,
        "LOG_TO_FILE": False,
        "LOG_LEVEL": "WARNING",
        "SERVER_HOST": "127.0.0.1",
        "PORT": 0,
        "BASE_DIR": str(tmp_path),
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "FRONTEND_URL": FRONTEND_ORIGIN,
        "SHUTDOWN_GRACE_PERIOD": 2,
    }
    values.update(overrides)
    return Settings(**values)


class RouteRecorder:
    """Records which check routes were reached."""

    def __init__(self):
        self.calls = []


def build_recording_router(recorder: RouteRecorder) -> APIRouter:
    router = APIRouter()
    router.include_router(api_router)

    @router.post("/checks/echo")
    async def echo(request: Request):
        recorder.calls.append("echo")
        return {"body": getattr(request.state, "body", None)}

    @router.post("/checks/raw")
    async def raw(request: Request):
        recorder.calls.append("raw")
        return {"length": len(await request.body())}

    @router.get("/checks/slow")
    async def slow():
        recorder.calls.append("slow")
        await asyncio.sleep(5)
        return {"done": True}

    @router.get("/checks/boom")
    async def boom():
        recorder.calls.append("boom")
        raise RuntimeError("handler exploded")

    @router.get("/checks/large")
    async def large():
        return {"items": ["payload"] * 2000}

    return router
