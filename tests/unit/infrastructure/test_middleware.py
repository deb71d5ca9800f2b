import asyncio

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.responses import PlainTextResponse

from apphost.core.exceptions import MalformedBodyException, RequestTimeoutException
from apphost.infrastructure.middleware import (
    PIPELINE_ORDER,
    ErrorHandlerMiddleware,
    FrontendCORSMiddleware,
    SecurityHeadersMiddleware,
    TimeoutMiddleware,
    make_middlewares,
)
from tests.support import make_settings


def test_make_middlewares_follows_pipeline_order(tmp_path):
    middlewares = make_middlewares(make_settings(tmp_path))

    assert len(middlewares) == len(PIPELINE_ORDER)
    assert PIPELINE_ORDER.index("error_handler") < PIPELINE_ORDER.index("json_body")
    assert PIPELINE_ORDER.index("cors") < PIPELINE_ORDER.index("error_handler")


def test_cors_limited_to_frontend(tmp_path):
    cors = make_middlewares(make_settings(tmp_path))[PIPELINE_ORDER.index("cors")]

    assert cors.kwargs["allow_origins"] == ["http://frontend.test"]
    assert cors.kwargs["allow_credentials"] is True


class TestSecurityHeaders:

    def build_client(self, hsts_preload=False):
        app = FastAPI()
        app.add_middleware(SecurityHeadersMiddleware, hsts_preload=hsts_preload)

        @app.get("/")
        async def index():
            return PlainTextResponse("ok", headers={"X-Powered-By": "framework/1.0"})

        return TestClient(app)

    def test_strips_disclosure_headers(self):
        response = self.build_client().get("/")

        assert "x-powered-by" not in response.headers
        assert response.headers["referrer-policy"] == "no-referrer"

    def test_hsts_preload(self):
        response = self.build_client(hsts_preload=True).get("/")

        assert response.headers["strict-transport-security"].endswith("; preload")


class TestFrontendCors:

    def build_client(self):
        app = FastAPI()
        app.add_middleware(
            FrontendCORSMiddleware,
            allow_origins=["http://frontend.test"],
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type"],
        )

        @app.get("/")
        async def index():
            return PlainTextResponse("ok")

        return TestClient(app)

    def test_foreign_origin_gets_no_cors_headers(self):
        response = self.build_client().get("/", headers={"Origin": "http://evil.test"})

        assert response.status_code == 200
        assert response.text == "ok"
        assert not [name for name in response.headers if name.startswith("access-control-")]

    def test_foreign_preflight_gets_error_envelope(self):
        response = self.build_client().options(
            "/",
            headers={"Origin": "http://evil.test", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 403
        payload = response.json()
        assert payload["success"] is False
        assert payload["code"] == 403
        assert payload["error_code"] == "CORS_ORIGIN_DENIED"
        assert not [name for name in response.headers if name.startswith("access-control-")]

    def test_allowed_origin_keeps_credentials(self):
        response = self.build_client().get("/", headers={"Origin": "http://frontend.test"})

        assert response.headers["access-control-allow-origin"] == "http://frontend.test"
        assert response.headers["access-control-allow-credentials"] == "true"

    def test_same_origin_request_passes_through(self):
        response = self.build_client().get("/")

        assert response.text == "ok"
        assert "access-control-allow-origin" not in response.headers


async def collect(app, scope=None):
    scope = scope or {"type": "http", "method": "GET", "path": "/x", "headers": [], "query_string": b""}
    sent = []

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        sent.append(message)

    await app(scope, receive, send)
    return sent


class TestErrorHandler:

    @pytest.mark.asyncio
    async def test_renders_business_error(self):
        async def failing(scope, receive, send):
            raise MalformedBodyException("bad")

        sent = await collect(ErrorHandlerMiddleware(failing))

        assert sent[0]["status"] == 400

    @pytest.mark.asyncio
    async def test_reraises_after_response_started(self):
        async def half_sent(scope, receive, send):
            await send({"type": "http.response.start", "status": 200, "headers": []})
            raise RuntimeError("stream broke")

        with pytest.raises(RuntimeError):
            await collect(ErrorHandlerMiddleware(half_sent))

    @pytest.mark.asyncio
    async def test_passes_websocket_scopes(self):
        seen = []

        async def ws_app(scope, receive, send):
            seen.append(scope["type"])

        await ErrorHandlerMiddleware(ws_app)({"type": "websocket"}, None, None)

        assert seen == ["websocket"]


class TestTimeout:

    @pytest.mark.asyncio
    async def test_raises_after_deadline(self):
        async def slow(scope, receive, send):
            await asyncio.sleep(1)

        with pytest.raises(RequestTimeoutException):
            await collect(TimeoutMiddleware(slow, timeout=0.05))

    @pytest.mark.asyncio
    async def test_zero_disables(self):
        async def quick(scope, receive, send):
            await asyncio.sleep(0.01)
            await send({"type": "http.response.start", "status": 204, "headers": []})

        sent = await collect(TimeoutMiddleware(quick, timeout=0))

        assert sent[0]["status"] == 204
