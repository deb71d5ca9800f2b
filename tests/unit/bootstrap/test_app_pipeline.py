"""
Request pipeline tests

Exercise the assembled application through TestClient: body limits,
static uploads, CORS, security headers, compression and error rendering.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.middleware.gzip import GZipMiddleware

from apphost.bootstrap import create_app
from apphost.infrastructure.middleware import (
    PIPELINE_ORDER,
    ErrorHandlerMiddleware,
    FormBodyParserMiddleware,
    FrontendCORSMiddleware,
    JSONBodyParserMiddleware,
    SecurityHeadersMiddleware,
    TimeoutMiddleware,
)
from tests.support import FRONTEND_ORIGIN, RouteRecorder, build_recording_router, make_settings


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


class TestPipelineOrder:

    def test_middleware_order(self, app):
        assert [m.cls for m in app.user_middleware] == [
            SecurityHeadersMiddleware,
            FrontendCORSMiddleware,
            GZipMiddleware,
            ErrorHandlerMiddleware,
            TimeoutMiddleware,
            JSONBodyParserMiddleware,
            FormBodyParserMiddleware,
        ]
        assert len(PIPELINE_ORDER) == len(app.user_middleware)

    def test_uploads_mounted_before_api(self, app):
        paths = [getattr(route, "path", None) for route in app.router.routes]
        assert "/uploads" in paths
        assert paths.index("/uploads") < paths.index("/api/health")


class TestBodyLimit:

    def test_json_body_over_50mb_is_rejected(self, client, recorder):
        body = b'{"data": "' + b"x" * (60 * 1024 * 1024) + b'"}'
        response = client.post(
            "/api/checks/echo",
            content=body,
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json()["error_code"] == "PAYLOAD_TOO_LARGE"
        assert recorder.calls == []

    def test_form_body_over_limit_is_rejected(self, tmp_path):
        recorder = RouteRecorder()
        settings = make_settings(tmp_path, BODY_LIMIT=1024)
        app = create_app(settings, router=build_recording_router(recorder), configure_logging=False)

        with TestClient(app) as client:
            response = client.post(
                "/api/checks/echo",
                content="field=" + "y" * 2048,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        assert response.status_code == 413
        assert recorder.calls == []

    def test_body_at_limit_is_accepted(self, tmp_path):
        recorder = RouteRecorder()
        settings = make_settings(tmp_path, BODY_LIMIT=64)
        app = create_app(settings, router=build_recording_router(recorder), configure_logging=False)
        body = '{"k": "' + "z" * (64 - 9) + '"}'
        assert len(body) == 64

        with TestClient(app) as client:
            response = client.post(
                "/api/checks/echo",
                content=body,
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 200
        assert recorder.calls == ["echo"]

    def test_other_media_types_pass_through(self, client, recorder):
        response = client.post(
            "/api/checks/raw",
            content=b"\x00\x01\x02",
            headers={"Content-Type": "application/octet-stream"},
        )

        assert response.status_code == 200
        assert response.json() == {"length": 3}


class TestBodyParsing:

    def test_json_body_exposed_on_request_state(self, client):
        response = client.post("/api/checks/echo", json={"name": "ana", "tags": [1, 2]})

        assert response.status_code == 200
        assert response.json()["body"] == {"name": "ana", "tags": [1, 2]}

    def test_nested_form_body(self, client):
        response = client.post(
            "/api/checks/echo",
            content="user[name]=ana&user[role]=admin&tags[]=a&tags[]=b",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 200
        assert response.json()["body"] == {
            "user": {"name": "ana", "role": "admin"},
            "tags": ["a", "b"],
        }

    def test_malformed_json_is_400(self, client, recorder):
        response = client.post(
            "/api/checks/echo",
            content='{"name": ',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        payload = response.json()
        assert payload["success"] is False
        assert payload["error_code"] == "MALFORMED_BODY"
        assert recorder.calls == []

    def test_json_primitive_rejected_in_strict_mode(self, client):
        response = client.post(
            "/api/checks/echo",
            content='"just a string"',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400


class TestStaticUploads:

    def test_serves_file_bytes(self, client, settings):
        content = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
        with open(f"{settings.UPLOAD_DIR}/logo.png", "wb") as f:
            f.write(content)

        response = client.get("/uploads/logo.png")

        assert response.status_code == 200
        assert response.content == content

    def test_missing_file_is_404(self, client):
        response = client.get("/uploads/missing.txt")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_uploads_not_shadowed_by_api(self, client, settings):
        with open(f"{settings.UPLOAD_DIR}/health", "wb") as f:
            f.write(b"file")

        assert client.get("/uploads/health").content == b"file"
        assert client.get("/api/health").json()["data"]["status"] == "healthy"


class TestCors:

    def test_frontend_origin_allowed_with_credentials(self, client):
        response = client.get("/api/health", headers={"Origin": FRONTEND_ORIGIN})

        assert response.headers["access-control-allow-origin"] == FRONTEND_ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"

    def test_other_origin_gets_no_cors_headers(self, client):
        response = client.get("/api/health", headers={"Origin": "http://evil.test"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        cors_headers = [name for name in response.headers if name.startswith("access-control-")]
        assert cors_headers == []

    def test_preflight_from_other_origin_is_refused(self, client, recorder):
        response = client.options(
            "/api/checks/echo",
            headers={
                "Origin": "http://evil.test",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "CORS_ORIGIN_DENIED"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert "access-control-allow-credentials" not in response.headers
        assert "access-control-allow-methods" not in response.headers
        assert recorder.calls == []

    def test_preflight_from_frontend(self, client):
        response = client.options(
            "/api/checks/echo",
            headers={
                "Origin": FRONTEND_ORIGIN,
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == FRONTEND_ORIGIN

    def test_empty_frontend_url_allows_no_origin(self, tmp_path):
        settings = make_settings(tmp_path, FRONTEND_URL="")
        app = create_app(settings, router=build_recording_router(RouteRecorder()), configure_logging=False)

        with TestClient(app) as client:
            response = client.get("/api/health", headers={"Origin": FRONTEND_ORIGIN})

        assert "access-control-allow-origin" not in response.headers


class TestResponseHeaders:

    def test_security_headers_present(self, client):
        response = client.get("/api/health")

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert "content-security-policy" in response.headers
        assert "x-powered-by" not in response.headers

    def test_error_responses_keep_security_headers(self, client):
        response = client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_large_response_is_compressed(self, client):
        response = client.get("/api/checks/large", headers={"Accept-Encoding": "gzip"})

        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        assert len(response.json()["items"]) == 2000

    def test_small_response_is_not_compressed(self, client):
        response = client.get("/api/health", headers={"Accept-Encoding": "gzip"})

        assert "content-encoding" not in response.headers


class TestErrorHandling:

    def test_unhandled_error_renders_envelope(self, client, recorder):
        response = client.get("/api/checks/boom")

        assert response.status_code == 500
        payload = response.json()
        assert payload == {
            "success": False,
            "code": 500,
            "message": "Internal server error",
            "error_code": "INTERNAL_ERROR",
            "data": None,
            "timestamp": payload["timestamp"],
        }
        assert "handler exploded" not in response.text
        assert recorder.calls == ["boom"]

    def test_unknown_api_path_is_404(self, client):
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json()["code"] == 404

    def test_slow_request_times_out(self, tmp_path):
        settings = make_settings(tmp_path, REQUEST_TIMEOUT=0.2)
        app = create_app(settings, router=build_recording_router(RouteRecorder()), configure_logging=False)

        with TestClient(app) as client:
            response = client.get("/api/checks/slow")

        assert response.status_code == 504
        assert response.json()["error_code"] == "REQUEST_TIMEOUT"


class TestApiRoutes:

    def test_health(self, client, settings):
        response = client.get("/api/health")

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert payload["data"]["version"] == settings.APP_VERSION

    def test_websocket_stats(self, client):
        response = client.get("/api/ws/stats")

        assert response.status_code == 200
        assert "active_connections" in response.json()["data"]
