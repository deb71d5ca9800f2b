import pytest
from fastapi import HTTPException
from starlette.requests import Request

from apphost.core.exceptions import (
    MalformedBodyException,
    PayloadTooLargeException,
    RequestTimeoutException,
    ServerBindError,
    create_error_response,
    handle_exception,
)
from apphost.utils.serialization import from_json


def make_request(path="/api/items"):
    return Request({"type": "http", "method": "POST", "path": path, "headers": [], "query_string": b""})


def test_error_envelope_shape():
    response = create_error_response(413, "too big", error_code="PAYLOAD_TOO_LARGE")
    payload = from_json(response.body)

    assert response.status_code == 413
    assert payload["success"] is False
    assert payload["code"] == 413
    assert payload["message"] == "too big"
    assert payload["error_code"] == "PAYLOAD_TOO_LARGE"
    assert payload["data"] is None
    assert isinstance(payload["timestamp"], str)


@pytest.mark.parametrize("exc, status, error_code", [
    (PayloadTooLargeException(1024, received=2048), 413, "PAYLOAD_TOO_LARGE"),
    (MalformedBodyException("bad json"), 400, "MALFORMED_BODY"),
    (RequestTimeoutException(60), 504, "REQUEST_TIMEOUT"),
    (HTTPException(status_code=404, detail="Not Found"), 404, None),
    (ValueError("secret internals"), 500, "INTERNAL_ERROR"),
])
@pytest.mark.asyncio
async def test_handle_exception_maps_status(exc, status, error_code):
    response = await handle_exception(make_request(), exc)
    payload = from_json(response.body)

    assert response.status_code == status
    assert payload["error_code"] == error_code
    assert "secret internals" not in payload["message"]


def test_bind_error_message():
    error = ServerBindError("0.0.0.0", 3000, "Address already in use")

    assert isinstance(error, OSError)
    assert "0.0.0.0:3000" in str(error)
    assert error.port == 3000
