"""Request body parsing stages.

Both stages enforce the body size ceiling before the route tree sees the
request. The parsed value is exposed as `request.state.body` and the raw bytes
are replayed downstream, so FastAPI's own body handling still works.
"""
from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect

from apphost.core.exceptions import (
    MalformedBodyException,
    PayloadTooLargeException,
    SerializationError,
)
from apphost.utils.forms import count_parameters, parse_form
from apphost.utils.serialization import from_json

DEFAULT_BODY_LIMIT = 50 * 1024 * 1024


def _media_type(headers: Headers) -> str:
    content_type = headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower()


class BodyParserMiddleware:
    """Reads and decodes bodies of a given media type, bounded by `limit` bytes."""

    def __init__(self, app, limit: int = DEFAULT_BODY_LIMIT):
        self.app = app
        self.limit = limit

    def matches(self, media_type: str) -> bool:
        raise NotImplementedError

    def parse(self, body: bytes):
        raise NotImplementedError

    def empty_value(self):
        return {}

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        if not self.matches(_media_type(headers)):
            await self.app(scope, receive, send)
            return

        self._check_declared_length(headers)
        body = await self._read_body(receive)
        parsed = self.parse(body) if body else self.empty_value()
        scope.setdefault("state", {})["body"] = parsed

        await self.app(scope, self._replay(body, receive), send)

    def _check_declared_length(self, headers: Headers) -> None:
        declared = headers.get("content-length")
        if declared is None:
            return
        try:
            length = int(declared)
        except ValueError:
            raise MalformedBodyException("Invalid Content-Length header")
        if length > self.limit:
            raise PayloadTooLargeException(self.limit, received=length)

    async def _read_body(self, receive) -> bytes:
        chunks = []
        received = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                raise ClientDisconnect()
            chunk = message.get("body", b"")
            received += len(chunk)
            # chunked uploads carry no Content-Length, so count as we go
            if received > self.limit:
                raise PayloadTooLargeException(self.limit, received=received)
            chunks.append(chunk)
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    @staticmethod
    def _replay(body: bytes, receive):
        consumed = False

        async def replay_receive():
            nonlocal consumed
            if not consumed:
                consumed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay_receive


class JSONBodyParserMiddleware(BodyParserMiddleware):
    """Parses `application/json` bodies.

    In strict mode only objects and arrays are accepted at the top level.
    """

    def __init__(self, app, limit: int = DEFAULT_BODY_LIMIT, strict: bool = True):
        super().__init__(app, limit)
        self.strict = strict

    def matches(self, media_type: str) -> bool:
        return media_type == "application/json" or (
            media_type.startswith("application/") and media_type.endswith("+json")
        )

    def parse(self, body: bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedBodyException("JSON body is not valid UTF-8")

        stripped = text.lstrip()
        if not stripped:
            return self.empty_value()
        if self.strict and stripped[0] not in "{[":
            raise MalformedBodyException(f"Unexpected token {stripped[0]!r} in JSON at position 0")

        try:
            return from_json(text)
        except SerializationError as e:
            raise MalformedBodyException(f"Malformed JSON body: {e.__cause__ or e}")


class FormBodyParserMiddleware(BodyParserMiddleware):
    """Parses `application/x-www-form-urlencoded` bodies with nested keys."""

    def __init__(
        self,
        app,
        limit: int = DEFAULT_BODY_LIMIT,
        parameter_limit: int = 1000,
        extended: bool = True,
    ):
        super().__init__(app, limit)
        self.parameter_limit = parameter_limit
        self.extended = extended

    def matches(self, media_type: str) -> bool:
        return media_type == "application/x-www-form-urlencoded"

    def parse(self, body: bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedBodyException("Form body is not valid UTF-8")

        if count_parameters(text) > self.parameter_limit:
            raise PayloadTooLargeException(
                self.limit,
                error_code="PARAMETER_LIMIT_EXCEEDED",
                detail=f"Too many parameters. Maximum: {self.parameter_limit}",
            )

        try:
            return parse_form(text, nested=self.extended)
        except UnicodeDecodeError:
            raise MalformedBodyException("Form body contains invalid percent-encoding")
