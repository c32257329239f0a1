"""Unit tests for the httpx transport."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from jasper_client.errors import TransportError, ValidationError
from jasper_client.transport import (
    HttpxTransport,
    normalize_path,
    require_server_relative,
)

_HOST = "http://jasper.example.com"
_SERVER_ERROR = 500


def _transport(
    handler: httpx.MockTransport | None = None,
    *,
    status: int = 200,
    session_id: str | None = None,
) -> tuple[HttpxTransport, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            status,
            content=b"<ok/>",
            headers={"Set-Cookie": "JSESSIONID=ISSUED"} if status < 400 else {},
        )

    mock = handler or httpx.MockTransport(_handler)
    transport = HttpxTransport(
        _HOST,
        session_id=session_id,
        http_client=httpx.AsyncClient(transport=mock),
    )
    return transport, seen


class TestNormalizePath:
    """Tests for path normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("//a///b//", "/a/b"),
            ("/jasperserver/rest/resources//reports/", "/jasperserver/rest/resources/reports"),
            ("", "/"),
            ("/", "/"),
            ("/a//b/?x=1//2", "/a/b?x=1//2"),
        ],
    )
    def test_collapses_slashes(self, raw: str, expected: str) -> None:
        """Repeated and trailing slashes are removed; queries are kept."""
        assert normalize_path(raw) == expected


class TestRequireServerRelative:
    """Tests for rejecting paths that could address another host."""

    @pytest.mark.parametrize(
        "path",
        ["/jasperserver/images/logo.png", "/x?next=http://other/", "/@home"],
    )
    def test_accepts_server_paths(self, path: str) -> None:
        """Absolute paths without an authority are returned unchanged."""
        assert require_server_relative(path) == path

    @pytest.mark.parametrize(
        "path",
        [
            "@evil.test/steal",
            "//evil.test/steal",
            "http://evil.test/steal",
            "/\\evil.test/steal",
            "relative/path",
            "",
        ],
    )
    def test_rejects_other_hosts(self, path: str) -> None:
        """Paths that would change the request host are validation errors."""
        with pytest.raises(ValidationError, match="relative to the report server"):
            require_server_relative(path)


class TestHttpxTransport:
    """Tests for request dispatch and error mapping."""

    def test_get_returns_body_and_tracks_session(self) -> None:
        """Successful calls return the body and remember the issued cookie."""
        transport, seen = _transport()

        response = asyncio.run(transport.get("/jasperserver/rest_v2/serverInfo"))

        assert response.body == b"<ok/>"
        assert response.error is False
        assert transport.session_id == "ISSUED", "session cookie should be kept"
        assert str(seen[0].url) == f"{_HOST}/jasperserver/rest_v2/serverInfo"

    def test_installed_session_is_sent(self) -> None:
        """A configured session id is sent as the JSESSIONID cookie."""
        transport, seen = _transport(session_id="EXISTING")

        asyncio.run(transport.get("/x"))

        assert "JSESSIONID=EXISTING" in seen[0].headers.get("cookie", "")

    def test_post_sets_xml_headers(self) -> None:
        """POST forwards content type, accept and body."""
        transport, seen = _transport()

        asyncio.run(
            transport.post(
                "/x", "<a/>", content_type="application/xml", accept="application/xml"
            )
        )

        request = seen[0]
        assert request.method == "POST"
        assert request.content == b"<a/>"
        assert request.headers["Content-Type"] == "application/xml"
        assert request.headers["Accept"] == "application/xml"

    def test_http_errors_raise(self) -> None:
        """Non-2xx responses raise TransportError with the status."""
        transport, _ = _transport(status=_SERVER_ERROR)

        with pytest.raises(TransportError) as excinfo:
            asyncio.run(transport.get("/broken"))

        assert excinfo.value.status_code == _SERVER_ERROR
        assert excinfo.value.path == "/broken"

    def test_return_errors_flags_response(self) -> None:
        """With return_errors the error body is returned instead."""
        transport, _ = _transport(status=_SERVER_ERROR)

        response = asyncio.run(transport.get("/broken", return_errors=True))

        assert response.error is True
        assert response.status_code == _SERVER_ERROR

    def test_connection_failures_are_wrapped(self) -> None:
        """Network errors surface as TransportError without a status."""

        def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        transport, _ = _transport(httpx.MockTransport(_handler))

        with pytest.raises(TransportError, match="refused") as excinfo:
            asyncio.run(transport.get("/x"))

        assert excinfo.value.status_code is None

    def test_rejects_paths_for_other_hosts(self) -> None:
        """A path carrying an authority never reaches the HTTP client."""
        transport, seen = _transport()

        with pytest.raises(ValidationError):
            asyncio.run(transport.get("@evil.test/steal"))

        assert seen == [], "request should not be sent"
