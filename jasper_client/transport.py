"""HTTP transport for the JasperServer REST API.

The rest of the client talks to the server through the :class:`Transport`
protocol, so tests can substitute an ``httpx.MockTransport``-backed
:class:`HttpxTransport` or any other implementation.
"""

from __future__ import annotations

import dataclasses as dc
import re
import typing as typ

import httpx

from jasper_client.errors import TransportError, ValidationError
from jasper_client.logging import get_logger, log_debug

logger = get_logger(__name__)

SESSION_COOKIE = "JSESSIONID"
XML_CONTENT_TYPE = "application/xml"

_HTTP_ERROR_STATUS_THRESHOLD = 400
_REPEATED_SLASHES = re.compile(r"/{2,}")


def normalize_path(path: str) -> str:
    """Collapse repeated slashes and strip a trailing slash.

    >>> normalize_path("//a///b//")
    '/a/b'
    >>> normalize_path("")
    '/'
    """
    route, sep, query = path.partition("?")
    collapsed = _REPEATED_SLASHES.sub("/", route)
    if collapsed.endswith("/"):
        collapsed = collapsed[:-1]
    return (collapsed or "/") + sep + query


def require_server_relative(path: str) -> str:
    """Return ``path`` if it can only address the configured server.

    Paths must start with a single slash and carry no scheme or authority,
    otherwise joining them onto the base URL could redirect the request to
    another host (e.g. ``@evil.test/x`` or ``//evil.test/x``).

    Raises
    ------
    ValidationError
        If the path is not server-relative.

    """
    route = path.partition("?")[0]
    if not route.startswith("/") or route.startswith("//") or "\\" in route:
        raise ValidationError.unsafe_path(path)
    try:
        parsed = httpx.URL(path)
    except httpx.InvalidURL as exc:
        raise ValidationError.unsafe_path(path) from exc
    if parsed.scheme or parsed.host:
        raise ValidationError.unsafe_path(path)
    return path


@dc.dataclass(frozen=True, slots=True)
class RestResponse:
    """Body and error flag of one REST call."""

    body: bytes
    error: bool
    status_code: int
    session_id: str | None = None

    @property
    def text(self) -> str:
        """Return the body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")


class Transport(typ.Protocol):
    """Capability consumed by the execution coordinator and client."""

    @property
    def session_id(self) -> str | None:
        """Return the current JasperServer session identifier."""
        ...

    async def get(self, path: str, *, return_errors: bool = False) -> RestResponse:
        """Issue a GET request against a server-relative path."""
        ...

    async def post(
        self,
        path: str,
        body: str | bytes | None = None,
        *,
        content_type: str | None = None,
        accept: str | None = None,
    ) -> RestResponse:
        """Issue a POST request against a server-relative path."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...


class HttpxTransport:
    """httpx implementation of :class:`Transport`.

    Session cookies set by the server (``JSESSIONID``) are kept by the
    underlying client and reused for every subsequent call.
    """

    def __init__(
        self,
        host: str,
        *,
        session_id: str | None = None,
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the transport for ``host``.

        Parameters
        ----------
        host
            Base URL of the server, e.g. ``http://reports:8080``.
        session_id
            Existing session identifier to install as a cookie.
        timeout_s
            Request timeout used when the transport owns its client.
        http_client
            Optional pre-built client, mainly for tests.

        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._base_url = host.rstrip("/")
        self._session_id = session_id
        if session_id:
            self._client.cookies.set(SESSION_COOKIE, session_id)

    @property
    def session_id(self) -> str | None:
        """Return the last session cookie issued or installed."""
        return self._session_id

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def get(self, path: str, *, return_errors: bool = False) -> RestResponse:
        """Issue a GET request.

        With ``return_errors`` a non-2xx response is returned with
        ``error=True`` instead of raising :class:`TransportError`.
        """
        return await self._send("GET", path, return_errors=return_errors)

    async def post(
        self,
        path: str,
        body: str | bytes | None = None,
        *,
        content_type: str | None = None,
        accept: str | None = None,
    ) -> RestResponse:
        """Issue a POST request with an optional body."""
        headers: dict[str, str] = {}
        if content_type is not None:
            headers["Content-Type"] = content_type
        if accept is not None:
            headers["Accept"] = accept
        content = body.encode("utf-8") if isinstance(body, str) else body
        return await self._send("POST", path, content=content, headers=headers)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        return_errors: bool = False,
    ) -> RestResponse:
        require_server_relative(path)
        url = f"{self._base_url}{path}"
        log_debug(logger, "%s %s", method, path)
        try:
            response = await self._client.request(
                method, url, content=content, headers=headers
            )
        except httpx.HTTPError as exc:
            raise TransportError.connection_failed(path, exc) from exc

        issued = response.cookies.get(SESSION_COOKIE)
        if issued:
            self._session_id = issued

        error = response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD
        if error and not return_errors:
            raise TransportError.http_error(path, response.status_code)
        return RestResponse(
            body=response.content,
            error=error,
            status_code=response.status_code,
            session_id=self.session_id,
        )


__all__ = [
    "HttpxTransport",
    "RestResponse",
    "Transport",
    "normalize_path",
    "require_server_relative",
]
