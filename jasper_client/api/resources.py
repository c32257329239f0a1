"""Falcon resources serving cached reports and proxied server assets.

Routes
------
``GET /health``
    Liveness probe.
``GET /reports/{request_id}/pages/{page}``
    One cached HTML page.
``GET /reports/{request_id}/images/{name}``
    One cached attachment.
``GET /assets?uri=...``
    Asset fetched from the report server with the client's session; the
    target of proxy-mode link rewriting.
"""

from __future__ import annotations

import asyncio
import mimetypes
import typing as typ
from http import HTTPStatus

from jasper_client.api.errors import CachedArtifactNotFoundError, InvalidInputError
from jasper_client.errors import ValidationError

if typ.TYPE_CHECKING:
    from pathlib import Path

    from falcon.asgi import Request, Response

    from jasper_client.cache import ReportCache
    from jasper_client.client import JasperClient

__all__ = [
    "AssetProxyResource",
    "CachedImageResource",
    "CachedPageResource",
    "HealthResource",
]

_FALLBACK_CONTENT_TYPE = "application/octet-stream"


class HealthResource:
    """Liveness probe returning ``{"status": "ok"}``."""

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /health."""
        resp.media = {"status": "ok"}
        resp.status = HTTPStatus.OK


async def _read_cached(
    cache: ReportCache, request_id: str, path_of: typ.Callable[[], Path], artifact: str
) -> bytes:
    try:
        cached = cache.is_cached(request_id)
    except ValidationError as exc:
        raise InvalidInputError(str(exc), field="request_id") from exc
    path = path_of()
    if not cached or not path.is_file():
        raise CachedArtifactNotFoundError(request_id, artifact)
    return await asyncio.to_thread(path.read_bytes)


class CachedPageResource:
    """Serve ``html_page_{n}.html`` from a published cache entry."""

    def __init__(self, cache: ReportCache) -> None:
        """Bind the resource to the report cache."""
        self._cache = cache

    async def on_get(
        self, _req: Request, resp: Response, request_id: str, page: int
    ) -> None:
        """Handle GET /reports/{request_id}/pages/{page}."""
        if page < 1:
            raise InvalidInputError("page numbers start at 1", field="page")
        body = await _read_cached(
            self._cache,
            request_id,
            lambda: self._cache.page_path(request_id, page),
            f"page {page}",
        )
        resp.content_type = "text/html; charset=utf-8"
        resp.data = body
        resp.status = HTTPStatus.OK


class CachedImageResource:
    """Serve an attachment stored under ``images/``."""

    def __init__(self, cache: ReportCache) -> None:
        """Bind the resource to the report cache."""
        self._cache = cache

    async def on_get(
        self, _req: Request, resp: Response, request_id: str, name: str
    ) -> None:
        """Handle GET /reports/{request_id}/images/{name}."""
        body = await _read_cached(
            self._cache,
            request_id,
            lambda: self._cache.attachment_path(request_id, name),
            f"image {name}",
        )
        resp.content_type = mimetypes.guess_type(name)[0] or _FALLBACK_CONTENT_TYPE
        resp.data = body
        resp.status = HTTPStatus.OK


class AssetProxyResource:
    """Fetch a server asset on behalf of a browser."""

    def __init__(self, client: JasperClient) -> None:
        """Bind the resource to a logged-in client."""
        self._client = client

    async def on_get(self, req: Request, resp: Response) -> None:
        """Handle GET /assets?uri=..."""
        uri = req.get_param("uri")
        if not uri:
            raise InvalidInputError("query parameter is required", field="uri")
        try:
            body = await self._client.get_report_asset(uri)
        except ValidationError as exc:
            raise InvalidInputError(str(exc), field="uri") from exc
        resp.content_type = mimetypes.guess_type(uri)[0] or _FALLBACK_CONTENT_TYPE
        resp.data = body
        resp.status = HTTPStatus.OK
