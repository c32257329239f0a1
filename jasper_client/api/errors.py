"""API exceptions and the Falcon handlers that map them to responses."""

from __future__ import annotations

import typing as typ

import falcon

from jasper_client.errors import TransportError

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

__all__ = [
    "CachedArtifactNotFoundError",
    "InvalidInputError",
    "handle_artifact_not_found",
    "handle_invalid_input",
    "handle_transport_error",
]


class CachedArtifactNotFoundError(Exception):
    """Raised when a cached report page or attachment does not exist."""

    def __init__(self, request_id: str, artifact: str) -> None:
        """Initialise with the request id and the missing artifact."""
        self.request_id = request_id
        self.artifact = artifact
        super().__init__(f"No cached {artifact} for report execution {request_id}.")


class InvalidInputError(Exception):
    """Raised for client input that should map to HTTP 400."""

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialise with a reason and the offending field."""
        self.reason = reason
        self.field = field
        super().__init__(f"{field}: {reason}" if field is not None else reason)


async def handle_artifact_not_found(
    _req: Request,
    resp: Response,
    ex: CachedArtifactNotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map :class:`CachedArtifactNotFoundError` to HTTP 404."""
    resp.status = falcon.HTTP_404
    resp.media = {"title": "Not cached", "description": str(ex)}


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map :class:`InvalidInputError` to HTTP 400."""
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {"title": "Invalid input", "description": ex.reason}
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media


async def handle_transport_error(
    _req: Request,
    resp: Response,
    ex: TransportError,
    _params: dict[str, typ.Any],
) -> None:
    """Map upstream :class:`TransportError` failures to HTTP 502."""
    resp.status = falcon.HTTP_502
    resp.media = {"title": "Report server unavailable", "description": str(ex)}
