"""Application factory for the report cache Falcon ASGI app.

Usage
-----
>>> from jasper_client.api.app import AppDependencies, create_app
>>> app = create_app(AppDependencies(cache=client.cache, client=client))

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from jasper_client.api.errors import (
    CachedArtifactNotFoundError,
    InvalidInputError,
    handle_artifact_not_found,
    handle_invalid_input,
    handle_transport_error,
)
from jasper_client.api.resources import (
    AssetProxyResource,
    CachedImageResource,
    CachedPageResource,
    HealthResource,
)
from jasper_client.errors import TransportError

if typ.TYPE_CHECKING:
    from jasper_client.cache import ReportCache
    from jasper_client.client import JasperClient

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Collaborators for the ASGI app.

    Attributes
    ----------
    cache
        Report cache whose published entries are served.
    client
        Client used by the asset proxy. When ``None`` the ``/assets``
        route is not registered.

    """

    cache: ReportCache
    client: JasperClient | None = None


def create_app(dependencies: AppDependencies | None = None) -> falcon.asgi.App:
    """Create the Falcon ASGI application.

    Without dependencies only ``/health`` is served.
    """
    app = falcon.asgi.App()
    app.add_route("/health", HealthResource())

    if dependencies is not None:
        app.add_route(
            "/reports/{request_id}/pages/{page:int}",
            CachedPageResource(dependencies.cache),
        )
        app.add_route(
            "/reports/{request_id}/images/{name}",
            CachedImageResource(dependencies.cache),
        )
        if dependencies.client is not None:
            app.add_route("/assets", AssetProxyResource(dependencies.client))

    app.add_error_handler(CachedArtifactNotFoundError, handle_artifact_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(TransportError, handle_transport_error)
    return app
