"""HTTP surface for cached reports and the server asset proxy."""

from __future__ import annotations

from jasper_client.api.app import AppDependencies, create_app

__all__ = ["AppDependencies", "create_app"]
