"""Shared fixtures for the report client tests."""

from __future__ import annotations

import typing as typ

import dramatiq
import pytest
from dramatiq.brokers.stub import StubBroker

from jasper_client.polling import RetryPolicy
from tests.helpers.fake_server import FakeJasperServer

if typ.TYPE_CHECKING:
    from pathlib import Path

# Actors bind to the global broker at import time.
dramatiq.set_broker(StubBroker())


@pytest.fixture
def server() -> FakeJasperServer:
    """Return a fake JasperServer with one ready execution."""
    return FakeJasperServer()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Return a retry policy that does not wait between polls."""
    return RetryPolicy(interval_s=0, max_attempts=5)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Return a temporary report cache root."""
    return tmp_path / "report_cache"
