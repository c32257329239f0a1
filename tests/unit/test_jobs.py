"""Unit tests for the report caching Dramatiq actor."""

from __future__ import annotations

import typing as typ

import dramatiq
import pytest
from dramatiq.brokers.stub import StubBroker

from jasper_client import jobs
from tests.helpers.fake_server import REQUEST_ID, FakeJasperServer, make_client

if typ.TYPE_CHECKING:
    from pathlib import Path

    from jasper_client.client import JasperClient
    from jasper_client.config import JasperClientConfig


@pytest.fixture
def fake_connect(
    monkeypatch: pytest.MonkeyPatch, server: FakeJasperServer, cache_dir: Path
) -> list[JasperClientConfig]:
    """Route the actor's client construction to the fake server."""
    seen: list[JasperClientConfig] = []

    async def connect(config: JasperClientConfig) -> JasperClient:
        seen.append(config)
        return make_client(server, cache_dir)

    monkeypatch.setenv("JASPER_HOST", "http://jasper.example.com")
    monkeypatch.setattr(jobs, "_connect", connect)
    monkeypatch.setattr(jobs, "_logging_configured", True)
    return seen


class TestCacheReportJob:
    """Tests for ``cache_report_job``."""

    def test_runs_and_caches(
        self,
        fake_connect: list[JasperClientConfig],
        server: FakeJasperServer,
        cache_dir: Path,
    ) -> None:
        """The actor runs the report with its parameters and caches it."""
        request_id = jobs.cache_report_job(
            "/reports/sample", formats=["pdf"], parameters={"year": ["2024"]}
        )

        assert request_id == REQUEST_ID
        assert fake_connect[0].host == "http://jasper.example.com"
        assert (cache_dir / "12" / "34" / "56" / REQUEST_ID / "export.pdf").is_file()
        assert b"<value>2024</value>" in server.requests[0].content

    def test_enqueues_on_stub_broker(self) -> None:
        """Sending the actor enqueues a message on the configured broker."""
        broker = dramatiq.get_broker()
        assert isinstance(broker, StubBroker)

        message = jobs.cache_report_job.send("/reports/sample", formats=["pdf"])

        assert message.kwargs == {"formats": ["pdf"]}
        assert broker.queues[jobs.cache_report_job.queue_name].qsize() >= 1

    def test_actor_is_bound_to_module_broker(self) -> None:
        """The actor uses the broker chosen when the module was imported."""
        assert jobs.cache_report_job.broker is jobs.broker

    def test_applies_log_level_once(
        self,
        fake_connect: list[JasperClientConfig],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """JASPER_LOG_LEVEL configures logging on the first job only."""
        levels: list[str | None] = []

        def configure(level: str | None) -> tuple[str, bool]:
            levels.append(level)
            return ("DEBUG", False)

        monkeypatch.setenv("JASPER_LOG_LEVEL", "debug")
        monkeypatch.setattr(jobs, "_logging_configured", False)
        monkeypatch.setattr(jobs, "configure_logging", configure)

        jobs.cache_report_job("/reports/sample", formats=["pdf"])
        jobs.cache_report_job("/reports/sample", formats=["pdf"])

        assert levels == ["debug"]
        assert len(fake_connect) == 2


class TestEnsureBrokerConfigured:
    """Tests for broker selection."""

    @pytest.fixture
    def no_broker(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Clear the global broker outside a test run."""
        monkeypatch.setattr("dramatiq.broker.global_broker", None)
        monkeypatch.setattr(jobs, "_broker_configured", False)
        monkeypatch.setattr(jobs, "_is_running_tests", lambda: False)
        monkeypatch.delenv("JASPER_BROKER_URL", raising=False)
        monkeypatch.delenv("JASPER_ALLOW_STUB_BROKER", raising=False)

    def test_keeps_existing_broker(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An already configured broker is left in place."""
        monkeypatch.setattr(jobs, "_broker_configured", False)
        broker = dramatiq.get_broker()

        assert jobs.ensure_broker_configured() is broker
        assert dramatiq.get_broker() is broker
        assert jobs._broker_configured is True

    @pytest.mark.usefixtures("no_broker")
    def test_flag_installs_stub_broker(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """JASPER_ALLOW_STUB_BROKER selects a StubBroker when none is set."""
        monkeypatch.setenv("JASPER_ALLOW_STUB_BROKER", "yes")

        broker = jobs.ensure_broker_configured()

        assert isinstance(broker, StubBroker)
        assert dramatiq.get_broker() is broker

    @pytest.mark.usefixtures("no_broker")
    def test_broker_url_selects_rabbitmq(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """JASPER_BROKER_URL configures a RabbitMQ broker for that URL."""
        urls: list[str] = []

        class FakeRabbitmqBroker(StubBroker):
            def __init__(self, *, url: str) -> None:
                super().__init__()
                urls.append(url)

        monkeypatch.setenv("JASPER_BROKER_URL", "amqp://rabbit:5672")
        monkeypatch.setenv("JASPER_ALLOW_STUB_BROKER", "1")
        monkeypatch.setattr(jobs, "RabbitmqBroker", FakeRabbitmqBroker)

        broker = jobs.ensure_broker_configured()

        assert isinstance(broker, FakeRabbitmqBroker)
        assert urls == ["amqp://rabbit:5672"], "broker URL should win over stubs"

    @pytest.mark.usefixtures("no_broker")
    def test_missing_broker_raises(self) -> None:
        """Without a broker, URL or stub permission the worker cannot start."""
        with pytest.raises(RuntimeError, match="JASPER_BROKER_URL"):
            jobs.ensure_broker_configured()

        assert jobs._broker_configured is False
