"""Unit tests for the execution coordinator."""

from __future__ import annotations

import asyncio
from xml.etree import ElementTree

import pytest

from jasper_client.errors import (
    PollTimeoutError,
    RemoteExecutionError,
    ValidationError,
)
from jasper_client.execution import ExecutionCoordinator, execution_path
from jasper_client.models import ExecutionHandle, ExecutionOptions, ExecutionStatus
from jasper_client.observers import ObserverRegistry
from jasper_client.polling import RetryPolicy
from tests.helpers.fake_server import REQUEST_ID, FakeJasperServer, make_transport


def _coordinator(
    server: FakeJasperServer,
    policy: RetryPolicy,
    observers: ObserverRegistry | None = None,
) -> ExecutionCoordinator:
    return ExecutionCoordinator(
        make_transport(server), policy=policy, observers=observers
    )


def _handle(status: ExecutionStatus = ExecutionStatus.RUNNING) -> ExecutionHandle:
    return ExecutionHandle(request_id=REQUEST_ID, resource="/reports/sample", status=status)


class TestExecutionPath:
    """Tests for execution URL construction."""

    def test_joins_and_normalizes(self) -> None:
        """Parts are joined under the request id without duplicate slashes."""
        assert execution_path("abc123", "exports", "/x/", "status") == (
            "/jasperserver/rest_v2/reportExecutions/abc123/exports/x/status"
        )


class TestStart:
    """Tests for starting executions."""

    def test_returns_handle(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """The handle carries the server request id and status."""
        handle = asyncio.run(
            _coordinator(server, fast_policy).start("/reports/sample")
        )

        assert handle.request_id == REQUEST_ID
        assert handle.status is ExecutionStatus.RUNNING
        sent = ElementTree.fromstring(server.requests[0].content)
        assert sent.findtext("reportUnitUri") == "/reports/sample"

    def test_validation_sends_nothing(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """An empty resource fails before any request is issued."""
        with pytest.raises(ValidationError):
            asyncio.run(_coordinator(server, fast_policy).start(""))

        assert server.requests == []

    def test_missing_request_id_is_remote_error(
        self, fast_policy: RetryPolicy
    ) -> None:
        """A response without a request id carries the server message."""
        server = FakeJasperServer(request_id=None)

        with pytest.raises(RemoteExecutionError) as excinfo:
            asyncio.run(_coordinator(server, fast_policy).start("/reports/sample"))

        assert excinfo.value.server_message == "Report parameter missing"

    def test_observers_run_in_order(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """Sync and async observers are called in registration order."""
        calls: list[str] = []

        class SyncObserver:
            def post_report_execution(self, resource, options, response) -> None:  # noqa: ANN001
                calls.append(f"sync:{resource}")

        class AsyncObserver:
            async def post_report_execution(self, resource, options, response) -> None:  # noqa: ANN001
                calls.append(f"async:{response.findtext('requestId')}")

        registry = ObserverRegistry(execution=[SyncObserver()])
        registry.add_execution_observer(AsyncObserver())

        asyncio.run(_coordinator(server, fast_policy, registry).start("/reports/sample"))

        assert calls == ["sync:/reports/sample", f"async:{REQUEST_ID}"]

    def test_observer_errors_propagate(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """A failing observer stops later observers and reaches the caller."""
        calls: list[str] = []

        class Failing:
            def post_report_execution(self, resource, options, response) -> None:  # noqa: ANN001
                raise RuntimeError("observer failed")

        class Later:
            def post_report_execution(self, resource, options, response) -> None:  # noqa: ANN001
                calls.append("later")

        registry = ObserverRegistry(execution=[Failing(), Later()])

        with pytest.raises(RuntimeError, match="observer failed"):
            asyncio.run(
                _coordinator(server, fast_policy, registry).start("/reports/sample")
            )

        assert calls == []


class TestAwaitReady:
    """Tests for execution polling."""

    def test_polls_until_ready(self, fast_policy: RetryPolicy) -> None:
        """Two running answers then ready means three status polls."""
        server = FakeJasperServer(execution_statuses=["execution", "queued", "ready"])

        polls = asyncio.run(_coordinator(server, fast_policy).await_ready(_handle()))

        assert polls == 3
        assert server.status_polls() == 3

    def test_unknown_status_keeps_polling(self, fast_policy: RetryPolicy) -> None:
        """Unrecognised states count as not ready."""
        server = FakeJasperServer(execution_statuses=["mystery", "ready"])

        polls = asyncio.run(_coordinator(server, fast_policy).await_ready(_handle()))

        assert polls == 2

    def test_timeout(self) -> None:
        """An execution that never becomes ready times out."""
        server = FakeJasperServer(execution_statuses=["execution"])
        policy = RetryPolicy(interval_s=0, max_attempts=3)

        with pytest.raises(PollTimeoutError):
            asyncio.run(_coordinator(server, policy).await_ready(_handle()))

        assert server.status_polls() == 3

    @pytest.mark.parametrize("status", ["failed", "cancelled"])
    def test_terminal_failure_stops_polling(
        self, status: str, fast_policy: RetryPolicy
    ) -> None:
        """Failed or cancelled executions raise immediately."""
        server = FakeJasperServer(execution_statuses=[status])

        with pytest.raises(RemoteExecutionError):
            asyncio.run(_coordinator(server, fast_policy).await_ready(_handle()))

        assert server.status_polls() == 1

    def test_failure_reports_server_message(self, fast_policy: RetryPolicy) -> None:
        """A nested failure document ends polling with the server's message."""
        server = FakeJasperServer(
            execution_statuses=["execution", "failed"],
            failure_message="Query timed out",
        )

        with pytest.raises(RemoteExecutionError) as excinfo:
            asyncio.run(_coordinator(server, fast_policy).await_ready(_handle()))

        assert excinfo.value.server_message == "Query timed out"
        assert server.status_polls() == 2, "failure should stop polling at once"


class TestExport:
    """Tests for export sub-jobs."""

    def test_export_waits_and_fetches(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """A queued export is polled, then its output is fetched."""
        server.export_statuses = ["queued", "ready"]

        output = asyncio.run(
            _coordinator(server, fast_policy).export(_handle(ExecutionStatus.READY), "pdf")
        )

        assert output.body == b"%PDF-1.4 fake"
        assert output.export_id == "pdf-export"
        export_polls = [p for p in server.paths() if p.endswith("pdf-export/status")]
        assert len(export_polls) == 2

    def test_ready_export_is_not_polled(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """Exports already ready at start are fetched directly."""
        server.export_start_status = "ready"

        asyncio.run(
            _coordinator(server, fast_policy).export(_handle(ExecutionStatus.READY), "pdf")
        )

        assert not [p for p in server.paths() if "/exports/pdf-export/status" in p]

    def test_prefix_dropped_for_non_html(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """attachmentsPrefix is only sent with HTML exports."""
        coordinator = _coordinator(server, fast_policy)
        handle = _handle(ExecutionStatus.READY)

        async def run() -> None:
            await coordinator.start_export(handle, "pdf", {"attachmentsPrefix": "p/"})
            await coordinator.start_export(handle, "html", {"attachmentsPrefix": "p/"})

        asyncio.run(run())

        pdf, html = (ElementTree.fromstring(r.content) for r in server.requests)
        assert pdf.find("attachmentsPrefix") is None
        assert html.findtext("attachmentsPrefix") == "p/"

    def test_error_output_raises(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """An error body from outputResource is raised with its message."""
        server.outputs = {}

        with pytest.raises(RemoteExecutionError) as excinfo:
            asyncio.run(
                _coordinator(server, fast_policy).export(
                    _handle(ExecutionStatus.READY), "xls"
                )
            )

        assert excinfo.value.server_message == "export failed"

    def test_failed_export_reports_server_message(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """An export whose status fails raises instead of timing out."""
        server.export_statuses = ["failed"]
        server.failure_message = "Out of memory"

        with pytest.raises(RemoteExecutionError) as excinfo:
            asyncio.run(
                _coordinator(server, fast_policy).export(
                    _handle(ExecutionStatus.READY), "pdf"
                )
            )

        assert excinfo.value.server_message == "Out of memory"
        assert not [p for p in server.paths() if p.endswith("outputResource")]

    def test_options_round_trip_through_start(
        self, server: FakeJasperServer, fast_policy: RetryPolicy
    ) -> None:
        """Execution options reach the request body."""
        asyncio.run(
            _coordinator(server, fast_policy).start(
                "/reports/sample",
                ExecutionOptions(output_format="pdf", parameters={"year": "2024"}),
            )
        )

        sent = ElementTree.fromstring(server.requests[0].content)
        assert sent.findtext("outputFormat") == "pdf"
        assert sent.findtext("parameters/reportParameter/value") == "2024"
