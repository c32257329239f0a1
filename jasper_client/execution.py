"""Drive report executions and exports through their remote lifecycle.

A report run moves through these steps::

    start ──► poll (not ready, repeat) ──► ready
                                            │
              for each format: start export ─► poll ─► fetch output

Polling is bounded by a :class:`~jasper_client.polling.RetryPolicy`;
transport failures are never retried here and propagate unchanged.

Usage
-----
>>> coordinator = ExecutionCoordinator(transport)
>>> handle = await coordinator.start("/reports/sample", ExecutionOptions())
>>> await coordinator.await_ready(handle)
>>> output = await coordinator.export(handle, "pdf")

"""

from __future__ import annotations

import collections.abc as cabc
import typing as typ

from jasper_client.codec import (
    Field,
    build_execution_request,
    build_export_request,
    extract_error_message,
    extract_field,
    extract_status,
    parse_document,
)
from jasper_client.errors import RemoteExecutionError, ResponseParseError
from jasper_client.models import (
    ExecutionHandle,
    ExecutionOptions,
    ExecutionStatus,
    ExportHandle,
    ExportOutput,
    OutputFormat,
)
from jasper_client.observability import ExecutionEventLogger
from jasper_client.observers import ObserverRegistry
from jasper_client.polling import CancellationToken, RetryPolicy, poll_until_ready
from jasper_client.transport import XML_CONTENT_TYPE, normalize_path

if typ.TYPE_CHECKING:
    from xml.etree import ElementTree

    from jasper_client.transport import Transport

EXECUTIONS_PATH = "/jasperserver/rest_v2/reportExecutions"


def execution_path(request_id: str, *parts: str) -> str:
    """Build a normalized ``reportExecutions`` path under ``request_id``."""
    return normalize_path("/".join((EXECUTIONS_PATH, request_id, *parts)))


def _error_message(body: bytes) -> str | None:
    try:
        return extract_error_message(body)
    except ResponseParseError:
        return None


class ExecutionCoordinator:
    """Start executions, poll them, and fetch their exports."""

    def __init__(
        self,
        transport: Transport,
        *,
        policy: RetryPolicy | None = None,
        observers: ObserverRegistry | None = None,
        event_logger: ExecutionEventLogger | None = None,
    ) -> None:
        """Bind the coordinator to a transport and polling policy."""
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._observers = observers or ObserverRegistry()
        self._events = event_logger or ExecutionEventLogger()

    @property
    def observers(self) -> ObserverRegistry:
        """Return the registry notified after each execution start."""
        return self._observers

    async def start(
        self,
        resource: str,
        options: ExecutionOptions | None = None,
    ) -> ExecutionHandle:
        """Send one execution request and return its handle.

        Raises
        ------
        ValidationError
            If the resource or output format is empty; nothing is sent.
        RemoteExecutionError
            If the server response carries no request id.

        """
        opts = options or ExecutionOptions()
        request = build_execution_request(resource, opts)
        response = await self._transport.post(
            normalize_path(EXECUTIONS_PATH),
            request,
            content_type=XML_CONTENT_TYPE,
            accept=XML_CONTENT_TYPE,
        )
        document = parse_document(response.body)
        request_id = extract_field(document, Field.REQUEST_ID)
        if not request_id:
            raise RemoteExecutionError(
                f"execution of {resource}", extract_error_message(document)
            )

        await self._observers.notify_execution(resource, opts, document)
        self._events.log_execution_started(resource=resource, request_id=request_id)
        return ExecutionHandle(
            request_id=request_id,
            resource=resource,
            status=ExecutionStatus.from_server(
                extract_field(document, Field.EXECUTION_STATUS)
            ),
        )

    async def _query_status(self, path: str) -> tuple[ExecutionStatus, bytes]:
        response = await self._transport.get(path)
        raw = extract_status(response.body)
        return ExecutionStatus.from_server(raw), response.body

    async def poll_status(self, handle: ExecutionHandle) -> ExecutionStatus:
        """Query the execution status once."""
        status, _ = await self._query_status(
            execution_path(handle.request_id, "status")
        )
        return status

    async def _await(
        self,
        path: str,
        *,
        subject: str,
        policy: RetryPolicy | None,
        token: CancellationToken | None,
    ) -> int:
        async def check() -> bool:
            status, body = await self._query_status(path)
            if status.is_terminal_failure:
                raise RemoteExecutionError(subject, _error_message(body))
            return status.is_ready

        return await poll_until_ready(
            check, subject=subject, policy=policy or self._policy, token=token
        )

    async def await_ready(
        self,
        handle: ExecutionHandle,
        *,
        policy: RetryPolicy | None = None,
        token: CancellationToken | None = None,
    ) -> int:
        """Poll until the execution is ready and return the number of polls.

        Raises
        ------
        PollTimeoutError
            If the policy's attempt budget is exhausted.
        ExecutionCancelledError
            If ``token`` is cancelled while waiting.
        RemoteExecutionError
            If the server reports the execution failed or was cancelled.

        """
        polls = await self._await(
            execution_path(handle.request_id, "status"),
            subject=f"execution {handle.request_id}",
            policy=policy,
            token=token,
        )
        self._events.log_execution_ready(request_id=handle.request_id, polls=polls)
        return polls

    async def execution_details(self, request_id: str) -> ElementTree.Element:
        """Fetch the ``reportExecution`` details document."""
        response = await self._transport.get(execution_path(request_id))
        return parse_document(response.body)

    async def start_export(
        self,
        handle: ExecutionHandle,
        output_format: str,
        options: cabc.Mapping[str, str | bool] | None = None,
    ) -> ExportHandle:
        """Start one export sub-job for ``output_format``.

        ``attachmentsPrefix`` only applies to HTML and is dropped otherwise.
        """
        fmt = OutputFormat.parse(output_format)
        export_options = dict(options or {})
        if fmt is not OutputFormat.HTML:
            export_options.pop("attachmentsPrefix", None)

        response = await self._transport.post(
            execution_path(handle.request_id, "exports"),
            build_export_request(fmt, export_options),
            content_type=XML_CONTENT_TYPE,
            accept=XML_CONTENT_TYPE,
        )
        document = parse_document(response.body)
        export_id = extract_field(document, Field.EXPORT_ID)
        if not export_id:
            raise RemoteExecutionError(
                f"{fmt} export of {handle.request_id}",
                extract_error_message(document),
            )
        return ExportHandle(
            export_id=export_id,
            output_format=fmt,
            status=ExecutionStatus.from_server(
                extract_field(document, Field.EXPORT_STATUS)
            ),
        )

    async def poll_export_status(
        self, handle: ExecutionHandle, export: ExportHandle
    ) -> ExecutionStatus:
        """Query an export's status once."""
        status, _ = await self._query_status(
            execution_path(handle.request_id, "exports", export.export_id, "status")
        )
        return status

    async def await_export_ready(
        self,
        handle: ExecutionHandle,
        export: ExportHandle,
        *,
        policy: RetryPolicy | None = None,
        token: CancellationToken | None = None,
    ) -> int:
        """Poll until the export is ready and return the number of polls."""
        return await self._await(
            execution_path(handle.request_id, "exports", export.export_id, "status"),
            subject=f"{export.output_format} export {export.export_id}",
            policy=policy,
            token=token,
        )

    async def fetch_export_output(
        self, handle: ExecutionHandle, export: ExportHandle
    ) -> ExportOutput:
        """Fetch an export's rendered bytes together with the error flag."""
        return await self._fetch_output(handle, export.export_id, export.output_format)

    async def fetch_legacy_output(
        self, handle: ExecutionHandle, output_format: str
    ) -> ExportOutput:
        """Fetch output by format on servers without export sub-jobs."""
        fmt = OutputFormat.parse(output_format)
        return await self._fetch_output(handle, fmt.value, fmt)

    async def _fetch_output(
        self,
        handle: ExecutionHandle,
        export_id: str,
        output_format: OutputFormat,
    ) -> ExportOutput:
        response = await self._transport.get(
            execution_path(handle.request_id, "exports", export_id, "outputResource"),
            return_errors=True,
        )
        self._events.log_export_fetched(
            request_id=handle.request_id,
            export_id=export_id,
            output_format=output_format,
            size=len(response.body),
        )
        return ExportOutput(body=response.body, error=response.error, export_id=export_id)

    async def export(
        self,
        handle: ExecutionHandle,
        output_format: str,
        options: cabc.Mapping[str, str | bool] | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> ExportOutput:
        """Start an export, wait for it unless already ready, and fetch it.

        Raises
        ------
        RemoteExecutionError
            If the fetched output is a server error document.

        """
        export = await self.start_export(handle, output_format, options)
        if not export.status.is_ready:
            await self.await_export_ready(handle, export, token=token)
        output = await self.fetch_export_output(handle, export)
        if output.error:
            raise RemoteExecutionError(
                f"{export.output_format} export {export.export_id}",
                _error_message(output.body),
            )
        return output

    async def fetch_attachment(
        self, handle: ExecutionHandle, export_id: str, name: str
    ) -> bytes:
        """Fetch one attachment of an export."""
        response = await self._transport.get(
            execution_path(handle.request_id, "exports", export_id, "attachments", name)
        )
        return response.body


__all__ = ["EXECUTIONS_PATH", "ExecutionCoordinator", "execution_path"]
