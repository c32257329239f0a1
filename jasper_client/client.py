"""High-level JasperServer client.

:class:`JasperClient` wires the transport, execution coordinator and
report cache together and exposes the single-shot REST calls (login,
server info, folder listings, synchronous reports, assets, input
controls).

Usage
-----
Run a report and cache it as PDF and paged HTML:

>>> config = JasperClientConfig.from_env()
>>> async with await JasperClient.connect(config) as client:
...     handle = await client.start_report_execution(
...         "/reports/sample", ExecutionOptions(parameters={"year": "2024"})
...     )
...     manifest = await client.cache_report_execution(
...         handle, CacheRequest(formats=("pdf", "html"))
...     )

"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
import typing as typ
import urllib.parse

from jasper_client.assets import ProxyRewrite, ReplacementRewrite, rewrite_links
from jasper_client.cache import CacheRequest, ReportCache
from jasper_client.codec import (
    extract_attachments,
    parse_resource_descriptors,
    parse_server_info,
)
from jasper_client.errors import (
    CacheWriteError,
    ConfigError,
    ExecutionCancelledError,
    JasperClientError,
    PollTimeoutError,
    RemoteExecutionError,
    ResponseParseError,
    TransportError,
    ValidationError,
)
from jasper_client.execution import ExecutionCoordinator
from jasper_client.input_controls import InputControl, InputControlFactory
from jasper_client.logging import get_logger, log_info, log_warning
from jasper_client.models import (
    CacheManifest,
    ExecutionHandle,
    ExecutionOptions,
    ExecutionStatus,
    ExportOutput,
    OutputFormat,
    ParameterMap,
    RenderedReport,
    ResourceDescriptor,
    RunErrorKind,
    RunOutcome,
    ServerInfo,
    normalize_parameters,
)
from jasper_client.observability import ExecutionEventLogger
from jasper_client.observers import (
    ObserverRegistry,
    PostCacheObserver,
    PostExecutionObserver,
)
from jasper_client.transport import (
    HttpxTransport,
    normalize_path,
    require_server_relative,
)

if typ.TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType
    from xml.etree import ElementTree

    from jasper_client.builder import ReportBuilder
    from jasper_client.cache import CacheEntryWriter
    from jasper_client.config import JasperClientConfig
    from jasper_client.polling import CancellationToken
    from jasper_client.transport import Transport

logger = get_logger(__name__)

LOGIN_PATH = "/jasperserver/rest/login"
SERVER_INFO_PATH = "/jasperserver/rest_v2/serverInfo"
RESOURCES_PATH = "/jasperserver/rest/resources"
REPORTS_PATH = "/jasperserver/rest_v2/reports"
FOLDER_CACHE_FILE = "cache.xml"
CACHE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HTTP_NOT_FOUND = 404

_ERROR_KINDS: tuple[tuple[type[JasperClientError], RunErrorKind], ...] = (
    (ValidationError, RunErrorKind.VALIDATION),
    (ConfigError, RunErrorKind.VALIDATION),
    (TransportError, RunErrorKind.TRANSPORT),
    (PollTimeoutError, RunErrorKind.TIMEOUT),
    (ExecutionCancelledError, RunErrorKind.CANCELLED),
    (RemoteExecutionError, RunErrorKind.REMOTE),
    (ResponseParseError, RunErrorKind.REMOTE),
    (CacheWriteError, RunErrorKind.CACHE),
)


def parameter_query(params: ParameterMap | None) -> str:
    """Encode parameters as a query string, repeating multi-value names.

    >>> parameter_query({"region": ["north", "south"], "year": "2024"})
    '?region=north&region=south&year=2024'
    """
    normalized = normalize_parameters(params)
    if not normalized:
        return ""
    return "?" + urllib.parse.urlencode(
        [(name, value) for name, values in normalized.items() for value in values]
    )


def classify_error(exc: JasperClientError) -> RunErrorKind:
    """Map a client error onto the run outcome categories.

    A 404 from the server (unknown report or request id) is reported as
    ``NOT_FOUND`` rather than a generic transport failure.
    """
    if isinstance(exc, TransportError) and exc.status_code == _HTTP_NOT_FOUND:
        return RunErrorKind.NOT_FOUND
    for error_type, kind in _ERROR_KINDS:
        if isinstance(exc, error_type):
            return kind
    return RunErrorKind.REMOTE


class JasperClient:
    """Client for the JasperServer REST API with a local report cache."""

    def __init__(
        self,
        config: JasperClientConfig,
        *,
        transport: Transport | None = None,
        observers: ObserverRegistry | None = None,
        event_logger: ExecutionEventLogger | None = None,
        input_control_factory: InputControlFactory | None = None,
    ) -> None:
        """Build the client; call :meth:`login` or use :meth:`connect`."""
        self._config = config
        self._transport = transport or HttpxTransport(
            config.host,
            session_id=config.session_id,
            timeout_s=config.timeout_s,
        )
        self._observers = observers or ObserverRegistry()
        events = event_logger or ExecutionEventLogger()
        self._coordinator = ExecutionCoordinator(
            self._transport,
            policy=config.poll,
            observers=self._observers,
            event_logger=events,
        )
        self._cache = ReportCache(
            config.cache_dir, observers=self._observers, event_logger=events
        )
        self._input_controls = input_control_factory or InputControlFactory()

    @classmethod
    async def connect(
        cls,
        config: JasperClientConfig,
        **kwargs: typ.Any,  # noqa: ANN401 - forwarded to __init__
    ) -> JasperClient:
        """Create a client and log in when credentials are configured."""
        client = cls(config, **kwargs)
        if config.username is not None and config.password is not None:
            await client.login()
        return client

    async def __aenter__(self) -> JasperClient:
        """Return the client for use in ``async with``."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the transport."""
        await self.aclose()

    async def aclose(self) -> None:
        """Release transport resources."""
        await self._transport.aclose()

    @property
    def config(self) -> JasperClientConfig:
        """Return the client configuration."""
        return self._config

    @property
    def coordinator(self) -> ExecutionCoordinator:
        """Return the execution coordinator."""
        return self._coordinator

    @property
    def cache(self) -> ReportCache:
        """Return the report cache."""
        return self._cache

    @property
    def session_id(self) -> str | None:
        """Return the current server session identifier."""
        return self._transport.session_id

    def add_post_execution_observer(self, observer: PostExecutionObserver) -> None:
        """Register an observer called after each execution start."""
        self._observers.add_execution_observer(observer)

    def add_post_cache_observer(self, observer: PostCacheObserver) -> None:
        """Register an observer called after each cache publication."""
        self._observers.add_cache_observer(observer)

    async def login(
        self,
        username: str | None = None,
        password: str | None = None,
    ) -> bool:
        """Authenticate and keep the session cookie for later calls."""
        user = username or self._config.username
        secret = password or self._config.password
        if not user or not secret:
            msg = "Username and password are required to log in"
            raise ConfigError(msg)
        query = urllib.parse.urlencode({"j_username": user, "j_password": secret})
        await self._transport.post(f"{LOGIN_PATH}?{query}")
        log_info(logger, "Logged in to %s as %s", self._config.host, user)
        return True

    async def server_info(self) -> ServerInfo:
        """Return the server's version details."""
        response = await self._transport.get(SERVER_INFO_PATH)
        return parse_server_info(response.body)

    def _folder_cache_file(self, resource: str) -> Path:
        return self._config.cache_dir / resource.strip("/") / FOLDER_CACHE_FILE

    async def get_folder(
        self,
        resource: str,
        *,
        cache: bool = False,
        cache_timeout_min: float = 0,
    ) -> list[ResourceDescriptor]:
        """List the repository entries in a folder.

        With ``cache`` the raw listing is stored on disk and reused until
        it is older than ``cache_timeout_min`` minutes.
        """
        cache_file = self._folder_cache_file(resource)
        if cache and cache_file.is_file():
            age_min = (time.time() - cache_file.stat().st_mtime) / 60
            if age_min <= cache_timeout_min:
                body = await asyncio.to_thread(cache_file.read_bytes)
                return parse_resource_descriptors(body)

        response = await self._transport.get(
            normalize_path(f"{RESOURCES_PATH}/{resource}")
        )
        descriptors = parse_resource_descriptors(response.body)
        if cache:
            await asyncio.to_thread(
                cache_file.parent.mkdir, parents=True, exist_ok=True
            )
            await asyncio.to_thread(cache_file.write_bytes, response.body)
        return descriptors

    async def get_report(
        self,
        resource: str,
        output_format: str,
        params: ParameterMap | None = None,
        asset_url: str | None = None,
    ) -> RenderedReport:
        """Run a report synchronously and return its output without caching.

        HTML assets are routed through ``asset_url`` when it is given.
        Server errors are returned with ``error=True`` rather than raised.
        """
        fmt = OutputFormat.parse(output_format)
        path = normalize_path(f"{REPORTS_PATH}/{resource}.{fmt.value}")
        response = await self._transport.get(
            path + parameter_query(params), return_errors=True
        )
        output = response.text
        if fmt is OutputFormat.HTML and asset_url is not None and not response.error:
            output = rewrite_links(
                output,
                ProxyRewrite(asset_url=asset_url, session_id=self.session_id or ""),
            )
        return RenderedReport(output=output, output_format=fmt, error=response.error)

    async def get_report_asset(self, uri: str) -> bytes:
        """Return the raw bytes of a server asset.

        Raises
        ------
        ValidationError
            If ``uri`` is not a path on the configured server.

        """
        path = normalize_path(require_server_relative(uri))
        response = await self._transport.get(path)
        return response.body

    async def get_input_controls(self, resource: str) -> list[InputControl]:
        """Return the input controls of a report."""
        response = await self._transport.get(
            normalize_path(f"{REPORTS_PATH}/{resource}/inputControls")
        )
        if not response.body.strip():
            return []
        return self._input_controls.build_all(response.body)

    async def start_report_execution(
        self,
        resource: str,
        options: ExecutionOptions | None = None,
    ) -> ExecutionHandle:
        """Start an execution; post-execution observers run before returning."""
        return await self._coordinator.start(resource, options)

    async def poll_report_execution(self, handle: ExecutionHandle) -> ExecutionStatus:
        """Query an execution's status once."""
        return await self._coordinator.poll_status(handle)

    async def get_report_execution_details(
        self, request_id: str
    ) -> ElementTree.Element:
        """Fetch the execution details document."""
        return await self._coordinator.execution_details(request_id)

    async def _export(
        self,
        handle: ExecutionHandle,
        output_format: str,
        prefix: str | None,
        token: CancellationToken | None,
    ) -> ExportOutput:
        if not self._config.uses_export_executions:
            output = await self._coordinator.fetch_legacy_output(handle, output_format)
            if output.error:
                raise RemoteExecutionError(
                    f"{output_format} output of {handle.request_id}"
                )
            return output
        options = {"attachmentsPrefix": prefix} if prefix else {}
        return await self._coordinator.export(
            handle, output_format, options, token=token
        )

    async def cache_report_attachments(
        self,
        entry: CacheEntryWriter,
        handle: ExecutionHandle,
        details: ElementTree.Element,
        export_id: str,
        prefix: str = "",
    ) -> dict[str, str]:
        """Cache every attachment listed in ``details``.

        Returns
        -------
        dict[str, str]
            Entry-relative attachment paths keyed by ``prefix + fileName``.

        """
        mapping: dict[str, str] = {}
        for attachment in extract_attachments(details):
            key = f"{prefix}{attachment.file_name}"
            mapping[key] = await self.cache_report_attachment(
                entry,
                handle,
                export_id,
                attachment.file_name,
                attachment.content_type,
                key=key,
            )
        return mapping

    async def cache_report_attachment(
        self,
        entry: CacheEntryWriter,
        handle: ExecutionHandle,
        export_id: str,
        name: str,
        content_type: str,
        *,
        key: str | None = None,
    ) -> str:
        """Fetch one attachment and write it into the cache entry."""
        body = await self._coordinator.fetch_attachment(handle, export_id, name)
        return await entry.persist_attachment(name, content_type, body, key=key)

    async def cache_report_execution(
        self,
        execution: ExecutionHandle | str,
        request: CacheRequest | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> CacheManifest:
        """Export an execution in every requested format and cache it.

        The execution is polled until ready unless its handle already says
        so. HTML output has its attachments cached, its asset links
        rewritten to the cached files, and is split into page files.
        """
        handle = (
            execution
            if isinstance(execution, ExecutionHandle)
            else ExecutionHandle(request_id=execution, resource="")
        )
        cache_request = request or CacheRequest()
        prefix = cache_request.attachments_prefix or ""
        if not handle.status.is_ready:
            await self._coordinator.await_ready(handle, token=token)

        outputs = {
            fmt: await self._export(handle, fmt, prefix, token)
            for fmt in cache_request.formats
        }
        details = await self._coordinator.execution_details(handle.request_id)
        cache_date = dt.datetime.now(dt.UTC).strftime(CACHE_DATE_FORMAT)

        async with self._cache.entry(handle.request_id, cache_request) as entry:
            await entry.persist_execution_metadata(
                details, formats=cache_request.formats, cache_date=cache_date
            )
            for fmt, output in outputs.items():
                if fmt != OutputFormat.HTML:
                    await entry.persist_export(fmt, output.body)
                    continue
                attachments = await self.cache_report_attachments(
                    entry, handle, details, output.export_id, prefix
                )
                html = rewrite_links(
                    output.body.decode("utf-8", errors="replace"),
                    ReplacementRewrite(
                        replacements=attachments,
                        default_src=not prefix,
                        remove_jquery=True,
                    ),
                )
                await entry.persist_html_pages(html)
        return entry.manifest()

    async def run_report(
        self,
        resource: str,
        options: ExecutionOptions | None = None,
        request: CacheRequest | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> str:
        """Execute a report synchronously on the server and cache it.

        Returns the request id of the cached execution.
        """
        opts = (options or ExecutionOptions()).with_changes(run_async=False)
        handle = await self.start_report_execution(resource, opts)
        await self.cache_report_execution(handle, request, token=token)
        return handle.request_id

    async def try_run_report(
        self,
        resource: str,
        options: ExecutionOptions | None = None,
        request: CacheRequest | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Run :meth:`run_report`, reporting failures as a :class:`RunOutcome`."""
        request_id: str | None = None
        try:
            opts = (options or ExecutionOptions()).with_changes(run_async=False)
            handle = await self.start_report_execution(resource, opts)
            request_id = handle.request_id
            await self.cache_report_execution(handle, request, token=token)
        except JasperClientError as exc:
            kind = classify_error(exc)
            log_warning(
                logger,
                "Report run for %s failed (%s): %s",
                resource,
                kind,
                exc,
            )
            return RunOutcome(
                request_id=request_id, ok=False, error_kind=kind, message=str(exc)
            )
        return RunOutcome(request_id=request_id, ok=True)

    def create_report_builder(self, report_uri: str) -> ReportBuilder:
        """Return a :class:`ReportBuilder` bound to this client."""
        from jasper_client.builder import ReportBuilder

        return ReportBuilder(self, report_uri)


__all__ = ["JasperClient", "classify_error", "parameter_query"]
