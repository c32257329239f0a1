"""Domain models for report executions, exports and cached results."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ

import msgspec

from jasper_client.errors import ValidationError

ParameterValues: typ.TypeAlias = str | cabc.Sequence[str]
ParameterMap: typ.TypeAlias = cabc.Mapping[str, ParameterValues]


class OutputFormat(enum.StrEnum):
    """Output formats the server can render."""

    HTML = "html"
    PDF = "pdf"
    XLS = "xls"
    XLSX = "xlsx"
    CSV = "csv"
    DOCX = "docx"
    RTF = "rtf"
    ODT = "odt"
    ODS = "ods"
    PPTX = "pptx"
    XML = "xml"

    @classmethod
    def parse(cls, value: str | None) -> OutputFormat:
        """Return the member for ``value``.

        Raises
        ------
        ValidationError
            If ``value`` is empty or names no known format.

        """
        if not value or not value.strip():
            raise ValidationError.missing_output_format()
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            msg = f"Unsupported output format: {value!r}"
            raise ValidationError(msg) from exc


class ExecutionStatus(enum.StrEnum):
    """Remote execution states."""

    QUEUED = "queued"
    RUNNING = "execution"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_server(cls, raw: str | None) -> ExecutionStatus:
        """Map a server status string, treating unknown values as running."""
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.RUNNING

    @property
    def is_ready(self) -> bool:
        """Return whether outputs can be fetched."""
        return self is ExecutionStatus.READY

    @property
    def is_terminal_failure(self) -> bool:
        """Return whether the job ended without producing output."""
        return self in {ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}


def normalize_parameters(params: ParameterMap | None) -> dict[str, list[str]]:
    """Return ``params`` with every value as a list of strings.

    >>> normalize_parameters({"year": "2024", "region": ["north", "south"]})
    {'year': ['2024'], 'region': ['north', 'south']}
    """
    if not params:
        return {}
    normalized: dict[str, list[str]] = {}
    for name, values in params.items():
        if isinstance(values, str):
            normalized[name] = [values]
        else:
            normalized[name] = [str(value) for value in values]
    return normalized


@dc.dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Options sent with a report execution request.

    Defaults follow the JasperServer ``reportExecutions`` service.

    Attributes
    ----------
    output_format
        Format the execution renders first.
    run_async
        Whether the server should run the report asynchronously.
    fresh_data
        Ignore any data snapshot and query the data source again.
    save_data_snapshot
        Store a data snapshot alongside the execution.
    interactive
        Render interactive HTML elements.
    ignore_pagination
        Render the report as one page.
    pages
        Optional page or page range, e.g. ``"2"`` or ``"1-5"``.
    transformer_key
        Optional server-side transformer.
    attachments_prefix
        Optional prefix for attachment URLs in HTML output.
    parameters
        Report input parameters.

    """

    output_format: str = OutputFormat.HTML
    run_async: bool = False
    fresh_data: bool = False
    save_data_snapshot: bool = False
    interactive: bool = True
    ignore_pagination: bool = False
    pages: str | None = None
    transformer_key: str | None = None
    attachments_prefix: str | None = None
    parameters: ParameterMap = dc.field(default_factory=dict)

    def with_changes(self, **changes: object) -> ExecutionOptions:
        """Return a copy with ``changes`` applied."""
        return dc.replace(self, **changes)  # type: ignore[arg-type]


@dc.dataclass(frozen=True, slots=True)
class ExecutionHandle:
    """Server-assigned identifier of one report execution."""

    request_id: str
    resource: str
    status: ExecutionStatus = ExecutionStatus.QUEUED


@dc.dataclass(frozen=True, slots=True)
class ExportHandle:
    """Identifier of one export sub-job under an execution."""

    export_id: str
    output_format: OutputFormat
    status: ExecutionStatus = ExecutionStatus.QUEUED


@dc.dataclass(frozen=True, slots=True)
class ExportOutput:
    """Bytes fetched for one export."""

    body: bytes
    error: bool
    export_id: str


@dc.dataclass(frozen=True, slots=True)
class AttachmentRef:
    """Attachment listed in execution details."""

    file_name: str
    content_type: str


@dc.dataclass(frozen=True, slots=True)
class RenderedReport:
    """Output of a synchronous, uncached report request.

    ``total_pages`` is ``None`` when the page count could not be read.
    """

    output: str
    output_format: OutputFormat
    error: bool = False
    page: int | None = None
    total_pages: int | None = None


class RunErrorKind(enum.StrEnum):
    """Categories reported by :class:`RunOutcome`."""

    VALIDATION = "validation"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    REMOTE = "remote"
    CACHE = "cache"


@dc.dataclass(frozen=True, slots=True)
class RunOutcome:
    """Structured result of a report run for interactive callers."""

    request_id: str | None
    ok: bool
    error_kind: RunErrorKind | None = None
    message: str | None = None


class ResourceDescriptor(msgspec.Struct, kw_only=True, frozen=True):
    """Repository entry returned by the folder listing service."""

    name: str
    uri: str
    ws_type: str
    label: str | None = None
    description: str | None = None
    creation_date: str | None = None


class ServerInfo(msgspec.Struct, kw_only=True, frozen=True):
    """Version details reported by ``rest_v2/serverInfo``."""

    version: str
    edition: str | None = None
    edition_name: str | None = None
    build: str | None = None


class CacheManifest(msgspec.Struct, kw_only=True):
    """Completion marker written last into every published cache entry."""

    request_id: str
    formats: list[str]
    cache_date: str
    page_count: int = 0
    attachments: dict[str, str] = msgspec.field(default_factory=dict)


__all__ = [
    "AttachmentRef",
    "CacheManifest",
    "ExecutionHandle",
    "ExecutionOptions",
    "ExecutionStatus",
    "ExportHandle",
    "ExportOutput",
    "OutputFormat",
    "ParameterMap",
    "ParameterValues",
    "RenderedReport",
    "ResourceDescriptor",
    "RunErrorKind",
    "RunOutcome",
    "ServerInfo",
    "normalize_parameters",
]
