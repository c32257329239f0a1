"""Async client for the JasperServer REST API with a local report cache.

Public API
----------
JasperClient
    Facade over login, folder listings, report execution and caching.
JasperClientConfig
    Connection, polling and cache settings, loadable from ``JASPER_*``
    environment variables.
ExecutionCoordinator
    Start, poll and export one report execution.
ReportCache / CacheRequest
    Sharded on-disk cache with atomic publication per request id.
ReportBuilder
    Fluent parameter collection for one report.
rewrite_links
    Point HTML asset references at a proxy or at cached attachments.

Example:
>>> from jasper_client import CacheRequest, JasperClient, JasperClientConfig
>>> async with await JasperClient.connect(JasperClientConfig.from_env()) as client:
...     request_id = await client.run_report(
...         "/reports/sample", request=CacheRequest(formats=("pdf", "html"))
...     )

"""

from jasper_client.assets import ProxyRewrite, ReplacementRewrite, rewrite_links
from jasper_client.builder import ReportBuilder
from jasper_client.cache import CacheRequest, ReportCache, cache_path
from jasper_client.client import JasperClient
from jasper_client.config import JasperClientConfig
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
from jasper_client.models import (
    ExecutionHandle,
    ExecutionOptions,
    ExecutionStatus,
    ExportHandle,
    OutputFormat,
    RunOutcome,
)
from jasper_client.observers import PostCacheObserver, PostExecutionObserver
from jasper_client.polling import CancellationToken, RetryPolicy
from jasper_client.transport import HttpxTransport, normalize_path

__all__ = [
    "CacheRequest",
    "CacheWriteError",
    "CancellationToken",
    "ConfigError",
    "ExecutionCancelledError",
    "ExecutionCoordinator",
    "ExecutionHandle",
    "ExecutionOptions",
    "ExecutionStatus",
    "ExportHandle",
    "HttpxTransport",
    "JasperClient",
    "JasperClientConfig",
    "JasperClientError",
    "OutputFormat",
    "PollTimeoutError",
    "PostCacheObserver",
    "PostExecutionObserver",
    "ProxyRewrite",
    "RemoteExecutionError",
    "ReplacementRewrite",
    "ReportBuilder",
    "ReportCache",
    "ResponseParseError",
    "RetryPolicy",
    "RunOutcome",
    "TransportError",
    "ValidationError",
    "cache_path",
    "normalize_path",
    "rewrite_links",
]
