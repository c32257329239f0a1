"""Structured log events for report execution and caching.

Usage
-----
>>> events = ExecutionEventLogger()
>>> events.log_execution_started(resource="/reports/sample", request_id="1234567")

"""

from __future__ import annotations

import enum

from jasper_client.logging import get_logger, log_error, log_info

logger = get_logger(__name__)


class ExecutionEventType(enum.StrEnum):
    """Structured log event types for the report lifecycle."""

    EXECUTION_STARTED = "jasper.execution.started"
    EXECUTION_READY = "jasper.execution.ready"
    EXPORT_FETCHED = "jasper.export.fetched"
    CACHE_PUBLISHED = "jasper.cache.published"
    CACHE_FAILED = "jasper.cache.failed"


class ExecutionEventLogger:
    """Emit lifecycle events via femtologging."""

    def log_execution_started(self, *, resource: str, request_id: str) -> None:
        """Log that the server accepted an execution request."""
        log_info(
            logger,
            "[%s] resource=%s request_id=%s",
            ExecutionEventType.EXECUTION_STARTED,
            resource,
            request_id,
        )

    def log_execution_ready(self, *, request_id: str, polls: int) -> None:
        """Log that an execution reached the ready state."""
        log_info(
            logger,
            "[%s] request_id=%s polls=%d",
            ExecutionEventType.EXECUTION_READY,
            request_id,
            polls,
        )

    def log_export_fetched(
        self,
        *,
        request_id: str,
        export_id: str,
        output_format: str,
        size: int,
    ) -> None:
        """Log a fetched export body with its size in bytes."""
        log_info(
            logger,
            "[%s] request_id=%s export_id=%s format=%s bytes=%d",
            ExecutionEventType.EXPORT_FETCHED,
            request_id,
            export_id,
            output_format,
            size,
        )

    def log_cache_published(
        self,
        *,
        request_id: str,
        formats: list[str],
        pages: int,
        attachments: int,
    ) -> None:
        """Log a cache entry that was published successfully."""
        log_info(
            logger,
            "[%s] request_id=%s formats=%s pages=%d attachments=%d",
            ExecutionEventType.CACHE_PUBLISHED,
            request_id,
            ",".join(formats),
            pages,
            attachments,
        )

    def log_cache_failed(self, *, request_id: str, error: BaseException) -> None:
        """Log a cache write that was abandoned."""
        log_error(
            logger,
            "[%s] request_id=%s error_type=%s error_message=%s",
            ExecutionEventType.CACHE_FAILED,
            request_id,
            type(error).__name__,
            str(error),
            exc_info=error,
        )
