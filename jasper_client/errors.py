"""Errors raised by the Jasper report client."""

from __future__ import annotations


class JasperClientError(Exception):
    """Base class for report client errors."""


class ValidationError(JasperClientError, ValueError):
    """Raised when an execution request is missing required fields."""

    @classmethod
    def missing_resource(cls) -> ValidationError:
        """Return an error for an empty report unit URI."""
        return cls("Resource Uri Required")

    @classmethod
    def missing_output_format(cls) -> ValidationError:
        """Return an error for an empty output format."""
        return cls("Output Format Required")

    @classmethod
    def short_request_id(cls, request_id: str) -> ValidationError:
        """Return an error for request ids too short to shard."""
        return cls(f"Request id must be at least 6 characters, got: {request_id!r}")

    @classmethod
    def unsafe_path(cls, path: str) -> ValidationError:
        """Return an error for paths that would leave the configured server."""
        return cls(f"Path must be relative to the report server, got: {path!r}")


class TransportError(JasperClientError):
    """Raised when the HTTP transport fails or the server rejects a call."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialise with a message, the request path and HTTP status."""
        self.path = path
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, path: str, status_code: int) -> TransportError:
        """Return an error for non-2xx responses."""
        return cls(
            f"JasperServer HTTP {status_code} for {path}",
            path=path,
            status_code=status_code,
        )

    @classmethod
    def connection_failed(cls, path: str, exc: BaseException) -> TransportError:
        """Return an error for requests that never produced a response."""
        return cls(f"JasperServer request to {path} failed: {exc}", path=path)


class ResponseParseError(JasperClientError):
    """Raised when a server response is not well-formed XML."""

    @classmethod
    def malformed(cls, detail: str) -> ResponseParseError:
        """Return an error describing the parser failure."""
        return cls(f"Malformed JasperServer response: {detail}")


class PollTimeoutError(JasperClientError, TimeoutError):
    """Raised when a poll loop exhausts its attempt budget."""

    def __init__(self, subject: str, attempts: int) -> None:
        """Initialise with the polled subject and the attempts made."""
        self.subject = subject
        self.attempts = attempts
        super().__init__(f"{subject} not ready after {attempts} poll(s)")


class ExecutionCancelledError(JasperClientError):
    """Raised when a caller cancels polling through a cancellation token."""

    def __init__(self, subject: str) -> None:
        """Initialise with the polled subject."""
        self.subject = subject
        super().__init__(f"Polling cancelled for {subject}")


class RemoteExecutionError(JasperClientError):
    """Raised when the server reports that an execution or export failed."""

    def __init__(self, subject: str, message: str | None = None) -> None:
        """Initialise with the failing subject and the server message."""
        self.subject = subject
        self.server_message = message
        detail = message or "the server reported a failed execution"
        super().__init__(f"{subject} failed: {detail}")


class CacheWriteError(JasperClientError):
    """Raised when cache artifacts cannot be written to disk.

    Staging directories left behind by a failed write are never published,
    so a failed run does not leave a half-populated cache entry visible.
    """

    def __init__(self, request_id: str, exc: BaseException) -> None:
        """Initialise with the request id and the underlying OS error."""
        self.request_id = request_id
        super().__init__(f"Could not cache report execution {request_id}: {exc}")


class ConfigError(JasperClientError):
    """Raised when client configuration is invalid."""

    @classmethod
    def missing_host(cls) -> ConfigError:
        """Return an error when no server host is configured."""
        return cls("JASPER_HOST is required for the report client")

    @classmethod
    def invalid_number(cls, name: str, raw: str) -> ConfigError:
        """Return an error for a non-numeric or non-positive setting."""
        return cls(f"{name} must be a positive number, got: {raw!r}")
