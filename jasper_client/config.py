"""Configuration for the JasperServer report client.

Usage
-----
Build a configuration directly:

>>> config = JasperClientConfig(host="http://reports.example.test:8080")
>>> config.cache_dir
PosixPath('report_cache')

Or load it from environment variables:

>>> import os
>>> os.environ["JASPER_HOST"] = "http://reports.example.test:8080"
>>> os.environ["JASPER_POLL_MAX_ATTEMPTS"] = "40"
>>> JasperClientConfig.from_env().poll.max_attempts
40

"""

from __future__ import annotations

import dataclasses as dc
import os
from pathlib import Path

from jasper_client.errors import ConfigError
from jasper_client.polling import RetryPolicy

_DEFAULT_SERVER_VERSION = "5.5.0"
_DEFAULT_CACHE_DIR = Path("report_cache")
_DEFAULT_TIMEOUT_S = 60.0

# Servers at or above this version run exports as separate sub-jobs.
EXPORT_EXECUTION_MIN_VERSION = (5, 6, 0)


def parse_version(version: str) -> tuple[int, ...]:
    """Parse a dotted server version into a comparable tuple.

    Non-numeric suffixes such as ``6.1.0-pro`` are ignored per segment.
    """
    parts: list[int] = []
    for segment in version.strip().split("."):
        digits = ""
        for char in segment:
            if not char.isdigit():
                break
            digits += char
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


@dc.dataclass(frozen=True, slots=True)
class JasperClientConfig:
    """Connection, polling and cache settings for :class:`JasperClient`.

    Attributes
    ----------
    host
        Base URL of the JasperServer instance, e.g. ``http://host:8080``.
    username
        Login name. When both ``username`` and ``password`` are set the
        client logs in on :meth:`JasperClient.connect`.
    password
        Login password.
    session_id
        An existing ``JSESSIONID`` to reuse instead of logging in.
    server_version
        Server version string; selects the export flow.
    cache_dir
        Root of the on-disk report cache.
    timeout_s
        HTTP timeout in seconds.
    poll
        Retry policy applied to execution and export polling.
    log_level
        femtologging level for background workers; ``None`` means ``INFO``.

    """

    host: str
    username: str | None = None
    password: str | None = None
    session_id: str | None = None
    server_version: str = _DEFAULT_SERVER_VERSION
    cache_dir: Path = _DEFAULT_CACHE_DIR
    timeout_s: float = _DEFAULT_TIMEOUT_S
    poll: RetryPolicy = dc.field(default_factory=RetryPolicy)
    log_level: str | None = None

    @property
    def uses_export_executions(self) -> bool:
        """Return whether the server supports export sub-jobs."""
        return parse_version(self.server_version) >= EXPORT_EXECUTION_MIN_VERSION

    @staticmethod
    def _optional(name: str) -> str | None:
        raw = os.environ.get(name, "").strip()
        return raw or None

    @staticmethod
    def _parse_positive(name: str, default: float, cast: type) -> float:
        raw = os.environ.get(name, "")
        if not raw.strip():
            return default
        try:
            value = cast(raw.strip())
        except ValueError as exc:
            raise ConfigError.invalid_number(name, raw) from exc
        if value <= 0:
            raise ConfigError.invalid_number(name, raw)
        return value

    @classmethod
    def from_env(cls) -> JasperClientConfig:
        """Create configuration from ``JASPER_*`` environment variables.

        Reads ``JASPER_HOST`` (required), ``JASPER_USERNAME``,
        ``JASPER_PASSWORD``, ``JASPER_SESSION_ID``,
        ``JASPER_SERVER_VERSION``, ``JASPER_CACHE_DIR``,
        ``JASPER_TIMEOUT_S``, ``JASPER_POLL_INTERVAL_S``,
        ``JASPER_POLL_MAX_ATTEMPTS`` and ``JASPER_LOG_LEVEL``.

        Raises
        ------
        ConfigError
            If the host is missing or a numeric setting is invalid.

        """
        host = cls._optional("JASPER_HOST")
        if host is None:
            raise ConfigError.missing_host()

        raw_cache_dir = cls._optional("JASPER_CACHE_DIR")
        poll = RetryPolicy(
            interval_s=cls._parse_positive("JASPER_POLL_INTERVAL_S", 0.2, float),
            max_attempts=int(
                cls._parse_positive("JASPER_POLL_MAX_ATTEMPTS", 150, int)
            ),
        )
        return cls(
            host=host,
            username=cls._optional("JASPER_USERNAME"),
            password=cls._optional("JASPER_PASSWORD"),
            session_id=cls._optional("JASPER_SESSION_ID"),
            server_version=cls._optional("JASPER_SERVER_VERSION")
            or _DEFAULT_SERVER_VERSION,
            cache_dir=Path(raw_cache_dir) if raw_cache_dir else _DEFAULT_CACHE_DIR,
            timeout_s=cls._parse_positive("JASPER_TIMEOUT_S", _DEFAULT_TIMEOUT_S, float),
            poll=poll,
            log_level=cls._optional("JASPER_LOG_LEVEL"),
        )
