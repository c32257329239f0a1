r"""On-disk cache of executed reports.

Each execution is stored under a directory sharded by its request id::

    {base}/{id[0:2]}/{id[2:4]}/{id[4:6]}/{request_id}/
        report_execution_details.xml
        export.{format}            # one per non-HTML format
        html_page_{n}.html         # one per report page
        images/{attachment}.{ext}
        .complete                  # manifest, written last

Entries are assembled in a sibling staging directory and renamed into
place once every file is written, so readers never see a partial entry.
Writers for the same request id are serialized.

Usage
-----
>>> cache = ReportCache(Path("report_cache"))
>>> async with cache.entry("123456789_1111_0", CacheRequest(formats=("pdf",))) as entry:
...     await entry.persist_execution_metadata(details, cache_date="2024-07-08 10:00:00")
...     await entry.persist_export("pdf", pdf_bytes)

"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses as dc
import os
import secrets
import shutil
import typing as typ
from pathlib import Path, PurePath

import msgspec
from bs4 import BeautifulSoup

from jasper_client.codec import annotate_details
from jasper_client.errors import CacheWriteError, ValidationError
from jasper_client.models import CacheManifest, OutputFormat
from jasper_client.observability import ExecutionEventLogger
from jasper_client.observers import ObserverRegistry

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from xml.etree import ElementTree

DETAILS_FILE = "report_execution_details.xml"
MANIFEST_FILE = ".complete"
IMAGES_DIR = "images"
PAGE_MARKER_CLASS = "jrPage"
DEFAULT_FORMATS = ("pdf", "html", "xls")

_SHARD_WIDTH = 2
_SHARD_DEPTH = 3
_FALLBACK_EXTENSION = "out"
_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/svg+xml": "svg",
}


def cache_path(request_id: str, base_dir: str | PurePath) -> Path:
    """Return the cache directory for ``request_id`` under ``base_dir``.

    >>> cache_path("123456789_1111_0", "report_cache/").as_posix()
    'report_cache/12/34/56/123456789_1111_0'

    Raises
    ------
    ValidationError
        If the request id is shorter than six characters.

    """
    if len(request_id) < _SHARD_WIDTH * _SHARD_DEPTH:
        raise ValidationError.short_request_id(request_id)
    shards = [
        request_id[offset : offset + _SHARD_WIDTH]
        for offset in range(0, _SHARD_WIDTH * _SHARD_DEPTH, _SHARD_WIDTH)
    ]
    return Path(base_dir).joinpath(*shards, request_id)


def attachment_extension(content_type: str) -> str:
    """Map an attachment content type to a file extension."""
    return _EXTENSIONS.get(content_type.strip().lower(), _FALLBACK_EXTENSION)


def split_html_pages(html: str) -> list[str]:
    """Return the markup of every report page table in ``html``."""
    soup = BeautifulSoup(html, "html.parser")
    return [str(table) for table in soup.find_all("table", class_=PAGE_MARKER_CLASS)]


@dc.dataclass(frozen=True, slots=True)
class CacheRequest:
    """What to cache for one execution.

    Attributes
    ----------
    formats
        Output formats to export and store.
    attachments_prefix
        Prefix requested for attachment URLs in HTML exports. When unset,
        attachments are matched by the server's default URL layout.

    """

    formats: tuple[str, ...] = DEFAULT_FORMATS
    attachments_prefix: str | None = None

    def __post_init__(self) -> None:
        """Normalize format names and reject unknown ones."""
        formats = tuple(OutputFormat.parse(fmt).value for fmt in self.formats)
        object.__setattr__(self, "formats", formats)


class CacheEntryWriter:
    """Write the artifacts of one cache entry into its staging directory."""

    def __init__(self, request_id: str, staging_dir: Path) -> None:
        """Bind the writer to a request id and its staging directory."""
        self.request_id = request_id
        self._dir = staging_dir
        self.details: ElementTree.Element | None = None
        self.formats: list[str] = []
        self.cache_date = ""
        self.page_count = 0
        self.attachments: dict[str, str] = {}

    async def _write(self, relative: str, content: bytes | str) -> Path:
        target = self._dir / relative
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        if isinstance(content, str):
            await asyncio.to_thread(target.write_text, content, "utf-8")
        else:
            await asyncio.to_thread(target.write_bytes, content)
        return target

    async def persist_execution_metadata(
        self,
        details: ElementTree.Element,
        *,
        formats: cabc.Sequence[str],
        cache_date: str,
    ) -> None:
        """Write execution details annotated with formats and cache date."""
        self.details = details
        self.formats = list(formats)
        self.cache_date = cache_date
        document = annotate_details(details, formats=formats, cache_date=cache_date)
        await self._write(DETAILS_FILE, document)

    async def persist_export(self, output_format: str, body: bytes) -> None:
        """Write a non-HTML export as ``export.{format}``."""
        fmt = OutputFormat.parse(output_format)
        await self._write(f"export.{fmt.value}", body)

    async def persist_html_pages(self, html: str) -> int:
        """Write each report page as ``html_page_{n}.html``.

        Content outside page tables is dropped. Returns the page count.
        """
        pages = await asyncio.to_thread(split_html_pages, html)
        for number, page in enumerate(pages, start=1):
            await self._write(f"html_page_{number}.html", page)
        self.page_count = len(pages)
        return self.page_count

    async def persist_attachment(
        self,
        name: str,
        content_type: str,
        body: bytes,
        *,
        key: str | None = None,
    ) -> str:
        """Write an attachment under ``images/`` and return its entry path.

        The mapping from ``key`` (default ``name``) to the returned path is
        recorded in the entry manifest.
        """
        file_name = PurePath(name).name
        relative = f"{IMAGES_DIR}/{file_name}.{attachment_extension(content_type)}"
        await self._write(relative, body)
        self.attachments[key or name] = relative
        return relative

    def manifest(self) -> CacheManifest:
        """Return the manifest describing everything written so far."""
        return CacheManifest(
            request_id=self.request_id,
            formats=self.formats,
            cache_date=self.cache_date,
            page_count=self.page_count,
            attachments=dict(self.attachments),
        )


class ReportCache:
    """Sharded report cache with atomic publication per request id."""

    def __init__(
        self,
        base_dir: Path,
        *,
        observers: ObserverRegistry | None = None,
        event_logger: ExecutionEventLogger | None = None,
    ) -> None:
        """Initialise the cache rooted at ``base_dir``."""
        self._base_dir = base_dir
        self._observers = observers or ObserverRegistry()
        self._events = event_logger or ExecutionEventLogger()
        self._locks: dict[Path, asyncio.Lock] = {}
        self._lock_users: dict[Path, int] = {}

    @property
    def base_dir(self) -> Path:
        """Return the cache root directory."""
        return self._base_dir

    @property
    def observers(self) -> ObserverRegistry:
        """Return the registry notified after each publication."""
        return self._observers

    def path_for(self, request_id: str) -> Path:
        """Return the published entry directory for ``request_id``."""
        return cache_path(request_id, self._base_dir)

    def is_cached(self, request_id: str) -> bool:
        """Return whether a complete entry exists for ``request_id``."""
        return (self.path_for(request_id) / MANIFEST_FILE).is_file()

    def read_manifest(self, request_id: str) -> CacheManifest | None:
        """Return the manifest of a published entry, or ``None``."""
        manifest = self.path_for(request_id) / MANIFEST_FILE
        if not manifest.is_file():
            return None
        return msgspec.json.decode(manifest.read_bytes(), type=CacheManifest)

    def page_path(self, request_id: str, page: int) -> Path:
        """Return the file of one cached HTML page."""
        return self.path_for(request_id) / f"html_page_{page}.html"

    def export_path(self, request_id: str, output_format: str) -> Path:
        """Return the file of one cached non-HTML export."""
        fmt = OutputFormat.parse(output_format)
        return self.path_for(request_id) / f"export.{fmt.value}"

    def attachment_path(self, request_id: str, file_name: str) -> Path:
        """Return a cached attachment file, given its stored file name."""
        return self.path_for(request_id) / IMAGES_DIR / PurePath(file_name).name

    @contextlib.asynccontextmanager
    async def _exclusive(self, target: Path) -> typ.AsyncIterator[None]:
        """Hold the writer lock for ``target``.

        A lock lives only while some writer holds or waits for it.
        """
        key = target.resolve()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    @contextlib.asynccontextmanager
    async def entry(
        self,
        request_id: str,
        request: CacheRequest | None = None,
    ) -> typ.AsyncIterator[CacheEntryWriter]:
        """Stage a cache entry and publish it when the block succeeds.

        Post-cache observers run after publication. On failure the staging
        directory is removed, filesystem errors are raised as
        :class:`CacheWriteError`, and any previously published entry is
        left untouched.
        """
        target = self.path_for(request_id)
        cache_request = request or CacheRequest()
        async with self._exclusive(target):
            staging = target.with_name(
                f"{target.name}.staging-{secrets.token_hex(4)}"
            )
            writer = CacheEntryWriter(request_id, staging)
            try:
                await asyncio.to_thread(staging.mkdir, parents=True, exist_ok=True)
                yield writer
                manifest = msgspec.json.encode(writer.manifest())
                await asyncio.to_thread((staging / MANIFEST_FILE).write_bytes, manifest)
                await asyncio.to_thread(_publish, staging, target)
            except OSError as exc:
                await asyncio.to_thread(shutil.rmtree, staging, True)
                self._events.log_cache_failed(request_id=request_id, error=exc)
                raise CacheWriteError(request_id, exc) from exc
            except BaseException:
                await asyncio.to_thread(shutil.rmtree, staging, True)
                raise

        self._events.log_cache_published(
            request_id=request_id,
            formats=writer.formats,
            pages=writer.page_count,
            attachments=len(writer.attachments),
        )
        if writer.details is not None:
            await self._observers.notify_cache(
                request_id, cache_request, writer.details
            )


def _publish(staging: Path, target: Path) -> None:
    """Move ``staging`` into place, replacing any previous entry."""
    retired: Path | None = None
    if target.exists():
        retired = target.with_name(f"{target.name}.retired-{secrets.token_hex(4)}")
        os.replace(target, retired)
    os.replace(staging, target)
    if retired is not None:
        shutil.rmtree(retired, ignore_errors=True)


__all__ = [
    "DEFAULT_FORMATS",
    "DETAILS_FILE",
    "MANIFEST_FILE",
    "PAGE_MARKER_CLASS",
    "CacheEntryWriter",
    "CacheRequest",
    "ReportCache",
    "attachment_extension",
    "cache_path",
    "split_html_pages",
]
