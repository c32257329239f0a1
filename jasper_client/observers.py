"""Observer hooks for execution starts and completed cache writes.

Observers run in registration order right after the triggering step.
An exception raised by an observer propagates to the caller and stops
the remaining observers.
"""

from __future__ import annotations

import inspect
import typing as typ

if typ.TYPE_CHECKING:
    from xml.etree import ElementTree

    from jasper_client.cache import CacheRequest
    from jasper_client.models import ExecutionOptions


@typ.runtime_checkable
class PostExecutionObserver(typ.Protocol):
    """Called after the server accepts an execution request."""

    def post_report_execution(
        self,
        resource: str,
        options: ExecutionOptions,
        response: ElementTree.Element,
    ) -> object:
        """React to a started execution; may return an awaitable."""
        ...


@typ.runtime_checkable
class PostCacheObserver(typ.Protocol):
    """Called after a cache entry has been published."""

    def post_report_cache(
        self,
        request_id: str,
        request: CacheRequest,
        details: ElementTree.Element,
    ) -> object:
        """React to a published cache entry; may return an awaitable."""
        ...


async def _settle(result: object) -> None:
    if inspect.isawaitable(result):
        await result


class ObserverRegistry:
    """Ordered registry of execution and cache observers."""

    def __init__(
        self,
        *,
        execution: typ.Iterable[PostExecutionObserver] = (),
        cache: typ.Iterable[PostCacheObserver] = (),
    ) -> None:
        """Seed the registry with observers supplied at construction."""
        self._execution = list(execution)
        self._cache = list(cache)

    def add_execution_observer(self, observer: PostExecutionObserver) -> None:
        """Append an observer for execution starts."""
        self._execution.append(observer)

    def add_cache_observer(self, observer: PostCacheObserver) -> None:
        """Append an observer for cache publication."""
        self._cache.append(observer)

    async def notify_execution(
        self,
        resource: str,
        options: ExecutionOptions,
        response: ElementTree.Element,
    ) -> None:
        """Invoke execution observers in registration order."""
        for observer in self._execution:
            await _settle(observer.post_report_execution(resource, options, response))

    async def notify_cache(
        self,
        request_id: str,
        request: CacheRequest,
        details: ElementTree.Element,
    ) -> None:
        """Invoke cache observers in registration order."""
        for observer in self._cache:
            await _settle(observer.post_report_cache(request_id, request, details))
