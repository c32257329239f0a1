"""Bounded polling for asynchronous JasperServer jobs.

Report executions and exports run asynchronously on the server. Callers
wait for them with :func:`poll_until_ready`, which checks a readiness
predicate at a fixed interval until it succeeds, the attempt budget in
the :class:`RetryPolicy` runs out, or a :class:`CancellationToken` fires.

Usage
-----
>>> policy = RetryPolicy(interval_s=0.5, max_attempts=20)
>>> token = CancellationToken()
>>> attempts = await poll_until_ready(
...     is_ready, subject="execution 123456789_1111_0", policy=policy, token=token
... )

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import typing as typ

from jasper_client.errors import ExecutionCancelledError, PollTimeoutError
from jasper_client.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

_DEFAULT_INTERVAL_S = 0.2
_DEFAULT_MAX_ATTEMPTS = 150


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Fixed-interval retry policy for poll loops.

    Attributes
    ----------
    interval_s
        Delay between consecutive polls, in seconds.
    max_attempts
        Maximum number of readiness checks before giving up.

    """

    interval_s: float = _DEFAULT_INTERVAL_S
    max_attempts: int = _DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        """Reject non-positive bounds."""
        if self.interval_s < 0:
            msg = f"interval_s must not be negative, got: {self.interval_s}"
            raise ValueError(msg)
        if self.max_attempts < 1:
            msg = f"max_attempts must be positive, got: {self.max_attempts}"
            raise ValueError(msg)


class CancellationToken:
    """Cooperative cancellation signal for poll loops.

    Cancelling stops local polling only; work already queued on the
    server keeps running.
    """

    def __init__(self) -> None:
        """Create an un-cancelled token."""
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Return whether :meth:`cancel` has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request that polling stop at the next boundary."""
        self._event.set()

    async def sleep(self, delay_s: float) -> bool:
        """Sleep for ``delay_s`` seconds, returning early when cancelled.

        Returns
        -------
        bool
            ``True`` when the token was cancelled during the wait.

        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay_s)
        except TimeoutError:
            return False
        return True


async def poll_until_ready(
    check: cabc.Callable[[], cabc.Awaitable[bool]],
    *,
    subject: str,
    policy: RetryPolicy,
    token: CancellationToken | None = None,
) -> int:
    """Call ``check`` until it returns ``True``.

    Parameters
    ----------
    check
        Coroutine factory performing one status query.
    subject
        Human-readable name of the polled job, used in errors and logs.
    policy
        Interval and attempt bound.
    token
        Optional cancellation token checked before every attempt and
        during every wait.

    Returns
    -------
    int
        Number of checks performed, including the successful one.

    Raises
    ------
    PollTimeoutError
        When ``policy.max_attempts`` checks all returned ``False``.
    ExecutionCancelledError
        When the token is cancelled.

    """
    for attempt in range(1, policy.max_attempts + 1):
        if token is not None and token.cancelled:
            raise ExecutionCancelledError(subject)
        if await check():
            log_debug(logger, "%s ready after %d poll(s)", subject, attempt)
            return attempt
        if attempt == policy.max_attempts:
            break
        if token is None:
            await asyncio.sleep(policy.interval_s)
        elif await token.sleep(policy.interval_s):
            raise ExecutionCancelledError(subject)
    raise PollTimeoutError(subject, policy.max_attempts)
