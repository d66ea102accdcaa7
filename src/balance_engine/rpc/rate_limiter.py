"""Global serial queue enforcing call spacing per provider and overall."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from balance_engine.core.exceptions import QueryCancelledError
from balance_engine.core.models import ErrorKind
from balance_engine.rpc.errors import ErrorClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _QueuedCall:
    provider: str
    work: Callable[[], Awaitable[Any]]
    future: asyncio.Future


class RateLimiter:
    """
    Serializes outbound calls through a single worker.

    Every call waits until both the global gap since the last call to any
    provider and the per-provider gap since the last call to its provider have
    elapsed. A rate-limited failure pushes the provider's window into the
    future by ``cooldown`` and pauses the worker for the same duration.

    Parameters
    ----------
    min_global_gap : float
        Seconds between any two calls
    min_provider_gap : float
        Seconds between two calls to the same provider
    cooldown : float
        Extra stall applied after a provider throttles us
    classifier : ErrorClassifier | None
        Used to recognise rate limit failures
    clock : Callable[[], float]
        Monotonic clock
    sleep : Callable[[float], Awaitable[None]]
        Sleep coroutine

    """

    def __init__(
        self,
        min_global_gap: float = 5.0,
        min_provider_gap: float = 15.0,
        cooldown: float = 120.0,
        classifier: ErrorClassifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_global_gap = min_global_gap
        self.min_provider_gap = min_provider_gap
        self.cooldown = cooldown
        self.classifier = classifier or ErrorClassifier()
        self._clock = clock
        self._sleep = sleep
        self._queue: deque[_QueuedCall] = deque()
        self._last_call: dict[str, float] = {}
        self._last_global: float | None = None
        self._worker: asyncio.Task | None = None

    async def schedule(self, provider: str, work: Callable[[], Awaitable[T]]) -> T:
        """
        Queue a call and wait for its outcome.

        Parameters
        ----------
        provider : str
            Provider name the call is charged to
        work : Callable[[], Awaitable[T]]
            Zero-argument coroutine factory performing the call

        Returns
        -------
        T
            Whatever ``work`` returns

        Raises
        ------
        QueryCancelledError
            If the queue is cleared before the call starts
        Exception
            Whatever ``work`` raises

        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedCall(provider, work, future))
        logger.debug("Queued %s call, queue length %d", provider, len(self._queue))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="rate-limiter")
        return await future

    async def _drain(self) -> None:
        while self._queue:
            call = self._queue.popleft()
            if call.future.done():
                continue

            wait = self.wait_time(call.provider)
            if wait > 0:
                logger.debug("Waiting %.2fs before %s call", wait, call.provider)
                await self._sleep(wait)
            if call.future.done():
                continue

            started = self._clock()
            self._last_call[call.provider] = started
            self._last_global = started
            logger.debug("Executing %s call (%d remaining)", call.provider, len(self._queue))

            try:
                result = await call.work()
            except Exception as exc:
                if not call.future.done():
                    call.future.set_exception(exc)
                if self.classifier.classify(exc).kind is ErrorKind.RATE_LIMITED:
                    logger.warning("Rate limit detected for %s, cooling down %.0fs", call.provider, self.cooldown)
                    self._last_call[call.provider] = self._clock() + self.cooldown
                    await self._sleep(self.cooldown)
                continue

            if not call.future.done():
                call.future.set_result(result)
            if self._queue:
                await self._sleep(self.min_global_gap)

    def wait_time(self, provider: str) -> float:
        """
        Seconds a call to ``provider`` would have to wait right now.

        Parameters
        ----------
        provider : str
            Provider name

        Returns
        -------
        float
            ``max(0, global wait, provider wait)``

        """
        now = self._clock()
        wait_global = 0.0
        if self._last_global is not None:
            wait_global = self.min_global_gap - (now - self._last_global)
        wait_provider = 0.0
        last = self._last_call.get(provider)
        if last is not None:
            wait_provider = self.min_provider_gap - (now - last)
        return max(0.0, wait_global, wait_provider)

    def clear(self) -> int:
        """
        Reject every queued call that has not started.

        Returns
        -------
        int
            Number of calls rejected

        """
        cleared = 0
        while self._queue:
            call = self._queue.popleft()
            if not call.future.done():
                call.future.set_exception(QueryCancelledError(f"{call.provider} call cancelled"))
                cleared += 1
        if cleared:
            logger.info("Cleared %d queued provider calls", cleared)
        return cleared

    def reset(self, provider: str | None = None) -> None:
        """
        Forget recorded call times.

        Parameters
        ----------
        provider : str | None
            Provider to reset, or None to reset every window

        """
        if provider is None:
            self._last_call.clear()
            self._last_global = None
        else:
            self._last_call.pop(provider, None)

    def status(self) -> dict[str, Any]:
        """
        Snapshot of queue and rate windows.

        Returns
        -------
        dict[str, Any]
            Queue length, processing flag and per-provider delay until the
            next call is allowed

        """
        return {
            "queue_length": len(self._queue),
            "is_processing": self._worker is not None and not self._worker.done(),
            "next_available": {provider: self.wait_time(provider) for provider in self._last_call},
        }

    async def close(self) -> None:
        """Reject queued calls and stop the worker."""
        self.clear()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
