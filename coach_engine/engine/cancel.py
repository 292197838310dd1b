"""Per-turn cancellation scope fed by a deadline and the caller's disconnect signal."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_REASON = "Turn timed out"
CLIENT_ABORTED_REASON = "client_aborted"


class TurnCancelled(Exception):
    """Raised at a suspension point once the turn's scope has been cancelled."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CancelScope:
    """Merges a wall-clock deadline and a disconnect signal into one token.

    Usage::

        async with CancelScope(timeout=60, disconnect=event) as scope:
            result = await scope.guard(llm.generate(...))

    Every suspension point either calls :meth:`raise_if_cancelled` or wraps
    its awaitable in :meth:`guard`, which aborts the awaitable as soon as
    the scope is cancelled.
    """

    def __init__(self, timeout: float, disconnect: asyncio.Event | None = None) -> None:
        self._timeout = timeout
        self._disconnect = disconnect
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._cleanups: list[Callable[[], None]] = []
        self._closed = False

    # -- lifecycle -------------------------------------------------------

    async def __aenter__(self) -> CancelScope:
        self.start()
        return self

    def start(self) -> None:
        """Arm the deadline and the disconnect watcher. Requires a running loop."""
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._timeout, self.cancel, TIMEOUT_REASON)
        self._cleanups.append(timer.cancel)

        if self._disconnect is not None:
            watcher = asyncio.create_task(self._watch(self._disconnect))
            self._cleanups.append(watcher.cancel)

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the deadline timer and disconnect watcher. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for cleanup in self._cleanups:
            cleanup()
        self._cleanups.clear()

    async def _watch(self, disconnect: asyncio.Event) -> None:
        await disconnect.wait()
        self.cancel(CLIENT_ABORTED_REASON)

    # -- state -----------------------------------------------------------

    def cancel(self, reason: str) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info("turn cancelled reason=%s", reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled(self._reason or "cancelled")

    # -- suspension points -----------------------------------------------

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the scope is cancelled first.

        On cancellation the underlying task is cancelled and awaited before
        :class:`TurnCancelled` is raised, so nothing keeps running in the
        background.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.debug("task raised while being cancelled", exc_info=True)

        if task.cancelled():
            self.raise_if_cancelled()
            raise asyncio.CancelledError()
        return task.result()
