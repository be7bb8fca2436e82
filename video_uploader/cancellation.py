"""Cooperative cancellation for upload suspension points."""
import asyncio
import logging
import threading
from typing import Awaitable, Optional, TypeVar

from .errors import UploadCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REASON = "Upload cancelled"


class CancellationToken:
    """
    Cancellation flag observed at every suspension point of an upload.

    ``cancel()`` may be called from the event loop or from another thread.
    Waits (``sleep``) and I/O wrapped with ``run`` end as soon as it fires;
    anything not wrapped only sees it at the next ``raise_if_cancelled``.
    """

    def __init__(self):
        self._cancelled = False
        self._reason = DEFAULT_REASON
        self._lock = threading.Lock()
        self._event = asyncio.Event()
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = DEFAULT_REASON) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason

        logger.debug(f"Cancellation requested: {reason}")
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if self._loop is None or current is self._loop:
            self._event.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._event.set)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise UploadCancelled(self._reason)

    async def sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds unless cancelled first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise UploadCancelled(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but abandon it as soon as the token is cancelled."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        # Let the cancelled task unwind before reporting.
        await asyncio.gather(task, return_exceptions=True)
        raise UploadCancelled(self._reason)
