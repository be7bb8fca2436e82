from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import inspect
import logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadProgress:
    """Progress of the transfer phase of one attempt."""
    upload_id: str
    attempt: int
    fraction: float
    bytes_sent: int = 0
    total_bytes: int = 0


@dataclass(frozen=True)
class AttemptFailed:
    """An attempt failed; ``will_retry`` tells whether another one follows."""
    upload_id: str
    attempt: int
    error: Exception
    will_retry: bool
    retry_in: Optional[float] = None


@dataclass(frozen=True)
class RetryScheduled:
    upload_id: str
    attempt: int
    delay: float


@dataclass(frozen=True)
class UploadSucceeded:
    upload_id: str
    attempts: int
    credential: Any


@dataclass(frozen=True)
class StateChanged:
    upload_id: str
    attempt: int
    state: Any


async def invoke_callback(callback: Optional[Callable], *args) -> None:
    """Call a sync or async callback; its errors are logged, not raised."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Error in upload callback {callback!r}: {e}")


class EventEmitter:
    """Simple event emitter for upload events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners."""
        if event_name not in self._listeners:
            return

        # Unlocked; listeners of concurrent uploads may interleave
        for callback in self._listeners[event_name][:]:  # Copy list to avoid modification during iteration
            try:
                result = callback(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")
