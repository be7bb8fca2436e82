"""Orchestrator data models."""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, TYPE_CHECKING

from ..cancellation import CancellationToken
from ..errors import UploadCancelled, UploadError
from ..models import UploadCredential

if TYPE_CHECKING:
    from ..registry import ActiveUploadRegistry


class UploadState(Enum):
    """State of a single upload attempt."""
    IDLE = "idle"
    REQUESTING_CREDENTIAL = "requesting_credential"
    TRANSFERRING = "transferring"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


# FAILED_RETRYABLE is not final: a retry follows, or a cancellation during backoff
TERMINAL_STATES = frozenset({
    UploadState.SUCCEEDED,
    UploadState.FAILED,
    UploadState.CANCELLED,
})

_FAILURES = frozenset({UploadState.FAILED_RETRYABLE, UploadState.FAILED, UploadState.CANCELLED})

TRANSITIONS: Dict[UploadState, FrozenSet[UploadState]] = {
    UploadState.IDLE: frozenset({UploadState.REQUESTING_CREDENTIAL, UploadState.TRANSFERRING}) | _FAILURES,
    UploadState.REQUESTING_CREDENTIAL: frozenset({UploadState.TRANSFERRING}) | _FAILURES,
    UploadState.TRANSFERRING: frozenset({UploadState.SUCCEEDED}) | _FAILURES,
    UploadState.FAILED_RETRYABLE: frozenset({UploadState.CANCELLED}),
}


@dataclass
class UploadAttempt:
    """Transient state for one try of an upload."""
    upload_id: str
    number: int
    token: CancellationToken
    state: UploadState = UploadState.IDLE
    bytes_sent: int = 0
    total_bytes: int = 0
    credential: Optional[UploadCredential] = None
    error: Optional[UploadError] = None
    _last_fraction: float = field(default=0.0, repr=False)

    def transition(self, state: UploadState) -> None:
        allowed = TRANSITIONS.get(self.state, frozenset())
        if state not in allowed:
            raise RuntimeError(f"Illegal upload state change {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, error: UploadError, will_retry: bool) -> None:
        self.error = error
        if self.state.terminal:
            return
        if self.token.cancelled or isinstance(error, UploadCancelled):
            self.transition(UploadState.CANCELLED)
        elif will_retry:
            self.transition(UploadState.FAILED_RETRYABLE)
        else:
            self.transition(UploadState.FAILED)

    def record_progress(self, bytes_sent: int, total_bytes: int) -> Optional[float]:
        """
        Track transferred bytes.

        Returns the fraction to report, or None when it would move backwards.
        """
        if total_bytes <= 0:
            fraction = 1.0
        else:
            fraction = min(max(bytes_sent / total_bytes, 0.0), 1.0)
        if fraction < self._last_fraction:
            return None
        self.bytes_sent = bytes_sent
        self.total_bytes = total_bytes
        self._last_fraction = fraction
        return fraction


class UploadHandle:
    """Handle to an upload scheduled with ``UploadOrchestrator.submit``."""

    def __init__(self, upload_id: str, task: "asyncio.Task[UploadCredential]", registry: "ActiveUploadRegistry"):
        self.upload_id = upload_id
        self._task = task
        self._registry = registry

    async def wait(self) -> UploadCredential:
        return await self._task

    def cancel(self) -> bool:
        return self._registry.cancel(self.upload_id)

    def done(self) -> bool:
        return self._task.done()

    def __await__(self):
        return self._task.__await__()
