"""Single video upload with retries."""
import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from ..cancellation import CancellationToken
from ..errors import (
    CredentialExpired,
    NetworkError,
    ResourceNotFound,
    TransferFailed,
    UploadCancelled,
    UploadError,
)
from ..models import UploadConfig, UploadCredential, UploadOptions, UploadRequest
from ..protocols import ICredentialIssuer, ITransferTransport
from ..utils.events import (
    AttemptFailed,
    EventEmitter,
    RetryScheduled,
    StateChanged,
    UploadProgress,
    UploadSucceeded,
    invoke_callback,
)
from .models import UploadAttempt, UploadState

logger = logging.getLogger(__name__)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class SingleUploadHandler:
    """Drives one logical upload: credential, transfer, retry with backoff."""

    def __init__(
        self,
        credentials: ICredentialIssuer,
        transport: ITransferTransport,
        config: UploadConfig,
        events: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize single upload handler.

        Args:
            credentials: Signed-URL issuer
            transport: Byte transfer to object storage
            config: UploadConfig
            events: Shared event emitter
            clock: Monotonic clock used for credential deadlines
        """
        self._credentials = credentials
        self._transport = transport
        self._config = config
        self._events = events or EventEmitter()
        self._clock = clock

    async def upload(
        self,
        upload_id: str,
        path: Path,
        options: UploadOptions,
        token: CancellationToken,
    ) -> UploadCredential:
        """
        Upload ``path`` retrying retryable failures.

        Raises the last ``UploadError`` once the budget is spent, or the first
        non-retryable one immediately.
        """
        path = Path(path)
        policy = options.retry or self._config.retry
        delay = policy.initial_delay
        credential: Optional[UploadCredential] = None

        for number in range(policy.max_attempts):
            attempt = UploadAttempt(upload_id=upload_id, number=number, token=token)
            try:
                token.raise_if_cancelled()
                credential = await self._guarded_attempt(attempt, path, options, credential)
            except UploadError as exc:
                credential = attempt.credential or credential
                error = exc
                if token.cancelled and not isinstance(exc, UploadCancelled):
                    error = UploadCancelled(token.reason)
                    error.__cause__ = exc

                will_retry = error.retryable and number < policy.max_retries
                attempt.fail(error, will_retry)
                await self._publish_state(attempt)
                await self._report_failure(attempt, error, options, delay if will_retry else None)

                if not will_retry:
                    raise error

                logger.info(f"[{upload_id}] retrying in {delay:.2f}s (attempt {number + 2}/{policy.max_attempts})")
                await self._events.emit("retry", RetryScheduled(upload_id, number, delay))
                try:
                    await token.sleep(delay)
                except UploadCancelled as cancelled:
                    attempt.fail(cancelled, will_retry=False)
                    await self._publish_state(attempt)
                    await self._report_failure(attempt, cancelled, options, None)
                    raise
                delay *= policy.backoff_multiplier
                continue

            attempt.transition(UploadState.SUCCEEDED)
            await self._publish_state(attempt)
            logger.info(f"[{upload_id}] uploaded {path.name} as {credential.video_id}")
            await self._events.emit("success", UploadSucceeded(upload_id, number + 1, credential))
            await invoke_callback(options.on_success, credential)
            return credential

        raise AssertionError("retry loop exited without result")  # pragma: no cover

    async def _guarded_attempt(
        self,
        attempt: UploadAttempt,
        path: Path,
        options: UploadOptions,
        previous: Optional[UploadCredential],
    ) -> UploadCredential:
        # Connection resets and timeouts from collaborators count as network failures
        try:
            return await self._attempt(attempt, path, options, previous)
        except (OSError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"I/O failure during upload: {exc!r}") from exc

    async def _attempt(
        self,
        attempt: UploadAttempt,
        path: Path,
        options: UploadOptions,
        previous: Optional[UploadCredential],
    ) -> UploadCredential:
        token = attempt.token
        request = self._build_request(path, options)

        credential = self._reusable(previous)
        if credential is None:
            attempt.transition(UploadState.REQUESTING_CREDENTIAL)
            await self._publish_state(attempt)
            credential = await token.run(self._credentials.request_credential(request))
        else:
            logger.debug(f"[{attempt.upload_id}] reusing credential for {credential.video_id}")
        attempt.credential = credential

        if credential.is_expired(self._clock()):
            raise CredentialExpired(f"Credential for {credential.video_id} expired before transfer")

        attempt.transition(UploadState.TRANSFERRING)
        await self._publish_state(attempt)

        async def on_bytes(bytes_sent: int, total_bytes: int) -> None:
            fraction = attempt.record_progress(bytes_sent, total_bytes)
            if fraction is None:
                return
            await self._events.emit(
                "progress",
                UploadProgress(attempt.upload_id, attempt.number, fraction, bytes_sent, total_bytes),
            )
            await invoke_callback(options.on_progress, fraction)

        status = await token.run(
            self._transport.put(credential.upload_url, path, request.content_type, on_bytes)
        )
        if not _is_success(status):
            raise TransferFailed(status, retryable=status not in self._config.non_retryable_statuses)
        return credential

    def _build_request(self, path: Path, options: UploadOptions) -> UploadRequest:
        try:
            stat = path.stat()
        except FileNotFoundError as exc:
            raise ResourceNotFound(f"Video file not found: {path}") from exc
        except OSError as exc:
            raise ResourceNotFound(f"Video file not readable: {path}: {exc}") from exc
        if not path.is_file():
            raise ResourceNotFound(f"Video file not found: {path}")

        return UploadRequest(
            path=path,
            content_type=options.content_type,
            file_name=options.file_name or path.name,
            size=stat.st_size,
            metadata=options.metadata,
        )

    def _reusable(self, credential: Optional[UploadCredential]) -> Optional[UploadCredential]:
        if credential is None or not self._config.reuse_credentials:
            return None
        if credential.is_expired(self._clock(), self._config.credential_expiry_margin):
            logger.debug(f"Credential for {credential.video_id} near expiry, requesting a new one")
            return None
        return credential

    async def _report_failure(
        self,
        attempt: UploadAttempt,
        error: UploadError,
        options: UploadOptions,
        retry_in: Optional[float],
    ) -> None:
        logger.warning(f"[{attempt.upload_id}] attempt {attempt.number + 1} failed: {error}")
        await self._events.emit(
            "error",
            AttemptFailed(attempt.upload_id, attempt.number, error, retry_in is not None, retry_in),
        )
        await invoke_callback(options.on_error, error)

    async def _publish_state(self, attempt: UploadAttempt) -> None:
        logger.debug(f"[{attempt.upload_id}] attempt {attempt.number + 1}: {attempt.state.value}")
        await self._events.emit("state", StateChanged(attempt.upload_id, attempt.number, attempt.state))
