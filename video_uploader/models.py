"""
Models for video_uploader module.

Immutable dataclasses following Single Responsibility Principle.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from .errors import CredentialRequestFailed


@dataclass(frozen=True)
class CaptureMetadata:
    """Immutable capture details sent along with the credential request."""
    duration: Optional[float] = None  # seconds
    fps: Optional[float] = None
    angle: Optional[str] = None  # front, side, 3quarter, overhead

    def to_payload(self) -> Dict[str, Any]:
        payload = {"duration": self.duration, "fps": self.fps, "angle": self.angle}
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class UploadRequest:
    """What is about to be uploaded, as seen at the start of one attempt."""
    path: Path
    content_type: str
    file_name: str
    size: int
    metadata: CaptureMetadata = field(default_factory=CaptureMetadata)

    def to_payload(self) -> Dict[str, Any]:
        """Body for the signed-URL endpoint."""
        payload = {
            "filename": self.file_name,
            "contentType": self.content_type,
            "fileSize": self.size,
        }
        payload.update(self.metadata.to_payload())
        return payload


@dataclass(frozen=True)
class UploadCredential:
    """Immutable signed-URL grant returned by the credential endpoint."""
    upload_url: str
    key: str
    video_id: str
    expires_in: float  # seconds, from issued_at
    issued_at: float  # monotonic clock reading
    request_id: Optional[str] = None

    @property
    def deadline(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self, now: float, margin: float = 0.0) -> bool:
        """True once ``now`` is within ``margin`` seconds of the deadline."""
        return now >= self.deadline - margin

    @classmethod
    def from_response(
        cls,
        data: Dict[str, Any],
        issued_at: float,
        now: Optional[datetime] = None,
    ) -> "UploadCredential":
        """
        Build a credential from the endpoint's JSON body.

        Accepts ``putUrl`` or ``uploadUrl`` for the write URL, and ``expiresIn``
        (seconds) or ``expiresAt`` (ISO-8601) for the validity window.
        """
        if not isinstance(data, dict):
            raise CredentialRequestFailed("Credential response is not a JSON object")

        upload_url = data.get("putUrl") or data.get("uploadUrl")
        key = data.get("key")
        video_id = data.get("videoId")
        missing = [
            name for name, value in (("putUrl", upload_url), ("key", key), ("videoId", video_id))
            if not value
        ]
        if missing:
            raise CredentialRequestFailed(
                f"Credential response missing fields: {', '.join(missing)}"
            )

        return cls(
            upload_url=upload_url,
            key=key,
            video_id=video_id,
            expires_in=_parse_expiry(data, now),
            issued_at=issued_at,
            request_id=data.get("requestId"),
        )


def _parse_expiry(data: Dict[str, Any], now: Optional[datetime]) -> float:
    if data.get("expiresIn") is not None:
        try:
            return max(float(data["expiresIn"]), 0.0)
        except (TypeError, ValueError) as exc:
            raise CredentialRequestFailed(f"Invalid expiresIn: {data['expiresIn']!r}") from exc

    expires_at = data.get("expiresAt")
    if expires_at:
        try:
            when = datetime.fromisoformat(str(expires_at).replace("Z", "+00:00"))
        except ValueError as exc:
            raise CredentialRequestFailed(f"Invalid expiresAt: {expires_at!r}") from exc
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return max((when - now).total_seconds(), 0.0)

    raise CredentialRequestFailed("Credential response missing fields: expiresIn")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""
    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_index: int) -> float:
        """Wait before retry number ``retry_index`` (0-based)."""
        return self.initial_delay * self.backoff_multiplier ** retry_index

    def delays(self) -> Tuple[float, ...]:
        return tuple(self.delay_for(i) for i in range(self.max_retries))


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    api_url: str = "http://localhost:3000"
    credential_path: str = "/api/videos/signed-url"
    confirm_path: str = "/api/videos/{video_id}/confirm"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    chunk_size: int = 1024 * 1024
    http_timeout: float = 60.0
    reuse_credentials: bool = False
    credential_expiry_margin: float = 30.0
    non_retryable_statuses: FrozenSet[int] = frozenset()

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if self.credential_expiry_margin < 0:
            raise ValueError("credential_expiry_margin must be >= 0")

    def with_retry(self, **overrides) -> "UploadConfig":
        return replace(self, retry=replace(self.retry, **overrides))


ProgressCallback = Callable[[float], Any]
ErrorCallback = Callable[[Exception], Any]
SuccessCallback = Callable[[UploadCredential], Any]


@dataclass(frozen=True)
class UploadOptions:
    """Per-call upload options. Callbacks may be plain functions or coroutines."""
    content_type: str
    file_name: Optional[str] = None
    metadata: CaptureMetadata = field(default_factory=CaptureMetadata)
    on_progress: Optional[ProgressCallback] = None
    on_error: Optional[ErrorCallback] = None
    on_success: Optional[SuccessCallback] = None
    upload_id: Optional[str] = None
    retry: Optional[RetryPolicy] = None
    deadline: Optional[float] = None  # seconds for the whole call

    def __post_init__(self):
        if not self.content_type:
            raise ValueError("content_type is required")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline must be > 0")
