"""
Upload error taxonomy.

Every failure raised by the upload pipeline is an ``UploadError``. The
``retryable`` flag decides whether the orchestrator spends retry budget on it.
"""
from typing import Optional


class UploadError(Exception):
    """Base class for upload failures."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable


class ResourceNotFound(UploadError):
    """Local file is missing or unreadable."""

    retryable = False


class Unauthenticated(UploadError):
    """Credential endpoint rejected the caller."""

    retryable = False


class UploadCancelled(UploadError):
    """Upload was cancelled (explicitly or by deadline)."""

    retryable = False


class TransferFailed(UploadError):
    """Object storage answered the PUT with a non-2xx status."""

    def __init__(self, status_code: int, detail: Optional[str] = None, retryable: Optional[bool] = None):
        message = f"Upload failed with status: {status_code}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, status_code=status_code, retryable=retryable)


class NetworkError(UploadError):
    """Connection-level failure talking to the backend or storage."""


class CredentialRequestFailed(UploadError):
    """Credential endpoint failed for a reason other than authentication."""


class CredentialExpired(CredentialRequestFailed):
    """Credential passed its local deadline before the transfer started."""
