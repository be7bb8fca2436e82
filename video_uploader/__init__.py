"""
video_uploader - Resilient video upload to object storage via signed URLs.

Follows SOLID principles:
- Single Responsibility: Each service handles one concern
- Liskov Substitution: Services implement protocols
- Interface Segregation: Small focused interfaces
- Dependency Injection: Services and registry injected into orchestrator

Usage:
    from video_uploader import UploadOrchestrator, UploadOptions, CaptureMetadata

    options = UploadOptions(
        content_type="video/mp4",
        metadata=CaptureMetadata(duration=12.5, fps=60, angle="side"),
        on_progress=lambda fraction: print(f"{fraction:.0%}"),
    )
    async with UploadOrchestrator(api_url, token=firebase_token) as uploader:
        credential = await uploader.start(video_path, options)
        print(credential.video_id)

    # Cancel from elsewhere
    handle = uploader.submit(video_path, options)
    uploader.cancel(handle.upload_id)
"""
from .cancellation import CancellationToken
from .errors import (
    CredentialExpired,
    CredentialRequestFailed,
    NetworkError,
    ResourceNotFound,
    TransferFailed,
    Unauthenticated,
    UploadCancelled,
    UploadError,
)
from .models import (
    CaptureMetadata,
    RetryPolicy,
    UploadConfig,
    UploadCredential,
    UploadOptions,
    UploadRequest,
)
from .orchestrator import UploadHandle, UploadOrchestrator, UploadState
from .registry import ActiveUploadRegistry
from .services import HTTPCredentialClient, HTTPTransferTransport

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "UploadHandle",
    "UploadState",
    "ActiveUploadRegistry",
    "CancellationToken",
    # Models
    "CaptureMetadata",
    "RetryPolicy",
    "UploadConfig",
    "UploadCredential",
    "UploadOptions",
    "UploadRequest",
    # Services
    "HTTPCredentialClient",
    "HTTPTransferTransport",
    # Errors
    "UploadError",
    "ResourceNotFound",
    "Unauthenticated",
    "UploadCancelled",
    "TransferFailed",
    "NetworkError",
    "CredentialRequestFailed",
    "CredentialExpired",
]
