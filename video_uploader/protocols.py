"""
Protocols (Interfaces) for Dependency Inversion.

Following Interface Segregation Principle - small, focused interfaces.
"""
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

from .models import UploadCredential, UploadRequest

# (bytes_sent, total_bytes)
ByteProgressCallback = Callable[[int, int], Awaitable[None]]


@runtime_checkable
class ICredentialIssuer(Protocol):
    """Interface for the signed-URL endpoint."""

    async def request_credential(self, request: UploadRequest) -> UploadCredential:
        """Obtain a write credential for ``request``."""
        ...

    async def confirm_upload(self, video_id: str) -> Dict[str, Any]:
        """Tell the backend the object for ``video_id`` is in place."""
        ...


@runtime_checkable
class ITransferTransport(Protocol):
    """Interface for the byte transfer to object storage."""

    async def put(
        self,
        url: str,
        path: Path,
        content_type: str,
        progress_callback: Optional[ByteProgressCallback] = None,
    ) -> int:
        """Send the whole file in one PUT and return the response status."""
        ...
