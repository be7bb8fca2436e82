"""Services for video_uploader module."""
from .api_client import HTTPCredentialClient
from .transport import HTTPTransferTransport

__all__ = [
    "HTTPCredentialClient",
    "HTTPTransferTransport",
]
