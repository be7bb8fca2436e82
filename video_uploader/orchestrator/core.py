"""Core orchestrator - coordinates upload workflows."""
import asyncio
import logging
import secrets
import string
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..cancellation import CancellationToken
from ..models import UploadConfig, UploadCredential, UploadOptions
from ..protocols import ICredentialIssuer, ITransferTransport
from ..registry import ActiveUploadRegistry
from ..services.api_client import HTTPCredentialClient, TokenProvider
from ..services.transport import HTTPTransferTransport
from ..utils.events import EventEmitter

from .models import UploadHandle
from .single_upload import SingleUploadHandler

logger = logging.getLogger(__name__)

DEADLINE_REASON = "Upload deadline exceeded"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_upload_id() -> str:
    """``<epoch millis>_<9 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}_{suffix}"


class UploadOrchestrator:
    """
    Orchestrates video uploads using injected services.

    Follows:
    - Dependency Injection (services and registry injected)
    - Single Responsibility (delegates retries to SingleUploadHandler)

    Usage:
        async with UploadOrchestrator(api_url, token=token) as uploader:
            credential = await uploader.start(path, UploadOptions(content_type="video/mp4"))

        # Cancellable from elsewhere
        handle = uploader.submit(path, options)
        uploader.cancel(handle.upload_id)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        config: Optional[UploadConfig] = None,
        registry: Optional[ActiveUploadRegistry] = None,
        credential_client: Optional[ICredentialIssuer] = None,
        transport: Optional[ITransferTransport] = None,
        events: Optional[EventEmitter] = None,
        token_provider: Optional[TokenProvider] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            api_url: Backend base URL (defaults to config.api_url)
            token: Bearer token for the credential endpoint
            config: Upload configuration
            registry: Active upload registry shared with the caller
            credential_client: Pre-built credential issuer
            transport: Pre-built transfer transport
            events: Event emitter receiving typed upload events
            token_provider: Callable returning the bearer token per request
        """
        self._config = config or UploadConfig()
        self._api_url = api_url or self._config.api_url
        self._token = token
        self._token_provider = token_provider
        self._registry = registry if registry is not None else ActiveUploadRegistry()
        self._events = events or EventEmitter()

        self._credentials = credential_client
        self._transport = transport
        # Collaborators built here are closed in __aexit__
        self._owned: List[Any] = []
        self._handler: Optional[SingleUploadHandler] = None
        # Ids registered by this orchestrator; the registry may be shared
        self._own_tokens: Dict[str, CancellationToken] = {}

    async def __aenter__(self):
        """Initialize services and handler."""
        if self._credentials is None:
            client = HTTPCredentialClient(
                self._api_url,
                token=self._token,
                token_provider=self._token_provider,
                config=self._config,
            )
            await client.__aenter__()
            self._owned.append(client)
            self._credentials = client

        if self._transport is None:
            transport = HTTPTransferTransport(
                chunk_size=self._config.chunk_size,
                timeout=self._config.http_timeout,
            )
            await transport.__aenter__()
            self._owned.append(transport)
            self._transport = transport

        self._handler = SingleUploadHandler(
            self._credentials,
            self._transport,
            self._config,
            self._events,
        )
        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        for upload_id, token in list(self._own_tokens.items()):
            token.cancel("Orchestrator closed")
            self._registry.unregister(upload_id, token)
        while self._owned:
            await self._owned.pop().__aexit__(*args)

    @property
    def registry(self) -> ActiveUploadRegistry:
        return self._registry

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def config(self) -> UploadConfig:
        return self._config

    async def start(self, path: Path, options: UploadOptions) -> UploadCredential:
        """Upload ``path`` and return the credential identifying the stored video."""
        upload_id, token = self._register(options)
        try:
            return await self._run(upload_id, token, path, options)
        finally:
            self._release(upload_id, token)

    def submit(self, path: Path, options: UploadOptions) -> UploadHandle:
        """Schedule an upload and return its handle right away."""
        upload_id, token = self._register(options)
        task = asyncio.create_task(self._run(upload_id, token, path, options))
        # Also covers a task cancelled before it ever ran
        task.add_done_callback(lambda _: self._release(upload_id, token))
        return UploadHandle(upload_id, task, self._registry)

    def cancel(self, upload_id: str) -> bool:
        """Cancel an in-flight upload. Unknown or finished ids are ignored."""
        cancelled = self._registry.cancel(upload_id)
        if cancelled:
            logger.info(f"[{upload_id}] cancellation requested")
        return cancelled

    def active_uploads(self) -> List[str]:
        return self._registry.ids()

    async def confirm(self, video_id: str) -> Dict[str, Any]:
        """Mark an uploaded video as complete on the backend."""
        assert self._credentials is not None
        return await self._credentials.confirm_upload(video_id)

    def _register(self, options: UploadOptions) -> Tuple[str, CancellationToken]:
        assert self._handler is not None, "UploadOrchestrator not initialized. Use 'async with' context."
        upload_id = options.upload_id or generate_upload_id()
        token = CancellationToken()
        self._registry.register(upload_id, token)
        self._own_tokens[upload_id] = token
        return upload_id, token

    def _release(self, upload_id: str, token: CancellationToken) -> None:
        if self._own_tokens.get(upload_id) is token:
            del self._own_tokens[upload_id]
        self._registry.unregister(upload_id, token)

    async def _run(
        self,
        upload_id: str,
        token: CancellationToken,
        path: Path,
        options: UploadOptions,
    ) -> UploadCredential:
        assert self._handler is not None
        timer = None
        if options.deadline is not None:
            loop = asyncio.get_running_loop()
            timer = loop.call_later(options.deadline, token.cancel, DEADLINE_REASON)
        try:
            return await self._handler.upload(upload_id, path, options, token)
        finally:
            if timer is not None:
                timer.cancel()
