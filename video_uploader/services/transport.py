"""
Transfer Transport - Single Responsibility: move file bytes to object storage.

One PUT per call against a signed URL, body streamed from disk.
"""
import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx

from ..errors import NetworkError, ResourceNotFound
from ..protocols import ByteProgressCallback

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class HTTPTransferTransport:
    """
    Streams a file to a signed URL with httpx.

    Implements ITransferTransport protocol.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 60.0,
    ):
        """
        Initialize transport.

        Args:
            client: Shared httpx client (created in __aenter__ when omitted)
            chunk_size: Bytes read from disk per progress step
            timeout: Per-operation httpx timeout
        """
        self._client = client
        self._owns_client = client is None
        self._chunk_size = chunk_size
        self._timeout = timeout

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, *args):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def put(
        self,
        url: str,
        path: Path,
        content_type: str,
        progress_callback: Optional[ByteProgressCallback] = None,
    ) -> int:
        """
        Upload ``path`` to ``url``.

        Returns:
            HTTP status code of the storage response
        """
        if not self._client:
            raise RuntimeError("HTTPTransferTransport not initialized. Use 'async with' context.")

        path = Path(path)
        try:
            total = path.stat().st_size
        except FileNotFoundError as exc:
            raise ResourceNotFound(f"Video file not found: {path}") from exc
        except OSError as exc:
            raise ResourceNotFound(f"Video file not readable: {path}: {exc}") from exc

        headers = {"Content-Type": content_type, "Content-Length": str(total)}
        try:
            response = await self._client.put(
                url,
                content=self._stream(path, total, progress_callback),
                headers=headers,
            )
        except httpx.RequestError as exc:
            raise NetworkError(f"PUT to storage failed: {exc}") from exc
        except OSError as exc:
            # Disk read failed while streaming the body
            raise NetworkError(f"Reading {path.name} failed mid-transfer: {exc}") from exc

        logger.debug(f"Storage answered {response.status_code} for {path.name}")
        return response.status_code

    async def _stream(
        self,
        path: Path,
        total: int,
        progress_callback: Optional[ByteProgressCallback],
    ) -> AsyncIterator[bytes]:
        sent = 0
        try:
            f = open(path, "rb")
        except FileNotFoundError as exc:
            raise ResourceNotFound(f"Video file not found: {path}") from exc

        with f:
            while True:
                # Keep disk reads off the event loop
                chunk = await asyncio.to_thread(f.read, self._chunk_size)
                if not chunk:
                    break
                sent += len(chunk)
                yield chunk
                if progress_callback is not None:
                    await progress_callback(sent, total)

        if sent == 0 and progress_callback is not None:
            await progress_callback(0, 0)
