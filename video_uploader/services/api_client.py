"""HTTP adapter for the signed-URL endpoint."""
from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from ..errors import CredentialRequestFailed, NetworkError, Unauthenticated
from ..models import UploadConfig, UploadCredential, UploadRequest

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]

AUTH_STATUSES = (401, 403)


class HTTPCredentialClient:
    """
    HTTP client adapter for credential requests.

    Implements ICredentialIssuer protocol. Does not retry on its own;
    the orchestrator owns the retry budget.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        config: Optional[UploadConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._base_url = base_url
        self._token = token
        self._token_provider = token_provider
        self._config = config or UploadConfig(api_url=base_url)
        self._client = client
        self._owns_client = client is None
        self._clock = clock

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._config.http_timeout)
        return self

    async def __aexit__(self, *args):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _auth_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token
        if self._token_provider is not None:
            provided = self._token_provider()
            if inspect.isawaitable(provided):
                provided = await provided
            token = provided or token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _post(self, endpoint: str, json: Optional[Dict] = None) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPCredentialClient not initialized. Use 'async with' context.")

        headers = await self._auth_headers()
        try:
            response = await self._client.post(endpoint, json=json, headers=headers)
        except httpx.RequestError as exc:
            raise NetworkError(f"POST {endpoint} failed: {exc}") from exc

        if response.status_code in AUTH_STATUSES:
            raise Unauthenticated(
                f"User not authenticated: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise CredentialRequestFailed(
                f"API error {response.status_code} on POST {endpoint}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        return response

    async def request_credential(self, request: UploadRequest) -> UploadCredential:
        response = await self._post(self._config.credential_path, json=request.to_payload())
        issued_at = self._clock()
        try:
            data = response.json()
        except ValueError as exc:
            raise CredentialRequestFailed(
                f"Invalid credential response: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc

        credential = UploadCredential.from_response(data, issued_at=issued_at)
        logger.debug(
            f"Credential issued for {request.file_name}: video_id={credential.video_id} "
            f"expires_in={credential.expires_in:.0f}s"
        )
        return credential

    async def confirm_upload(self, video_id: str) -> Dict[str, Any]:
        endpoint = self._config.confirm_path.format(video_id=video_id)
        response = await self._post(endpoint)
        try:
            return response.json()
        except ValueError:
            return {}


def _error_detail(response: httpx.Response) -> Any:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        return data.get("message") or data.get("error") or data
    return data
