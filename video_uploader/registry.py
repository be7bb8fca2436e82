"""Registry of in-flight uploads and their cancellation handles."""
import logging
import threading
from typing import Dict, List, Optional

from .cancellation import DEFAULT_REASON, CancellationToken

logger = logging.getLogger(__name__)


class ActiveUploadRegistry:
    """
    Maps upload ids to the cancellation token of the upload running under them.

    Constructed explicitly and shared by reference; one registry per
    composing component. All access goes through a single lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[str, CancellationToken] = {}

    def register(self, upload_id: str, token: CancellationToken) -> None:
        with self._lock:
            if upload_id in self._tokens:
                raise ValueError(f"Upload already active: {upload_id}")
            self._tokens[upload_id] = token
        logger.debug(f"Registered upload {upload_id}")

    def unregister(self, upload_id: str, token: Optional[CancellationToken] = None) -> bool:
        """
        Remove ``upload_id``.

        With ``token`` given, only removes the entry if it still belongs to
        that token, so a finished upload never drops a newer one's handle.
        """
        with self._lock:
            current = self._tokens.get(upload_id)
            if current is None or (token is not None and current is not token):
                return False
            del self._tokens[upload_id]
        logger.debug(f"Unregistered upload {upload_id}")
        return True

    def get(self, upload_id: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(upload_id)

    def cancel(self, upload_id: str, reason: str = DEFAULT_REASON) -> bool:
        """Cancel and forget ``upload_id``. Unknown ids are ignored."""
        with self._lock:
            token = self._tokens.pop(upload_id, None)
        if token is None:
            logger.debug(f"Cancel ignored for unknown upload {upload_id}")
            return False
        token.cancel(reason)
        return True

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._tokens)

    def __contains__(self, upload_id: object) -> bool:
        with self._lock:
            return upload_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
