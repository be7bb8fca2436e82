"""Shared fakes for video_uploader tests."""
import asyncio
import time
from pathlib import Path

import pytest

from video_uploader.cancellation import CancellationToken
from video_uploader.models import UploadCredential


def make_credential(video_id="vid-1", expires_in=3600.0, issued_at=None):
    return UploadCredential(
        upload_url=f"https://storage.test/{video_id}?sig=abc",
        key=f"videos/user-1/{video_id}.mp4",
        video_id=video_id,
        expires_in=expires_in,
        issued_at=time.monotonic() if issued_at is None else issued_at,
        request_id=f"req-{video_id}",
    )


class FakeCredentials:
    """Credential issuer returning queued outcomes (credentials or exceptions)."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.requests = []
        self.request_times = []
        self.confirmed = []

    async def request_credential(self, request):
        self.requests.append(request)
        self.request_times.append(time.monotonic())
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = make_credential(f"vid-{len(self.requests)}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def confirm_upload(self, video_id):
        self.confirmed.append(video_id)
        return {"videoId": video_id, "status": "uploaded"}


class FakeTransport:
    """Transport reporting progress in ``chunks`` steps, then a queued status."""

    def __init__(self, statuses=None, chunks=4, gate=None):
        self.statuses = list(statuses or [])
        self.chunks = chunks
        self.gate = gate
        self.calls = []

    async def put(self, url, path, content_type, progress_callback=None):
        self.calls.append((url, Path(path), content_type))
        total = Path(path).stat().st_size
        for i in range(1, self.chunks + 1):
            if progress_callback is not None:
                await progress_callback(total * i // self.chunks, total)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.statuses.pop(0) if self.statuses else 200
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "jumpshot.mp4"
    path.write_bytes(b"\x00" * 4096)
    return path


@pytest.fixture
def sleeps(monkeypatch):
    """Replace backoff waits with a recorder; cancellation is still honoured."""
    recorded = []

    async def fake_sleep(self, delay):
        self.raise_if_cancelled()
        recorded.append(delay)
        await asyncio.sleep(0)

    monkeypatch.setattr(CancellationToken, "sleep", fake_sleep)
    return recorded
