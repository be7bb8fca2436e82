"""Tests for UploadOrchestrator retry, cancellation and registry behaviour."""
import asyncio
import time

import pytest

from conftest import FakeCredentials, FakeTransport, make_credential
from video_uploader.errors import (
    CredentialExpired,
    NetworkError,
    ResourceNotFound,
    TransferFailed,
    Unauthenticated,
    UploadCancelled,
)
from video_uploader.models import CaptureMetadata, RetryPolicy, UploadConfig, UploadOptions
from video_uploader.orchestrator import UploadOrchestrator, UploadState
from video_uploader.registry import ActiveUploadRegistry


class Recorder:
    def __init__(self):
        self.progress = []
        self.errors = []
        self.successes = []

    def options(self, **kwargs):
        kwargs.setdefault("content_type", "video/mp4")
        return UploadOptions(
            on_progress=self.progress.append,
            on_error=self.errors.append,
            on_success=self.successes.append,
            **kwargs,
        )


def _orchestrator(credentials, transport, config=None, registry=None):
    return UploadOrchestrator(
        credential_client=credentials,
        transport=transport,
        config=config,
        registry=registry,
    )


async def _wait_for(predicate, timeout=1.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.mark.asyncio
async def test_missing_file_fails_without_credential_request(tmp_path, sleeps):
    credentials, transport, rec = FakeCredentials(), FakeTransport(), Recorder()

    async with _orchestrator(credentials, transport) as orchestrator:
        with pytest.raises(ResourceNotFound):
            await orchestrator.start(tmp_path / "missing.mp4", rec.options())
        assert orchestrator.active_uploads() == []

    assert credentials.requests == []
    assert transport.calls == []
    assert sleeps == []
    assert len(rec.errors) == 1
    assert rec.successes == []


@pytest.mark.asyncio
async def test_auth_error_is_terminal_without_transfer(video_file, sleeps):
    credentials = FakeCredentials([Unauthenticated("User not authenticated", status_code=401)])
    transport, rec = FakeTransport(), Recorder()

    async with _orchestrator(credentials, transport) as orchestrator:
        with pytest.raises(Unauthenticated):
            await orchestrator.start(video_file, rec.options())

    assert len(credentials.requests) == 1
    assert transport.calls == []
    assert sleeps == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        ResourceNotFound("Video file not found"),
        Unauthenticated("Invalid or expired token"),
        UploadCancelled("Upload cancelled"),
    ],
)
async def test_non_retryable_errors_fail_on_first_occurrence(video_file, sleeps, error):
    credentials, rec = FakeCredentials([error]), Recorder()

    async with _orchestrator(credentials, FakeTransport()) as orchestrator:
        with pytest.raises(type(error)) as excinfo:
            await orchestrator.start(video_file, rec.options())

    assert excinfo.value is error
    assert len(credentials.requests) == 1
    assert sleeps == []
    assert rec.errors == [error]


@pytest.mark.asyncio
async def test_transfer_500_twice_then_success(video_file, sleeps):
    credentials = FakeCredentials()
    transport = FakeTransport(statuses=[500, 500, 200])
    rec = Recorder()

    async with _orchestrator(credentials, transport) as orchestrator:
        credential = await orchestrator.start(video_file, rec.options())
        assert orchestrator.active_uploads() == []

    assert credential.video_id == "vid-3"
    assert len(credentials.requests) == 3
    assert len(rec.errors) == 2
    assert all(isinstance(e, TransferFailed) and e.status_code == 500 for e in rec.errors)
    assert rec.successes == [credential]
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_transfer_always_500_surfaces_last_error(video_file, sleeps):
    transport = FakeTransport(statuses=[500] * 4)
    rec = Recorder()

    async with _orchestrator(FakeCredentials(), transport) as orchestrator:
        with pytest.raises(TransferFailed) as excinfo:
            await orchestrator.start(video_file, rec.options())
        assert orchestrator.active_uploads() == []

    assert excinfo.value.status_code == 500
    assert "500" in str(excinfo.value)
    assert excinfo.value is rec.errors[-1]
    assert len(transport.calls) == 4
    assert len(rec.errors) == 4
    assert rec.successes == []
    assert sleeps == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2, 3, 4, 6])
async def test_credential_requests_match_failures(video_file, sleeps, failures):
    credentials = FakeCredentials([NetworkError("connection reset")] * failures)

    async with _orchestrator(credentials, FakeTransport()) as orchestrator:
        if failures > 3:
            with pytest.raises(NetworkError):
                await orchestrator.start(video_file, Recorder().options())
        else:
            await orchestrator.start(video_file, Recorder().options())

    assert len(credentials.requests) == min(failures + 1, 4)
    assert sleeps == [1.0, 2.0, 4.0][: min(failures, 3)]


@pytest.mark.asyncio
async def test_per_call_retry_policy_overrides_config(video_file, sleeps):
    credentials = FakeCredentials([NetworkError("down")] * 10)
    policy = RetryPolicy(max_retries=4, initial_delay=0.5, backoff_multiplier=3)

    async with _orchestrator(credentials, FakeTransport()) as orchestrator:
        with pytest.raises(NetworkError):
            await orchestrator.start(video_file, Recorder().options(retry=policy))

    assert len(credentials.requests) == 5
    assert sleeps == [0.5, 1.5, 4.5, 13.5]


@pytest.mark.asyncio
async def test_backoff_waits_are_observed(video_file):
    credentials = FakeCredentials()
    transport = FakeTransport(statuses=[500, 500, 200])
    config = UploadConfig(retry=RetryPolicy(max_retries=3, initial_delay=0.05, backoff_multiplier=2))

    async with _orchestrator(credentials, transport, config) as orchestrator:
        await orchestrator.start(video_file, Recorder().options())

    times = credentials.request_times
    gaps = [later - earlier for earlier, later in zip(times, times[1:])]
    assert gaps[0] >= 0.045
    assert gaps[1] >= 0.095
    assert gaps[0] < 0.5 and gaps[1] < 0.6


@pytest.mark.asyncio
async def test_progress_is_bounded_and_non_decreasing(video_file, sleeps):
    rec = Recorder()

    async with _orchestrator(FakeCredentials(), FakeTransport(chunks=8)) as orchestrator:
        await orchestrator.start(video_file, rec.options())

    assert rec.progress
    assert all(0.0 <= p <= 1.0 for p in rec.progress)
    assert rec.progress == sorted(rec.progress)
    assert rec.progress[-1] == 1.0


@pytest.mark.asyncio
async def test_request_carries_size_and_capture_metadata(video_file, sleeps):
    credentials = FakeCredentials()
    transport = FakeTransport()
    options = Recorder().options(
        content_type="video/quicktime",
        file_name="practice.mov",
        metadata=CaptureMetadata(duration=12.5, fps=60, angle="side"),
    )

    async with _orchestrator(credentials, transport) as orchestrator:
        credential = await orchestrator.start(video_file, options)

    request = credentials.requests[0]
    assert request.size == 4096
    assert request.to_payload() == {
        "filename": "practice.mov",
        "contentType": "video/quicktime",
        "fileSize": 4096,
        "duration": 12.5,
        "fps": 60,
        "angle": "side",
    }
    assert transport.calls == [(credential.upload_url, video_file, "video/quicktime")]


@pytest.mark.asyncio
async def test_cancel_during_transfer(video_file, sleeps):
    credentials = FakeCredentials()
    transport = FakeTransport(gate=asyncio.Event())
    rec = Recorder()

    async with _orchestrator(credentials, transport) as orchestrator:
        handle = orchestrator.submit(video_file, rec.options())
        assert handle.upload_id in orchestrator.active_uploads()
        await _wait_for(lambda: transport.calls)

        assert orchestrator.cancel(handle.upload_id) is True
        assert handle.upload_id not in orchestrator.registry

        with pytest.raises(UploadCancelled):
            await asyncio.wait_for(handle.wait(), timeout=1)

        assert orchestrator.active_uploads() == []

    assert len(credentials.requests) == 1
    assert sleeps == []
    assert rec.successes == []
    assert isinstance(rec.errors[-1], UploadCancelled)


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_further_requests(video_file):
    credentials = FakeCredentials()
    transport = FakeTransport(statuses=[500])
    failed = asyncio.Event()
    config = UploadConfig(retry=RetryPolicy(max_retries=3, initial_delay=30.0))
    errors = []
    events = []

    def on_error(error):
        errors.append(error)
        failed.set()

    options = UploadOptions(content_type="video/mp4", on_error=on_error)

    async with _orchestrator(credentials, transport, config) as orchestrator:
        for name in ("error", "state"):
            orchestrator.events.on(name, lambda event, name=name: events.append((name, event)))
        handle = orchestrator.submit(video_file, options)
        await asyncio.wait_for(failed.wait(), timeout=1)
        events.clear()
        orchestrator.cancel(handle.upload_id)

        with pytest.raises(UploadCancelled):
            await asyncio.wait_for(handle.wait(), timeout=1)

    assert len(credentials.requests) == 1
    assert len(transport.calls) == 1

    assert [type(error) for error in errors] == [TransferFailed, UploadCancelled]
    assert [name for name, _ in events] == ["state", "error"]
    state_event, error_event = (event for _, event in events)
    assert state_event.state is UploadState.CANCELLED
    assert isinstance(error_event.error, UploadCancelled)
    assert error_event.will_retry is False


@pytest.mark.asyncio
async def test_closing_one_orchestrator_spares_uploads_of_another(video_file, sleeps):
    registry = ActiveUploadRegistry()
    gate = asyncio.Event()
    rec = Recorder()

    async with _orchestrator(FakeCredentials(), FakeTransport(gate=gate), registry=registry) as owner:
        handle = owner.submit(video_file, rec.options(upload_id="owner-1"))
        await _wait_for(lambda: rec.progress)

        async with _orchestrator(FakeCredentials(), FakeTransport(), registry=registry):
            pass

        assert "owner-1" in registry
        assert not registry.get("owner-1").cancelled
        gate.set()
        credential = await handle.wait()

    assert credential.video_id == "vid-1"
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_closing_orchestrator_cancels_its_own_uploads(video_file, sleeps):
    registry = ActiveUploadRegistry()

    async with _orchestrator(FakeCredentials(), FakeTransport(gate=asyncio.Event()), registry=registry) as orchestrator:
        handle = orchestrator.submit(video_file, Recorder().options(upload_id="mine"))
        await asyncio.sleep(0)

    with pytest.raises(UploadCancelled, match="Orchestrator closed"):
        await handle.wait()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_connection_reset_is_reported_and_retried(video_file, sleeps):
    transport = FakeTransport(statuses=[ConnectionResetError("peer reset"), 200])
    rec = Recorder()

    async with _orchestrator(FakeCredentials(), transport) as orchestrator:
        credential = await orchestrator.start(video_file, rec.options())

    assert credential.video_id == "vid-2"
    assert len(transport.calls) == 2
    assert sleeps == [1.0]
    assert len(rec.errors) == 1
    assert isinstance(rec.errors[0], NetworkError)
    assert isinstance(rec.errors[0].__cause__, ConnectionResetError)


@pytest.mark.asyncio
async def test_credential_timeout_exhausts_budget_as_network_error(video_file, sleeps):
    credentials = FakeCredentials([asyncio.TimeoutError()] * 4)
    rec = Recorder()

    async with _orchestrator(credentials, FakeTransport()) as orchestrator:
        with pytest.raises(NetworkError):
            await orchestrator.start(video_file, rec.options())

    assert len(credentials.requests) == 4
    assert len(rec.errors) == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_only_final_states_are_terminal():
    assert not UploadState.FAILED_RETRYABLE.terminal
    assert all(state.terminal for state in (UploadState.SUCCEEDED, UploadState.FAILED, UploadState.CANCELLED))


@pytest.mark.asyncio
async def test_cancel_unknown_or_finished_id_is_noop(video_file, sleeps):
    async with _orchestrator(FakeCredentials(), FakeTransport()) as orchestrator:
        assert orchestrator.cancel("does-not-exist") is False

        handle = orchestrator.submit(video_file, Recorder().options(upload_id="done-1"))
        await handle.wait()
        assert handle.done()
        assert orchestrator.cancel("done-1") is False
        assert handle.cancel() is False
        assert orchestrator.active_uploads() == []


@pytest.mark.asyncio
async def test_upload_is_registered_while_in_flight(video_file, sleeps):
    seen = []

    async with _orchestrator(FakeCredentials(), FakeTransport()) as orchestrator:
        options = UploadOptions(
            content_type="video/mp4",
            upload_id="shot-42",
            on_progress=lambda _: seen.append(orchestrator.active_uploads()),
        )
        await orchestrator.start(video_file, options)
        assert orchestrator.active_uploads() == []

    assert seen and all(ids == ["shot-42"] for ids in seen)


@pytest.mark.asyncio
async def test_duplicate_upload_id_is_rejected(video_file, sleeps):
    gate = asyncio.Event()
    async with _orchestrator(FakeCredentials(), FakeTransport(gate=gate)) as orchestrator:
        handle = orchestrator.submit(video_file, Recorder().options(upload_id="same"))
        with pytest.raises(ValueError):
            await orchestrator.start(video_file, Recorder().options(upload_id="same"))
        gate.set()
        await handle.wait()


@pytest.mark.asyncio
async def test_shared_registry_is_used(video_file, sleeps):
    registry = ActiveUploadRegistry()
    gate = asyncio.Event()
    transport = FakeTransport(gate=gate)

    async with _orchestrator(FakeCredentials(), transport, registry=registry) as orchestrator:
        handle = orchestrator.submit(video_file, Recorder().options(upload_id="ext-1"))
        assert "ext-1" in registry
        assert registry.cancel("ext-1") is True
        with pytest.raises(UploadCancelled):
            await handle.wait()

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_concurrent_uploads_are_independent(video_file, sleeps):
    credentials = FakeCredentials()
    gate = asyncio.Event()

    async with _orchestrator(credentials, FakeTransport(gate=gate)) as orchestrator:
        first = orchestrator.submit(video_file, Recorder().options(upload_id="a"))
        second = orchestrator.submit(video_file, Recorder().options(upload_id="b"))
        assert sorted(orchestrator.active_uploads()) == ["a", "b"]

        orchestrator.cancel("a")
        with pytest.raises(UploadCancelled):
            await first.wait()
        assert orchestrator.active_uploads() == ["b"]

        gate.set()
        credential = await second.wait()
        assert credential.video_id.startswith("vid-")
        assert orchestrator.active_uploads() == []


@pytest.mark.asyncio
async def test_deadline_behaves_like_cancellation(video_file, sleeps):
    transport = FakeTransport(gate=asyncio.Event())

    async with _orchestrator(FakeCredentials(), transport) as orchestrator:
        with pytest.raises(UploadCancelled, match="deadline"):
            await orchestrator.start(video_file, Recorder().options(deadline=0.05))
        assert orchestrator.active_uploads() == []


@pytest.mark.asyncio
async def test_reused_credential_is_refreshed_once_expired(video_file, sleeps):
    stale = make_credential("stale", expires_in=0.0)
    fresh = make_credential("fresh")
    credentials = FakeCredentials([stale, fresh])
    transport = FakeTransport(statuses=[200])
    rec = Recorder()

    async with _orchestrator(credentials, transport, UploadConfig(reuse_credentials=True)) as orchestrator:
        credential = await orchestrator.start(video_file, rec.options())

    assert credential is fresh
    assert len(credentials.requests) == 2
    assert len(transport.calls) == 1
    assert isinstance(rec.errors[0], CredentialExpired)


@pytest.mark.asyncio
async def test_valid_credential_is_reused_when_enabled(video_file, sleeps):
    credentials = FakeCredentials()
    transport = FakeTransport(statuses=[503, 200])

    async with _orchestrator(credentials, transport, UploadConfig(reuse_credentials=True)) as orchestrator:
        credential = await orchestrator.start(video_file, Recorder().options())

    assert credential.video_id == "vid-1"
    assert len(credentials.requests) == 1
    assert [call[0] for call in transport.calls] == [credential.upload_url] * 2


@pytest.mark.asyncio
async def test_configured_status_is_not_retried(video_file, sleeps):
    transport = FakeTransport(statuses=[403, 200])
    config = UploadConfig(non_retryable_statuses=frozenset({403}))

    async with _orchestrator(FakeCredentials(), transport, config) as orchestrator:
        with pytest.raises(TransferFailed) as excinfo:
            await orchestrator.start(video_file, Recorder().options())

    assert excinfo.value.status_code == 403
    assert excinfo.value.retryable is False
    assert len(transport.calls) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_typed_events_are_emitted_in_order(video_file, sleeps):
    events = []

    async with _orchestrator(FakeCredentials(), FakeTransport(statuses=[500, 200])) as orchestrator:
        for name in ("error", "retry", "success", "state"):
            orchestrator.events.on(name, lambda event, name=name: events.append((name, event)))
        await orchestrator.start(video_file, Recorder().options(upload_id="evt"))

    names = [name for name, _ in events if name != "state"]
    assert names == ["error", "retry", "success"]

    retry = next(event for name, event in events if name == "retry")
    assert retry.delay == 1.0

    failed = next(event for name, event in events if name == "error")
    assert failed.will_retry is True and failed.retry_in == 1.0

    states = [(event.attempt, event.state) for name, event in events if name == "state"]
    assert states == [
        (0, UploadState.REQUESTING_CREDENTIAL),
        (0, UploadState.TRANSFERRING),
        (0, UploadState.FAILED_RETRYABLE),
        (1, UploadState.REQUESTING_CREDENTIAL),
        (1, UploadState.TRANSFERRING),
        (1, UploadState.SUCCEEDED),
    ]

    success = next(event for name, event in events if name == "success")
    assert success.attempts == 2 and success.upload_id == "evt"


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_upload(video_file, sleeps):
    def explode(_):
        raise RuntimeError("listener bug")

    options = UploadOptions(content_type="video/mp4", on_progress=explode, on_success=explode)

    async with _orchestrator(FakeCredentials(), FakeTransport()) as orchestrator:
        credential = await orchestrator.start(video_file, options)

    assert credential.video_id == "vid-1"


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(video_file, sleeps):
    received = []

    async def on_success(credential):
        await asyncio.sleep(0)
        received.append(credential.video_id)

    async with _orchestrator(FakeCredentials(), FakeTransport()) as orchestrator:
        await orchestrator.start(video_file, UploadOptions(content_type="video/mp4", on_success=on_success))

    assert received == ["vid-1"]


@pytest.mark.asyncio
async def test_confirm_delegates_to_credential_client(video_file, sleeps):
    credentials = FakeCredentials()

    async with _orchestrator(credentials, FakeTransport()) as orchestrator:
        credential = await orchestrator.start(video_file, Recorder().options())
        result = await orchestrator.confirm(credential.video_id)

    assert credentials.confirmed == ["vid-1"]
    assert result["status"] == "uploaded"


@pytest.mark.asyncio
async def test_generated_upload_ids_are_unique(video_file, sleeps):
    async with _orchestrator(FakeCredentials(), FakeTransport()) as orchestrator:
        handles = [orchestrator.submit(video_file, Recorder().options()) for _ in range(5)]
        ids = {handle.upload_id for handle in handles}
        await asyncio.gather(*(handle.wait() for handle in handles))

    assert len(ids) == 5
    assert all("_" in upload_id for upload_id in ids)


def test_start_requires_context(video_file):
    orchestrator = _orchestrator(FakeCredentials(), FakeTransport())
    with pytest.raises(AssertionError):
        orchestrator.submit(video_file, Recorder().options())
