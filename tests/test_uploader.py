"""Tests for the upload orchestrator: deadlines, retries, backoff, normalization."""

import threading

import pytest

from conftest import RecordingSink
from media_service.errors import (
    ConfigurationError,
    FatalUploadError,
    SinkError,
    SinkTimeoutError,
    TransientUploadError,
    UploadTimeoutError,
)
from media_service.storage import StorageSink, UploadDestination
from media_service.uploader import UploadOrchestrator, UploadResult

DESTINATION = UploadDestination(folder="media/payments", public_id="payment-1")


class SlowSink(StorageSink):
    """Blocks every put until released."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0
        self.daemon_flags = []

    def put_object(self, data, destination):
        self.calls += 1
        self.daemon_flags.append(threading.current_thread().daemon)
        self.release.wait(5)
        raise SinkError("released", transient=False)

    def delete_object(self, public_id, fmt="webp"):
        return True


@pytest.fixture
def sleeps():
    return []


def _orchestrator(sink, sleeps, **kwargs):
    kwargs.setdefault("base_delay_seconds", 2.0)
    return UploadOrchestrator(sink, sleep=sleeps.append, **kwargs)


class TestUploadSuccess:
    def test_first_attempt_returns_normalized_result(self, sleeps):
        sink = RecordingSink()
        result = _orchestrator(sink, sleeps).upload(b"webp-bytes", DESTINATION)

        assert result == UploadResult(
            locator="https://cdn.test/media/payments/payment-1.webp",
            storage_key="media/payments/payment-1",
            byte_size=len(b"webp-bytes"),
            width=10,
            height=10,
            format="webp",
        )
        assert sink.calls == 1
        assert sleeps == []

    def test_transient_failure_then_success(self, sleeps):
        sink = RecordingSink(failures=[SinkError("503", transient=True)])
        result = _orchestrator(sink, sleeps).upload(b"data", DESTINATION)

        assert result.storage_key == "media/payments/payment-1"
        assert sink.calls == 2
        assert sleeps == [2.0]


class TestRetryPolicy:
    def test_backoff_is_linear_and_attempts_capped(self, sleeps):
        sink = RecordingSink(failures=[SinkError("reset", transient=True) for _ in range(5)])

        with pytest.raises(TransientUploadError) as excinfo:
            _orchestrator(sink, sleeps).upload(b"data", DESTINATION)

        assert sink.calls == 3
        assert sleeps == [2.0, 4.0]
        assert excinfo.value.attempts == 3
        assert excinfo.value.reason == "UploadError.Transient"

    def test_fatal_error_is_not_retried(self, sleeps):
        sink = RecordingSink(failures=[SinkError("AccessDenied", transient=False)])

        with pytest.raises(FatalUploadError):
            _orchestrator(sink, sleeps).upload(b"data", DESTINATION)

        assert sink.calls == 1
        assert sleeps == []

    def test_configuration_error_propagates_immediately(self, sleeps):
        sink = RecordingSink(failures=[ConfigurationError("no credentials")])

        with pytest.raises(ConfigurationError):
            _orchestrator(sink, sleeps).upload(b"data", DESTINATION)

        assert sink.calls == 1

    def test_unexpected_exception_is_fatal(self, sleeps):
        sink = RecordingSink(failures=[RuntimeError("boom")])
        with pytest.raises(FatalUploadError):
            _orchestrator(sink, sleeps).upload(b"data", DESTINATION)
        assert sink.calls == 1

    def test_sink_timeout_is_retried_as_timeout(self, sleeps):
        sink = RecordingSink(failures=[SinkTimeoutError("slow")] * 3)

        with pytest.raises(UploadTimeoutError):
            _orchestrator(sink, sleeps).upload(b"data", DESTINATION)

        assert sink.calls == 3
        assert sleeps == [2.0, 4.0]


class TestDeadline:
    def test_attempt_exceeding_deadline_is_abandoned(self, sleeps):
        sink = SlowSink()
        orchestrator = _orchestrator(sink, sleeps, timeout_seconds=0.05, max_attempts=2, base_delay_seconds=0.5)
        try:
            with pytest.raises(UploadTimeoutError) as excinfo:
                orchestrator.upload(b"data", DESTINATION)
        finally:
            sink.release.set()

        assert excinfo.value.reason == "UploadError.Timeout"
        assert sink.calls == 2
        assert sleeps == [0.5]

    def test_abandoned_attempt_does_not_block_exit(self, sleeps):
        sink = SlowSink()
        orchestrator = _orchestrator(sink, sleeps, timeout_seconds=0.05, max_attempts=1)
        try:
            with pytest.raises(UploadTimeoutError):
                orchestrator.upload(b"data", DESTINATION)
        finally:
            sink.release.set()

        assert sink.daemon_flags == [True]


class TestRemove:
    def test_remove_deletes_by_key(self, sleeps):
        sink = RecordingSink()
        orchestrator = _orchestrator(sink, sleeps)
        result = orchestrator.upload(b"data", DESTINATION)

        assert orchestrator.remove(result.storage_key) is True
        assert sink.deleted == ["media/payments/payment-1"]

    def test_remove_failure_is_fatal(self, sleeps):
        with pytest.raises(FatalUploadError):
            _orchestrator(RecordingSink(), sleeps).remove("missing")

    def test_upload_never_removes_automatically(self, sleeps):
        sink = RecordingSink(failures=[SinkError("x", transient=True)] * 3)
        with pytest.raises(TransientUploadError):
            _orchestrator(sink, sleeps).upload(b"data", DESTINATION)
        assert sink.deleted == []


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        UploadOrchestrator(RecordingSink(), max_attempts=0)
