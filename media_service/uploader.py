"""
Upload orchestration: per-attempt deadline, retry with linear backoff, and
translation of sink responses into `UploadResult`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .errors import (
    ConfigurationError,
    FatalUploadError,
    SinkError,
    SinkTimeoutError,
    TransientUploadError,
    UploadError,
    UploadTimeoutError,
)
from .storage import StorageSink, StoredObject, UploadDestination

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 45.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0


@dataclass
class UploadResult:
    locator: str
    storage_key: str
    byte_size: int
    width: int
    height: int
    format: str

    @classmethod
    def from_stored_object(cls, stored: StoredObject) -> "UploadResult":
        return cls(
            locator=stored.secure_url,
            storage_key=stored.public_id,
            byte_size=stored.bytes,
            width=stored.width,
            height=stored.height,
            format=stored.format,
        )


class UploadOrchestrator:
    """
    Wraps a `StorageSink` with timeouts and retries.

    Timeouts and transient sink failures are retried up to `max_attempts`
    total, waiting `base_delay_seconds * attempt` between attempts. Anything
    else is fatal on first occurrence. Partial writes are never cleaned up
    automatically; use `remove` for explicit rollback.
    """

    def __init__(
        self,
        sink: StorageSink,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.sink = sink
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, sink: StorageSink, settings) -> "UploadOrchestrator":
        return cls(
            sink,
            timeout_seconds=settings.upload_timeout_seconds,
            max_attempts=settings.upload_max_attempts,
            base_delay_seconds=settings.upload_retry_base_delay_seconds,
        )

    def _attempt(self, data: bytes, destination: UploadDestination) -> StoredObject:
        outcome: Dict[str, Any] = {}
        done = threading.Event()

        def _run() -> None:
            try:
                outcome["stored"] = self.sink.put_object(data, destination)
            except Exception as exc:  # noqa: BLE001
                outcome["error"] = exc
            finally:
                done.set()

        # Daemon so an abandoned attempt never holds up interpreter exit.
        worker = threading.Thread(
            target=_run, name=f"upload-attempt-{destination.public_id}", daemon=True
        )
        worker.start()
        if not done.wait(self.timeout_seconds):
            raise UploadTimeoutError(
                f"Upload of {destination.full_public_id} exceeded {self.timeout_seconds}s"
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["stored"]

    def upload(self, data: bytes, destination: UploadDestination) -> UploadResult:
        """
        Persist `data` at `destination` and return the normalized result.

        Raises:
            UploadTimeoutError: every attempt hit the deadline (last failure).
            TransientUploadError: retryable failures exhausted the attempt ceiling.
            FatalUploadError: non-retryable sink failure.
            ConfigurationError: sink credentials/config missing; never retried.
        """
        last_error: Optional[UploadError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                stored = self._attempt(data, destination)
            except ConfigurationError:
                raise
            except (UploadTimeoutError, SinkError) as exc:
                if isinstance(exc, SinkError) and not exc.transient:
                    logger.error("Upload of %s failed permanently: %s", destination.full_public_id, exc)
                    raise FatalUploadError(str(exc), attempts=attempt) from exc
                if isinstance(exc, (UploadTimeoutError, SinkTimeoutError)):
                    last_error = UploadTimeoutError(str(exc), attempts=attempt)
                else:
                    last_error = TransientUploadError(str(exc), attempts=attempt)
                last_error.__cause__ = exc
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error uploading %s", destination.full_public_id)
                raise FatalUploadError(str(exc), attempts=attempt) from exc
            else:
                result = UploadResult.from_stored_object(stored)
                logger.info(
                    "Uploaded %s (%d bytes, %dx%d) on attempt %d",
                    result.locator,
                    result.byte_size,
                    result.width,
                    result.height,
                    attempt,
                )
                return result

            logger.warning("Upload attempt %d/%d failed: %s", attempt, self.max_attempts, last_error)
            if attempt < self.max_attempts:
                wait = self.base_delay_seconds * attempt
                logger.info("Retrying upload attempt %d in %.1fs", attempt + 1, wait)
                self._sleep(wait)

        raise last_error

    def remove(self, storage_key: str, fmt: str = "webp") -> bool:
        """Delete a previously uploaded object. Never called automatically."""
        try:
            return self.sink.delete_object(storage_key, fmt)
        except SinkError as exc:
            raise FatalUploadError(f"Delete of {storage_key} failed: {exc}") from exc
