"""
Exception taxonomy for the media service.

Every error carries a stable `reason` tag (e.g. ``ConversionError.CorruptInput``)
that callers surface as the structured failure reason.
"""

from __future__ import annotations

from typing import Optional


class MediaServiceError(Exception):
    """Base class for all service errors."""

    reason = "MediaServiceError"


class ConfigurationError(MediaServiceError):
    """Missing or invalid configuration. Never retried."""

    reason = "ConfigurationError"


class InputPathError(MediaServiceError):
    """A batch input path does not exist or is not a file/directory."""

    reason = "InputError.InvalidPath"


class ConversionError(MediaServiceError):
    reason = "ConversionError"


class UnsupportedFormatError(ConversionError):
    reason = "ConversionError.UnsupportedFormat"


class CorruptInputError(ConversionError):
    reason = "ConversionError.CorruptInput"


class SinkError(MediaServiceError):
    """Raised by storage sinks. `transient` marks failures worth retrying."""

    reason = "SinkError"

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class SinkTimeoutError(SinkError):
    reason = "SinkError.Timeout"

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=True)


class UploadError(MediaServiceError):
    reason = "UploadError"

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class UploadTimeoutError(UploadError):
    reason = "UploadError.Timeout"


class TransientUploadError(UploadError):
    reason = "UploadError.Transient"


class FatalUploadError(UploadError):
    reason = "UploadError.Fatal"


class RotationConsistencyError(MediaServiceError):
    """The stored QR index points outside the slot list."""

    reason = "ConsistencyError"


class EventNotFoundError(MediaServiceError):
    reason = "EventNotFound"


class EventAlreadyExistsError(MediaServiceError):
    reason = "EventAlreadyExists"


class PipelineError(MediaServiceError):
    """Tagged failure of a single-file pipeline run, naming the failed stage."""

    def __init__(self, stage: str, reason: str, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"{stage} failed ({reason}): {message}")
        self.stage = stage
        self.reason = reason
        self.message = message
        self.cause = cause

    def as_dict(self) -> dict:
        return {"stage": self.stage, "reason": self.reason, "message": self.message}
