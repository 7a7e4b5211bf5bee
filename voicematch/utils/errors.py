"""
Custom exceptions for the VoiceMatch analysis service.

This module defines a hierarchy of exceptions for handling the error
conditions of the comparison pipeline. Every exception carries one of
three public error codes (INVALID_PARAMETERS, RESOURCE_NOT_FOUND,
SERVER_ERROR), the HTTP status used by the API envelope, and an optional
``reason`` naming the specific failure.
"""

from typing import Any, Optional


class VoiceMatchError(Exception):
    """Base exception for all voice analysis errors."""

    code: str = "SERVER_ERROR"
    http_status: int = 500
    reason: Optional[str] = None

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message

    def to_envelope(self) -> dict:
        """Return the public error envelope (no internal details)."""
        error = {"code": self.code, "message": self.message}
        if self.reason:
            error["reason"] = self.reason
        return {"success": False, "error": error}


class ValidationError(VoiceMatchError):
    """Raised when the request is missing fields or carries bad values."""

    code = "INVALID_PARAMETERS"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field})
        self.field = field


class ClipNotFoundError(VoiceMatchError):
    """Raised when the reference clip id cannot be resolved."""

    code = "RESOURCE_NOT_FOUND"
    http_status = 404

    def __init__(self, clip_id: str):
        super().__init__(
            f"Original voice clip '{clip_id}' was not found.",
            details={"clip_id": clip_id},
        )
        self.clip_id = clip_id


class AudioError(VoiceMatchError):
    """Base class for problems with the submitted audio itself."""

    code = "INVALID_PARAMETERS"
    http_status = 400
    reason = "INVALID_AUDIO"


class DecodeError(AudioError):
    """Raised when the audio container is corrupt or cannot be read."""

    code = "SERVER_ERROR"
    reason = "UNDECODABLE_AUDIO"

    def __init__(self, message: str, format: Optional[str] = None):
        super().__init__(message, details={"format": format})
        self.format = format


class FormatError(AudioError):
    """Raised when the media type or codec is not supported."""

    http_status = 415
    reason = "UNSUPPORTED_MEDIA_TYPE"

    def __init__(
        self,
        message: str,
        content_type: Optional[str] = None,
        extension: Optional[str] = None,
    ):
        super().__init__(
            message,
            details={"content_type": content_type, "extension": extension},
        )
        self.content_type = content_type
        self.extension = extension


class SizeExceeded(AudioError):
    """Raised when the audio payload exceeds the size limit."""

    http_status = 413
    reason = "PAYLOAD_TOO_LARGE"

    def __init__(
        self,
        message: str,
        size: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        super().__init__(message, details={"size": size, "max_size": max_size})
        self.size = size
        self.max_size = max_size


class DurationExceeded(AudioError):
    """Raised when the decoded audio is longer than the duration limit."""

    reason = "DURATION_EXCEEDED"

    def __init__(
        self,
        message: str,
        duration: Optional[float] = None,
        max_duration: Optional[float] = None,
    ):
        super().__init__(
            message, details={"duration": duration, "max_duration": max_duration}
        )
        self.duration = duration
        self.max_duration = max_duration


class AlignmentError(VoiceMatchError):
    """Raised when a feature sequence is too short to align."""

    code = "INVALID_PARAMETERS"
    http_status = 400
    reason = "AUDIO_TOO_SHORT"

    def __init__(
        self,
        message: str,
        reference_frames: Optional[int] = None,
        user_frames: Optional[int] = None,
    ):
        super().__init__(
            message,
            details={
                "reference_frames": reference_frames,
                "user_frames": user_frames,
            },
        )
        self.reference_frames = reference_frames
        self.user_frames = user_frames


class ProcessingTimeout(VoiceMatchError):
    """Raised when the pipeline exceeds its time budget."""

    http_status = 503
    reason = "PROCESSING_TIMEOUT"

    def __init__(self, message: str, stage: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(message, details={"stage": stage, "timeout": timeout})
        self.stage = stage
        self.timeout = timeout


class AnalysisCancelled(VoiceMatchError):
    """Raised when the caller aborted the request between stages."""

    http_status = 499
    reason = "REQUEST_CANCELLED"

    def __init__(self, stage: Optional[str] = None):
        super().__init__("Analysis was cancelled.", details={"stage": stage})
        self.stage = stage


class ServerError(VoiceMatchError):
    """Raised when a pipeline stage fails unexpectedly."""

    def __init__(
        self,
        message: str,
        stage_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.stage_name = stage_name
        self.original_error = original_error
        self.details = {
            "stage_name": stage_name,
            "original_error": str(original_error) if original_error else None,
        }


class ConfigurationError(VoiceMatchError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key
        self.details = {"config_key": config_key}


def error_envelope(error: Exception) -> dict:
    """Map any exception to the public failure envelope."""
    if isinstance(error, VoiceMatchError) and not isinstance(
        error, (ServerError, ConfigurationError)
    ):
        return error.to_envelope()
    return {
        "success": False,
        "error": {
            "code": ServerError.code,
            "message": "The voice analysis could not be completed.",
        },
    }


def http_status_for(error: Exception) -> int:
    """HTTP status code for an exception surfaced to the API."""
    if isinstance(error, VoiceMatchError):
        return error.http_status
    return 500
