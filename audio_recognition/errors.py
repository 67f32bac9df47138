"""
Exception types raised inside the recognition pipeline.

The orchestrator converts every one of these into a RecognitionError outcome,
so nothing below propagates past RecognitionOrchestrator.recognize().
"""

from typing import Optional


class RecognitionPipelineError(Exception):
    """Base class for all pipeline errors."""


# Capture layer

class CaptureError(RecognitionPipelineError):
    """Recording resource failed to open, read or close."""


class PermissionDeniedError(CaptureError):
    """Microphone permission was refused. Recoverable by asking again."""

    def __init__(self, message: str = "Microphone permission denied"):
        super().__init__(message)


class RecordingBusyError(CaptureError):
    """start_recording() called while a session is already active."""


# Validation (rejected before any vendor call)

class ValidationError(RecognitionPipelineError):
    pass


class SampleTooLargeError(ValidationError):
    def __init__(self, length: int, limit: int):
        self.length = length
        self.limit = limit
        super().__init__(f"Audio data too large ({length} > {limit} base64 characters)")


class InvalidSampleError(ValidationError):
    pass


class LocationValidationError(ValidationError):
    pass


# Configuration

class ConfigurationError(RecognitionPipelineError):
    """Vendor credentials are missing. Fatal, not retryable."""


# Vendor boundary

class VendorTransportError(RecognitionPipelineError):
    """Vendor unreachable, timed out, or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class VendorParseError(RecognitionPipelineError):
    """2xx response whose body is not the JSON document we expect."""


# Persistence

class PersistenceError(RecognitionPipelineError):
    """Discovery store rejected a write or could not be read."""
