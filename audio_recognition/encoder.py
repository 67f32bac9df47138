"""
Sample Encoder

Serializes captured audio to base64 text for transport and enforces the
upper bound on encoded size (~10 s of 44.1 kHz mono audio).
"""

import base64
import binascii

from .errors import InvalidSampleError, SampleTooLargeError

MAX_AUDIO_BASE64_LENGTH = 1_400_000


class SampleEncoder:
    """Pure byte <-> base64 transform with a size ceiling."""

    def __init__(self, max_length: int = MAX_AUDIO_BASE64_LENGTH):
        self.max_length = max_length

    def check_length(self, encoded_length: int) -> None:
        """Raise SampleTooLargeError when an encoded sample exceeds the ceiling."""
        if encoded_length > self.max_length:
            raise SampleTooLargeError(encoded_length, self.max_length)

    def encode(self, data: bytes) -> str:
        if not data:
            raise InvalidSampleError("No audio data provided")
        encoded = base64.b64encode(data).decode('ascii')
        self.check_length(len(encoded))
        return encoded

    def decode(self, audio_base64: str) -> bytes:
        """
        Validate and decode a base64 sample.

        The size check runs first so oversized input is rejected without
        spending time decoding it.
        """
        if not audio_base64 or not isinstance(audio_base64, str):
            raise InvalidSampleError("No audio data provided")
        self.check_length(len(audio_base64))
        try:
            data = base64.b64decode(audio_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidSampleError(f"Audio data is not valid base64: {e}") from e
        if not data:
            raise InvalidSampleError("No audio data provided")
        return data
