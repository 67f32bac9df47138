"""Tests for the base64 sample encoder"""
import base64

import pytest

from audio_recognition.encoder import MAX_AUDIO_BASE64_LENGTH, SampleEncoder
from audio_recognition.errors import InvalidSampleError, SampleTooLargeError, ValidationError


def test_default_ceiling():
    assert SampleEncoder().max_length == 1_400_000 == MAX_AUDIO_BASE64_LENGTH


def test_encode_returns_base64_text():
    assert SampleEncoder().encode(b"hello") == base64.b64encode(b"hello").decode()


def test_length_at_ceiling_is_accepted():
    encoder = SampleEncoder(max_length=8)
    encoded = "A" * 8
    assert encoder.decode(encoded) == base64.b64decode(encoded)


def test_length_over_ceiling_is_rejected():
    encoder = SampleEncoder(max_length=8)
    with pytest.raises(SampleTooLargeError) as exc_info:
        encoder.decode("A" * 12)
    assert exc_info.value.length == 12
    assert exc_info.value.limit == 8
    assert isinstance(exc_info.value, ValidationError)


def test_encode_rejects_oversized_sample():
    with pytest.raises(SampleTooLargeError):
        SampleEncoder(max_length=4).encode(b"0123456789")


@pytest.mark.parametrize("value", ["", None])
def test_empty_sample_is_rejected(value):
    with pytest.raises(InvalidSampleError):
        SampleEncoder().decode(value)


def test_encode_rejects_empty_bytes():
    with pytest.raises(InvalidSampleError):
        SampleEncoder().encode(b"")


def test_invalid_base64_is_rejected():
    with pytest.raises(InvalidSampleError):
        SampleEncoder().decode("not base64!!")
