"""
ACRCloud Request Signing

Builds the HMAC-SHA1 signature and canonical form fields required by the
ACRCloud identify endpoint (signature version 1).
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Dict, Optional

HTTP_METHOD = "POST"
HTTP_URI = "/v1/identify"
SIGNATURE_VERSION = "1"
DEFAULT_DATA_TYPE = "audio"


def string_to_sign(access_key: str, timestamp: int, data_type: str = DEFAULT_DATA_TYPE) -> str:
    """Canonical string the vendor recomputes on its side."""
    return f"{HTTP_METHOD}\n{HTTP_URI}\n{access_key}\n{data_type}\n{SIGNATURE_VERSION}\n{timestamp}"


def sign(access_key: str, access_secret: str, timestamp: int, data_type: str = DEFAULT_DATA_TYPE) -> str:
    """
    Create the base64 HMAC-SHA1 signature for an identify request.

    Pure function: the same (key, secret, timestamp, data_type) always gives
    the same signature.
    """
    digest = hmac.new(
        access_secret.encode('utf-8'),
        string_to_sign(access_key, timestamp, data_type).encode('utf-8'),
        digestmod=hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode('ascii')


@dataclass(frozen=True)
class RecognitionRequest:
    """
    Signed outbound identify payload. One per gateway call.

    Attributes:
        access_key: ACRCloud project access key
        signature: base64 HMAC-SHA1 over the canonical string
        timestamp: Unix seconds used in the signature
        sample: Raw audio bytes
        content_type: MIME type of the sample
        data_type: Vendor data type ("audio" or "fingerprint")
    """
    access_key: str
    signature: str
    timestamp: int
    sample: bytes
    content_type: str = "audio/wav"
    data_type: str = DEFAULT_DATA_TYPE
    signature_version: str = SIGNATURE_VERSION

    @property
    def sample_bytes(self) -> int:
        return len(self.sample)

    def form_fields(self) -> Dict[str, str]:
        """Non-file multipart fields, as the vendor expects them."""
        return {
            'access_key': self.access_key,
            'data_type': self.data_type,
            'signature': self.signature,
            'signature_version': self.signature_version,
            'timestamp': str(self.timestamp),
            'sample_bytes': str(self.sample_bytes),
        }

    def files(self) -> Dict[str, tuple]:
        extension = _EXTENSIONS.get(self.content_type, "bin")
        return {'sample': (f"sample.{extension}", self.sample, self.content_type)}


_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/m4a": "m4a",
    "audio/mp4": "m4a",
    "audio/webm": "webm",
    "audio/mpeg": "mp3",
}


def build_request(
    sample: bytes,
    access_key: str,
    access_secret: str,
    timestamp: int,
    content_type: Optional[str] = None
) -> RecognitionRequest:
    """Sign and wrap a sample into a RecognitionRequest."""
    return RecognitionRequest(
        access_key=access_key,
        signature=sign(access_key, access_secret, timestamp),
        timestamp=timestamp,
        sample=sample,
        content_type=content_type or "audio/wav",
    )
