"""
ACRCloud Recognition Gateway

Sends one signed multipart identify request to ACRCloud and parses the reply
into a VendorResult. Credentials are loaded from environment variables by
config.ACRCLOUD.
"""

import time
from typing import Callable, Optional

import requests

from logging_config import get_logger
from system_utils.helpers import run_in_daemon_executor
from .errors import ConfigurationError, VendorParseError, VendorTransportError
from .results import VendorResult
from .signing import HTTP_URI, RecognitionRequest, build_request

logger = get_logger(__name__)

DEFAULT_HOST = "identify-us-west-2.acrcloud.com"
DEFAULT_TIMEOUT = 30.0
MAX_ERROR_BODY = 500  # Characters of a failed response body kept in the error


class RecognitionGateway:
    """
    ACRCloud identify client.

    Features:
    - HMAC-SHA1 signed requests (signature version 1)
    - Blocking requests call pushed to the shared thread executor
    - Non-2xx, timeout and connection failures raise VendorTransportError
    - Malformed JSON raises VendorParseError
    """

    def __init__(
        self,
        access_key: str,
        access_secret: str,
        host: str = DEFAULT_HOST,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time
    ):
        self._access_key = access_key or ""
        self._access_secret = access_secret or ""
        self._host = host or DEFAULT_HOST
        self._timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock

    @classmethod
    def from_config(cls, acr_config: dict) -> "RecognitionGateway":
        return cls(
            access_key=acr_config.get("access_key", ""),
            access_secret=acr_config.get("access_secret", ""),
            host=acr_config.get("host", DEFAULT_HOST),
            timeout=float(acr_config.get("timeout", DEFAULT_TIMEOUT)),
        )

    @property
    def url(self) -> str:
        return f"https://{self._host}{HTTP_URI}"

    def is_configured(self) -> bool:
        """Check if access key and secret are both present."""
        return bool(self._access_key and self._access_secret)

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError("Recognition service not configured")

    def build_request(self, sample: bytes, content_type: Optional[str] = None) -> RecognitionRequest:
        """Sign a sample with the current unix timestamp."""
        self.ensure_configured()
        timestamp = int(self._clock())
        return build_request(sample, self._access_key, self._access_secret, timestamp, content_type)

    def _post(self, request: RecognitionRequest) -> VendorResult:
        """Blocking POST + parse. Runs in the executor."""
        try:
            response = self._session.post(
                self.url,
                data=request.form_fields(),
                files=request.files(),
                timeout=self._timeout
            )
        except requests.exceptions.Timeout as e:
            raise VendorTransportError(f"ACRCloud request timed out after {self._timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise VendorTransportError(f"ACRCloud request failed: {e}") from e

        if not response.ok:
            body = response.text[:MAX_ERROR_BODY]
            raise VendorTransportError(
                f"ACRCloud API error: {response.status_code} {response.reason} - {body}",
                status_code=response.status_code,
                body=body
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise VendorParseError(f"ACRCloud returned malformed JSON: {e}") from e
        if not isinstance(payload, dict):
            raise VendorParseError(f"ACRCloud returned unexpected JSON: {type(payload).__name__}")

        try:
            return VendorResult.from_vendor(payload)
        except (TypeError, ValueError, AttributeError) as e:
            raise VendorParseError(f"ACRCloud response has unexpected shape: {e}") from e

    async def identify(self, sample: bytes, content_type: Optional[str] = None) -> VendorResult:
        """
        Identify an audio sample.

        Args:
            sample: Raw audio bytes (container as captured, e.g. WAV or M4A)
            content_type: MIME type of the sample (default audio/wav)

        Returns:
            VendorResult with status and any music/humming matches

        Raises:
            ConfigurationError: credentials missing
            VendorTransportError: timeout, connection failure or non-2xx
            VendorParseError: 2xx with malformed JSON
        """
        request = self.build_request(sample, content_type)
        logger.debug(f"Sending to ACRCloud ({request.sample_bytes / 1024:.1f} KB)...")

        started = time.monotonic()
        result = await run_in_daemon_executor(self._post, request)
        elapsed = time.monotonic() - started

        logger.info(
            f"ACRCloud replied in {elapsed:.2f}s | code={result.status_code} "
            f"msg={result.status_msg} | music={len(result.music)} humming={len(result.humming)}"
        )
        return result

    def close(self) -> None:
        self._session.close()

