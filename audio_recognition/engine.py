"""
Recognition Orchestrator

Sequences one recognition request end to end:

    validate -> quota/rate gate -> sign + identify -> classify -> persist match

and exposes a single request/response contract. Every failure is returned as
a typed RecognitionError outcome; nothing raises past recognize().
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from logging_config import get_logger
from system_utils import state
from system_utils.helpers import _log_app_state
from .acrcloud import RecognitionGateway
from .capture import AudioSample
from .encoder import SampleEncoder
from .errors import (
    ConfigurationError,
    LocationValidationError,
    PersistenceError,
    ValidationError,
    VendorParseError,
    VendorTransportError,
)
from .persistence import DiscoveryPersister, Location
from .quota import QuotaGuard, QuotaStatus
from .results import (
    MIN_CONFIDENCE,
    ErrorCode,
    Matched,
    RecognitionError,
    RecognitionOutcome,
    classify,
    outcome_type,
    to_response,
)

logger = get_logger(__name__)

# Mobile clients upload AAC in an MPEG-4 container
DEFAULT_UPLOAD_CONTENT_TYPE = "audio/m4a"

HTTP_STATUS_BY_ERROR = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.LIMIT_REACHED: 200,  # Business outcome, client shows the upgrade path
    ErrorCode.NOT_CONFIGURED: 500,
    ErrorCode.TRANSPORT: 502,
    ErrorCode.PARSE: 502,
    ErrorCode.INTERNAL: 500,
}


@dataclass(frozen=True)
class SessionContext:
    """
    Caller identity for one recognition call.

    Attributes:
        account_id: Account the attempt is charged to
        tier: Subscription tier if the caller already knows it; None means
              ask the billing collaborator through the store
    """
    account_id: str
    tier: Optional[str] = None


class RecognitionOrchestrator:
    """
    Coordinates encoder, quota guard, gateway and persister.

    The pipeline is strictly sequential per request. Requests for the same
    account are serialized on the QuotaGuard's per-account lock, held from
    the quota check until the match has been persisted.
    """

    def __init__(
        self,
        gateway: RecognitionGateway,
        quota: QuotaGuard,
        persister: DiscoveryPersister,
        encoder: Optional[SampleEncoder] = None,
        min_confidence: float = MIN_CONFIDENCE
    ):
        self.gateway = gateway
        self.quota = quota
        self.persister = persister
        self.encoder = encoder or SampleEncoder()
        self.min_confidence = min_confidence

    async def recognize(
        self,
        context: SessionContext,
        audio_base64: str,
        location: Optional[Location] = None,
        content_type: str = DEFAULT_UPLOAD_CONTENT_TYPE
    ) -> RecognitionOutcome:
        """
        Run the recognition pipeline for one base64 sample.

        Args:
            context: Account (and optionally tier) making the call
            audio_base64: Recorded sample, base64 encoded
            location: Where the user is, stored with a match
            content_type: MIME type of the decoded sample

        Returns:
            Matched, NotFound or RecognitionError (never raises)
        """
        state.bump("requests")
        try:
            outcome = await self._run(context, audio_base64, location, content_type)
        except ValidationError as e:
            outcome = RecognitionError(str(e), ErrorCode.VALIDATION)
        except ConfigurationError as e:
            logger.error(f"Recognition unavailable: {e}")
            outcome = RecognitionError(str(e), ErrorCode.NOT_CONFIGURED)
        except VendorTransportError as e:
            logger.warning(f"Vendor call failed: {e}")
            outcome = RecognitionError(str(e), ErrorCode.TRANSPORT)
        except VendorParseError as e:
            logger.warning(f"Vendor response unreadable: {e}")
            outcome = RecognitionError(str(e), ErrorCode.PARSE)
        except PersistenceError as e:
            logger.error(f"Usage store unavailable: {e}")
            outcome = RecognitionError(f"Usage store unavailable: {e}", ErrorCode.INTERNAL)
        except Exception as e:
            logger.error(f"Recognition error: {e}", exc_info=True)
            outcome = RecognitionError(f"Recognition failed: {e}", ErrorCode.INTERNAL)

        self._count(outcome)
        _log_app_state()
        return outcome

    async def _run(
        self,
        context: SessionContext,
        audio_base64: str,
        location: Optional[Location],
        content_type: str
    ) -> RecognitionOutcome:
        account_id = context.account_id
        if not account_id:
            raise ValidationError("accountId is required")
        if location is not None:
            location.validate()
        # Size bound first, then base64 validity; no network call before this
        sample = self.encoder.decode(audio_base64)

        async with self.quota.lock_for(account_id):
            decision = await self.quota.check(account_id, context.tier)
            if decision.status == QuotaStatus.RATE_LIMITED:
                return RecognitionError(decision.message, ErrorCode.RATE_LIMITED)
            if decision.status == QuotaStatus.LIMIT_REACHED:
                return RecognitionError(decision.message, ErrorCode.LIMIT_REACHED)

            self.gateway.ensure_configured()
            await self.quota.record_attempt(account_id)

            vendor_result = await self.gateway.identify(sample, content_type)
            outcome = classify(vendor_result, self.min_confidence)

            if isinstance(outcome, Matched):
                logger.info(
                    f"Recognized for {account_id}: {outcome.artist} - {outcome.title} "
                    f"({outcome.match_kind.value}, {outcome.confidence:.2f})"
                )
                await self._persist(outcome, account_id, location)
            else:
                logger.info(f"No match for {account_id}: {outcome.reason}")
            return outcome

    async def _persist(self, outcome: Matched, account_id: str, location: Optional[Location]) -> None:
        # The match stands even if history could not be written
        try:
            await self.persister.persist(outcome, account_id, location)
        except PersistenceError as e:
            state.bump("persist_failures")
            logger.error(f"Database insert error: {e}")

    @staticmethod
    def _count(outcome: RecognitionOutcome) -> None:
        if isinstance(outcome, RecognitionError):
            if outcome.code == ErrorCode.RATE_LIMITED:
                state.bump("rate_limited")
            elif outcome.code == ErrorCode.LIMIT_REACHED:
                state.bump("limit_reached")
            else:
                state.bump("errors")
        else:
            state.bump(outcome_type(outcome))

    async def recognize_sample(
        self,
        context: SessionContext,
        sample: AudioSample,
        location: Optional[Location] = None
    ) -> RecognitionOutcome:
        """Recognize a sample straight from the capture controller."""
        if sample.encoded_length > self.encoder.max_length:
            state.bump("requests")
            outcome = RecognitionError(
                f"Audio data too large ({sample.encoded_length} > {self.encoder.max_length} base64 characters)",
                ErrorCode.VALIDATION
            )
            self._count(outcome)
            return outcome
        return await self.recognize(context, self.encoder.encode(sample.data), location, sample.content_type)

    async def handle_request(self, payload: Any) -> Tuple[int, Dict[str, Any]]:
        """
        Serve the public recognition contract.

        Request:  {audioBase64, accountId, location?: {name?, latitude?, longitude?}, contentType?}
        Response: (http_status, {success, type, song?, error?})
        """
        if not isinstance(payload, dict):
            return 400, {"success": False, "type": "error", "error": "Request body must be a JSON object"}

        audio_base64 = payload.get("audioBase64")
        if not audio_base64 or not isinstance(audio_base64, str):
            return 400, {"success": False, "type": "error", "error": "No audio data provided"}

        account_id = payload.get("accountId")
        if not account_id or not isinstance(account_id, str):
            return 400, {"success": False, "type": "error", "error": "accountId is required"}

        try:
            location = Location.from_payload(payload.get("location"))
        except LocationValidationError as e:
            return 400, {"success": False, "type": "error", "error": str(e)}

        content_type = payload.get("contentType") or DEFAULT_UPLOAD_CONTENT_TYPE
        outcome = await self.recognize(SessionContext(account_id), audio_base64, location, content_type)

        status = 200
        if isinstance(outcome, RecognitionError):
            status = HTTP_STATUS_BY_ERROR.get(outcome.code, 500)
        return status, to_response(outcome)


def create_orchestrator(store, acr_config: dict, recognition_config: dict, quota_config: dict) -> RecognitionOrchestrator:
    """Wire the pipeline from config dicts (see config.py)."""
    min_confidence = float(recognition_config.get("min_confidence", MIN_CONFIDENCE))
    gateway = RecognitionGateway.from_config(acr_config)
    if not gateway.is_configured():
        logger.warning("ACRCloud not configured (missing credentials in .env) - recognition requests will fail")
    return RecognitionOrchestrator(
        gateway=gateway,
        quota=QuotaGuard.from_config(store, quota_config),
        persister=DiscoveryPersister(store, min_confidence=min_confidence),
        encoder=SampleEncoder(int(recognition_config.get("max_audio_base64_length", 1_400_000))),
        min_confidence=min_confidence,
    )
