"""
Recognition Results

Immutable outcome variants returned by the orchestrator, the vendor result
model they are derived from, and the confidence-based classification.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

MIN_CONFIDENCE = 0.60


class MatchKind(Enum):
    FINGERPRINT = "fingerprint"  # Exact match against a commercial recording
    MELODY = "melody"            # Hummed/sung melody match


class ErrorCode(Enum):
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    LIMIT_REACHED = "limit_reached"
    NOT_CONFIGURED = "not_configured"
    TRANSPORT = "transport"
    PARSE = "parse"
    INTERNAL = "internal"


# =============================================================================
# Vendor result model
# =============================================================================

@dataclass(frozen=True)
class VendorMatch:
    """One entry of ACRCloud's metadata.music / metadata.humming arrays."""
    title: str
    artist: str
    score: float
    album: Optional[str] = None
    release_date: Optional[str] = None
    external_track_url: Optional[str] = None
    acrid: Optional[str] = None

    @classmethod
    def from_vendor(cls, track: Dict[str, Any]) -> "VendorMatch":
        artists = track.get('artists') or []
        artist = ", ".join(a.get('name', '') for a in artists if a.get('name')) or "Unknown"

        album_info = track.get('album') or {}
        spotify_url = None
        spotify = (track.get('external_metadata') or {}).get('spotify') or {}
        spotify_id = (spotify.get('track') or {}).get('id')
        if spotify_id:
            spotify_url = f"https://open.spotify.com/track/{spotify_id}"

        return cls(
            title=track.get('title') or "Unknown",
            artist=artist,
            score=normalize_score(track.get('score', 0)),
            album=album_info.get('name'),
            release_date=track.get('release_date'),
            external_track_url=spotify_url,
            acrid=track.get('acrid'),
        )


def normalize_score(raw: Any) -> float:
    """
    Bring a vendor score into [0, 1].

    ACRCloud reports integer scores on a 0-100 scale, so an integer (or an
    integer string) is always a percentage: 1 means 1%. Floats up to 1.0 are
    already fractions; larger floats are percentages.
    """
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, str):
        raw = raw.strip()
        try:
            raw = int(raw)
        except ValueError:
            pass
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if isinstance(raw, int) or score > 1.0:
        score = score / 100.0
    return max(0.0, min(1.0, score))


@dataclass(frozen=True)
class VendorResult:
    """Parsed identify response."""
    status_code: int
    status_msg: str
    music: List[VendorMatch] = field(default_factory=list)
    humming: List[VendorMatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status_code == 0

    @classmethod
    def from_vendor(cls, payload: Dict[str, Any]) -> "VendorResult":
        status = payload.get('status') or {}
        metadata = payload.get('metadata') or {}
        return cls(
            status_code=int(status.get('code', -1)),
            status_msg=str(status.get('msg', 'Unknown')),
            music=[VendorMatch.from_vendor(t) for t in metadata.get('music') or []],
            humming=[VendorMatch.from_vendor(t) for t in metadata.get('humming') or []],
        )


# =============================================================================
# Outcomes
# =============================================================================

@dataclass(frozen=True)
class Matched:
    title: str
    artist: str
    confidence: float
    match_kind: MatchKind
    album: Optional[str] = None
    release_date: Optional[str] = None
    external_track_url: Optional[str] = None

    def to_song(self) -> Dict[str, Any]:
        song = {
            "title": self.title,
            "artist": self.artist,
            "confidence": self.confidence,
            "matchKind": self.match_kind.value,
        }
        if self.album:
            song["album"] = self.album
        if self.release_date:
            song["releaseDate"] = self.release_date
        if self.external_track_url:
            song["externalTrackUrl"] = self.external_track_url
        return song


@dataclass(frozen=True)
class NotFound:
    reason: str  # Diagnostic only, not for end users


@dataclass(frozen=True)
class RecognitionError:
    message: str
    code: ErrorCode = ErrorCode.INTERNAL


RecognitionOutcome = Union[Matched, NotFound, RecognitionError]


def outcome_type(outcome: RecognitionOutcome) -> str:
    if isinstance(outcome, Matched):
        return "matched"
    if isinstance(outcome, NotFound):
        return "not_found"
    return "error"


def to_response(outcome: RecognitionOutcome) -> Dict[str, Any]:
    """Render an outcome in the public recognition response shape."""
    response: Dict[str, Any] = {
        "success": isinstance(outcome, Matched),
        "type": outcome_type(outcome),
    }
    if isinstance(outcome, Matched):
        response["song"] = outcome.to_song()
    elif isinstance(outcome, RecognitionError):
        response["error"] = outcome.message
        if outcome.code == ErrorCode.LIMIT_REACHED:
            response["limitReached"] = True
    return response


def _pct(value: float) -> int:
    return round(value * 100)


def classify(result: VendorResult, min_confidence: float = MIN_CONFIDENCE) -> Union[Matched, NotFound]:
    """
    Reduce a vendor result to Matched or NotFound.

    Fingerprint matches win over melody matches; the best (first) entry of each
    array is the one considered.
    """
    if not result.ok:
        return NotFound(f"ACRCloud code: {result.status_code}, msg: {result.status_msg}")

    if result.music:
        best = result.music[0]
        if best.score >= min_confidence:
            return Matched(
                title=best.title,
                artist=best.artist,
                confidence=best.score,
                match_kind=MatchKind.FINGERPRINT,
                album=best.album,
                release_date=best.release_date,
                external_track_url=best.external_track_url,
            )

    if result.humming:
        best = result.humming[0]
        if best.score >= min_confidence:
            return Matched(
                title=best.title,
                artist=best.artist,
                confidence=best.score,
                match_kind=MatchKind.MELODY,
                album=best.album,
            )

    candidates = result.music[:1] + result.humming[:1]
    if candidates:
        best_score = max(c.score for c in candidates)
        return NotFound(
            f"Low confidence match ({_pct(best_score)}%) - below {_pct(min_confidence)}% threshold"
        )
    return NotFound(f"No match (ACRCloud code: {result.status_code}, msg: {result.status_msg})")
