"""
Discovery Persistence

A Discovery is the immutable record of one successful recognition. The
persister writes exactly one per accepted match and never updates one.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from logging_config import get_logger
from system_utils.helpers import utc_now
from .errors import LocationValidationError, PersistenceError
from .results import MIN_CONFIDENCE, Matched, MatchKind

if TYPE_CHECKING:
    from discovery_store import DiscoveryStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Location:
    """Optional place a recognition happened at."""
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def validate(self) -> None:
        if self.latitude is not None and not -90 <= self.latitude <= 90:
            raise LocationValidationError("Invalid latitude")
        if self.longitude is not None and not -180 <= self.longitude <= 180:
            raise LocationValidationError("Invalid longitude")

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> Optional["Location"]:
        """
        Build from the request's `location` object.

        Raises LocationValidationError for non-numeric or out-of-range
        coordinates; returns None when no location was sent.
        """
        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise LocationValidationError("Invalid location")

        def _coord(key: str) -> Optional[float]:
            value = payload.get(key)
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise LocationValidationError(f"Invalid {key}")
            return float(value)

        name = payload.get('name')
        location = cls(
            name=str(name) if name is not None else None,
            latitude=_coord('latitude'),
            longitude=_coord('longitude'),
        )
        location.validate()
        return location


@dataclass(frozen=True)
class Discovery:
    account_id: str
    title: str
    artist: str
    confidence: float
    match_kind: MatchKind
    album: Optional[str] = None
    release_date: Optional[str] = None
    external_track_url: Optional[str] = None
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['match_kind'] = self.match_kind.value
        data['created_at'] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Discovery":
        data = dict(data)
        data['match_kind'] = MatchKind(data['match_kind'])
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


class DiscoveryPersister:
    """Turns an accepted Matched outcome into one stored Discovery."""

    def __init__(
        self,
        store: "DiscoveryStore",
        min_confidence: float = MIN_CONFIDENCE,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store
        self._min_confidence = min_confidence
        self._clock = clock

    async def persist(
        self,
        outcome: Matched,
        account_id: str,
        location: Optional[Location] = None
    ) -> Discovery:
        """
        Insert a new Discovery for `outcome`.

        There is no idempotency key: persisting the same outcome twice
        creates two records.

        Raises:
            ValueError: outcome is not an accepted match
            PersistenceError: the store failed the write
        """
        if not isinstance(outcome, Matched):
            raise ValueError(f"Only matched outcomes are persisted, got {type(outcome).__name__}")
        if outcome.confidence < self._min_confidence:
            raise ValueError(
                f"Confidence {outcome.confidence:.2f} is below the {self._min_confidence:.2f} threshold"
            )

        location = location or Location()
        discovery = Discovery(
            account_id=account_id,
            title=outcome.title,
            artist=outcome.artist,
            confidence=outcome.confidence,
            match_kind=outcome.match_kind,
            album=outcome.album,
            release_date=outcome.release_date,
            external_track_url=outcome.external_track_url,
            location_name=location.name,
            latitude=location.latitude,
            longitude=location.longitude,
            created_at=self._clock(),
        )

        try:
            await self._store.insert_discovery(discovery)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save discovery: {e}") from e

        logger.info(f"Saved discovery {discovery.id}: {discovery.artist} - {discovery.title} (account {account_id})")
        return discovery
