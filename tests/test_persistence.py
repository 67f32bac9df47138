"""Tests for Discovery persistence and location validation"""
from unittest.mock import AsyncMock

import pytest

from audio_recognition.errors import LocationValidationError, PersistenceError
from audio_recognition.persistence import Discovery, DiscoveryPersister, Location
from audio_recognition.results import Matched, MatchKind, NotFound

MATCH = Matched(
    title="Midnight City", artist="M83", confidence=0.9,
    match_kind=MatchKind.FINGERPRINT, album="Hurry Up, We're Dreaming",
    external_track_url="https://open.spotify.com/track/xyz",
)


async def test_persist_writes_one_record(persister, store, clock):
    location = Location("Café Oto", 51.5469, -0.0753)
    discovery = await persister.persist(MATCH, "acct", location)

    stored = await store.list_discoveries("acct")
    assert stored == [discovery]
    assert discovery.title == "Midnight City"
    assert discovery.location_name == "Café Oto"
    assert discovery.latitude == pytest.approx(51.5469)
    assert discovery.created_at == clock.now


async def test_persist_twice_creates_two_records(persister, store):
    first = await persister.persist(MATCH, "acct")
    second = await persister.persist(MATCH, "acct")
    assert first.id != second.id
    assert len(await store.list_discoveries("acct")) == 2


async def test_persist_without_location(persister):
    discovery = await persister.persist(MATCH, "acct")
    assert discovery.location_name is None
    assert discovery.latitude is None


async def test_below_threshold_rejected(persister, store):
    weak = Matched(title="x", artist="y", confidence=0.5, match_kind=MatchKind.MELODY)
    with pytest.raises(ValueError):
        await persister.persist(weak, "acct")
    assert await store.list_discoveries("acct") == []


async def test_not_found_rejected(persister):
    with pytest.raises(ValueError):
        await persister.persist(NotFound("No match"), "acct")


async def test_store_failure_wrapped(store):
    store.insert_discovery = AsyncMock(side_effect=RuntimeError("connection reset"))
    persister = DiscoveryPersister(store)
    with pytest.raises(PersistenceError, match="connection reset"):
        await persister.persist(MATCH, "acct")


def test_discovery_dict_round_trip():
    discovery = Discovery(account_id="a", title="t", artist="r", confidence=0.7, match_kind=MatchKind.MELODY)
    data = discovery.to_dict()
    assert data["match_kind"] == "melody"
    assert Discovery.from_dict(data) == discovery


@pytest.mark.parametrize("payload", [
    {"latitude": 91},
    {"latitude": -90.5},
    {"longitude": 180.01},
    {"latitude": "51.5"},
    {"longitude": True},
    "London",
])
def test_invalid_location_rejected(payload):
    with pytest.raises(LocationValidationError):
        Location.from_payload(payload)


def test_location_bounds_inclusive():
    location = Location.from_payload({"name": "Pole", "latitude": -90, "longitude": 180})
    assert location.latitude == -90.0
    assert location.longitude == 180.0


def test_missing_location_is_none():
    assert Location.from_payload(None) is None
