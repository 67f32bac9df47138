"""Tests for the JSON and in-memory discovery stores"""
import json
from datetime import timedelta

import pytest

from audio_recognition.errors import PersistenceError
from audio_recognition.persistence import Discovery
from audio_recognition.results import MatchKind
from discovery_store import JsonDiscoveryStore, MemoryDiscoveryStore, create_store
from conftest import NOW


def make_discovery(account_id="acct", title="Song", at=NOW):
    return Discovery(
        account_id=account_id, title=title, artist="Artist",
        confidence=0.8, match_kind=MatchKind.FINGERPRINT, created_at=at,
    )


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryDiscoveryStore()
    return JsonDiscoveryStore(tmp_path / "data" / "discoveries.json")


async def test_insert_and_list(any_store):
    first = await any_store.insert_discovery(make_discovery(title="One"))
    await any_store.insert_discovery(make_discovery(account_id="other"))

    listed = await any_store.list_discoveries("acct")
    assert [d.id for d in listed] == [first.id]
    assert listed[0] == first


async def test_count_since(any_store):
    await any_store.insert_discovery(make_discovery(at=NOW - timedelta(days=30)))
    await any_store.insert_discovery(make_discovery(at=NOW))
    assert await any_store.count_discoveries_since("acct", NOW - timedelta(days=1)) == 1


async def test_attempts(any_store):
    await any_store.record_attempt("acct", NOW - timedelta(hours=2))
    await any_store.record_attempt("acct", NOW)
    assert await any_store.count_attempts_since("acct", NOW - timedelta(hours=1)) == 1
    assert await any_store.count_attempts_since("nobody", NOW - timedelta(hours=1)) == 0


async def test_subscription_tier(any_store):
    assert await any_store.get_subscription_tier("acct") is None
    await any_store.set_subscription_tier("acct", "premium")
    assert await any_store.get_subscription_tier("acct") == "premium"


async def test_json_store_writes_valid_file(tmp_path):
    path = tmp_path / "discoveries.json"
    store = JsonDiscoveryStore(path)
    await store.insert_discovery(make_discovery())

    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data["discoveries"]) == 1
    assert data["discoveries"][0]["match_kind"] == "fingerprint"
    assert not list(tmp_path.glob("*.tmp"))


async def test_json_store_survives_reopen(tmp_path):
    path = tmp_path / "discoveries.json"
    await JsonDiscoveryStore(path).insert_discovery(make_discovery())
    assert len(await JsonDiscoveryStore(path).list_discoveries("acct")) == 1


async def test_json_store_prunes_old_attempts(tmp_path):
    path = tmp_path / "discoveries.json"
    store = JsonDiscoveryStore(path)
    await store.record_attempt("acct", NOW - timedelta(days=3))
    await store.record_attempt("acct", NOW)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data["attempts"]["acct"]) == 1


async def test_json_store_corrupt_file_raises(tmp_path):
    path = tmp_path / "discoveries.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        await JsonDiscoveryStore(path).list_discoveries("acct")


def test_create_store(tmp_path):
    assert isinstance(create_store({"backend": "memory"}), MemoryDiscoveryStore)
    assert isinstance(create_store({"backend": "json", "discoveries_file": tmp_path / "d.json"}), JsonDiscoveryStore)
    with pytest.raises(ValueError):
        create_store({"backend": "postgres"})
