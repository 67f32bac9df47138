"""Pytest configuration and shared fixtures"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from audio_recognition.acrcloud import RecognitionGateway
from audio_recognition.capture import RecorderBackend
from audio_recognition.encoder import SampleEncoder
from audio_recognition.engine import RecognitionOrchestrator
from audio_recognition.persistence import DiscoveryPersister
from audio_recognition.quota import QuotaGuard
from audio_recognition.results import VendorResult
from discovery_store import MemoryDiscoveryStore
from system_utils import state

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock for quota and persistence."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRecorder(RecorderBackend):
    """In-memory recorder backend that counts lifecycle calls."""

    def __init__(self, granted: bool = True, data: Optional[bytes] = b"RIFF" + b"\x00" * 64, level: float = -20.0):
        self.granted = granted
        self.data = data
        self.level = level
        self.permission_gate: Optional[asyncio.Event] = None
        self.open_error: Optional[Exception] = None
        self.permission_error: Optional[Exception] = None
        self.finalize_error: Optional[Exception] = None
        self.opened = 0
        self.finalized = 0
        self.discarded = 0

    async def request_permission(self) -> bool:
        if self.permission_gate is not None:
            await self.permission_gate.wait()
        if self.permission_error is not None:
            raise self.permission_error
        return self.granted

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened += 1

    def level_db(self) -> float:
        return self.level

    async def finalize(self) -> Optional[bytes]:
        self.finalized += 1
        if self.finalize_error is not None:
            raise self.finalize_error
        return self.data

    async def discard(self) -> None:
        self.discarded += 1


def vendor_payload(music=None, humming=None, code=0, msg="Success") -> dict:
    """ACRCloud-shaped identify response."""
    metadata = {}
    if music is not None:
        metadata["music"] = music
    if humming is not None:
        metadata["humming"] = humming
    payload = {"status": {"code": code, "msg": msg}}
    if metadata:
        payload["metadata"] = metadata
    return payload


def track(title="Midnight City", artist="M83", score=95, **extra) -> dict:
    data = {
        "title": title,
        "artists": [{"name": artist}],
        "album": {"name": "Hurry Up, We're Dreaming"},
        "release_date": "2011-08-16",
        "score": score,
        "acrid": "abc123",
    }
    data.update(extra)
    return data


def vendor_result(**kwargs) -> VendorResult:
    return VendorResult.from_vendor(vendor_payload(**kwargs))


@pytest.fixture(autouse=True)
def reset_pipeline_counters():
    state.reset_counters()
    yield
    state.reset_counters()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryDiscoveryStore()


@pytest.fixture
def recorder():
    return FakeRecorder()


@pytest.fixture
def gateway():
    """Configured gateway whose identify() is an AsyncMock returning a strong match."""
    gw = MagicMock(spec=RecognitionGateway)
    gw.is_configured.return_value = True
    gw.identify = AsyncMock(return_value=vendor_result(music=[track(score=95)]))
    return gw


@pytest.fixture
def quota(store, clock):
    return QuotaGuard(store, clock=clock)


@pytest.fixture
def persister(store, clock):
    return DiscoveryPersister(store, clock=clock)


@pytest.fixture
def orchestrator(gateway, quota, persister):
    return RecognitionOrchestrator(gateway, quota, persister, encoder=SampleEncoder(max_length=4096))
