"""
Discovery Store

Persistence collaborator for the recognition pipeline: discovery records,
recognition attempt log (rate gate) and subscription tiers.

Two implementations:
- MemoryDiscoveryStore: process-local, used by tests and `--store memory`
- JsonDiscoveryStore: single JSON file with atomic writes
"""

import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from audio_recognition.errors import PersistenceError
from audio_recognition.persistence import Discovery
from logging_config import get_logger
from system_utils.helpers import run_in_daemon_executor, utc_now

logger = get_logger(__name__)

# Attempts older than this are dropped on write; the rate gate looks back 1h
ATTEMPT_RETENTION = timedelta(days=1)


class DiscoveryStore(ABC):
    """Interface the pipeline needs from the hosted data store."""

    @abstractmethod
    async def insert_discovery(self, discovery: Discovery) -> Discovery:
        ...

    @abstractmethod
    async def list_discoveries(self, account_id: str) -> List[Discovery]:
        ...

    @abstractmethod
    async def count_discoveries_since(self, account_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def record_attempt(self, account_id: str, at: datetime) -> None:
        ...

    @abstractmethod
    async def count_attempts_since(self, account_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def get_subscription_tier(self, account_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_subscription_tier(self, account_id: str, tier: str) -> None:
        ...


class MemoryDiscoveryStore(DiscoveryStore):
    """In-process store. Not shared between workers."""

    def __init__(self):
        self._discoveries: List[Discovery] = []
        self._attempts: Dict[str, List[datetime]] = {}
        self._tiers: Dict[str, str] = {}

    async def insert_discovery(self, discovery: Discovery) -> Discovery:
        self._discoveries.append(discovery)
        return discovery

    async def list_discoveries(self, account_id: str) -> List[Discovery]:
        return [d for d in self._discoveries if d.account_id == account_id]

    async def count_discoveries_since(self, account_id: str, since: datetime) -> int:
        return sum(1 for d in self._discoveries if d.account_id == account_id and d.created_at >= since)

    async def record_attempt(self, account_id: str, at: datetime) -> None:
        self._attempts.setdefault(account_id, []).append(at)

    async def count_attempts_since(self, account_id: str, since: datetime) -> int:
        return sum(1 for at in self._attempts.get(account_id, []) if at >= since)

    async def get_subscription_tier(self, account_id: str) -> Optional[str]:
        return self._tiers.get(account_id)

    async def set_subscription_tier(self, account_id: str, tier: str) -> None:
        self._tiers[account_id] = tier


class JsonDiscoveryStore(DiscoveryStore):
    """
    JSON file store.

    Layout:
        {"discoveries": [...], "attempts": {account: [iso, ...]}, "subscriptions": {account: tier}}

    All file I/O runs in the shared executor; a re-entrant lock serializes
    read-modify-write cycles, and writes go through a temp file + os.replace.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.RLock()

    # ----- file helpers (blocking, executor only) -----

    def _load(self) -> dict:
        if not self._path.exists():
            return {"discoveries": [], "attempts": {}, "subscriptions": {}}
        try:
            with open(self._path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read {self._path}: {e}") from e
        data.setdefault("discoveries", [])
        data.setdefault("attempts", {})
        data.setdefault("subscriptions", {})
        return data

    def _save(self, data: dict) -> None:
        temp_path = self._path.parent / f"discoveries_{uuid.uuid4().hex}.json.tmp"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, self._path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise PersistenceError(f"Failed to write {self._path}: {e}") from e

    def _insert_sync(self, discovery: Discovery) -> None:
        with self._lock:
            data = self._load()
            data["discoveries"].append(discovery.to_dict())
            self._save(data)

    def _list_sync(self, account_id: str) -> List[Discovery]:
        with self._lock:
            data = self._load()
        return [Discovery.from_dict(d) for d in data["discoveries"] if d.get("account_id") == account_id]

    def _record_attempt_sync(self, account_id: str, at: datetime) -> None:
        with self._lock:
            data = self._load()
            cutoff = at - ATTEMPT_RETENTION
            kept = [ts for ts in data["attempts"].get(account_id, []) if datetime.fromisoformat(ts) >= cutoff]
            kept.append(at.isoformat())
            data["attempts"][account_id] = kept
            self._save(data)

    def _count_attempts_sync(self, account_id: str, since: datetime) -> int:
        with self._lock:
            data = self._load()
        return sum(1 for ts in data["attempts"].get(account_id, []) if datetime.fromisoformat(ts) >= since)

    def _get_tier_sync(self, account_id: str) -> Optional[str]:
        with self._lock:
            return self._load()["subscriptions"].get(account_id)

    def _set_tier_sync(self, account_id: str, tier: str) -> None:
        with self._lock:
            data = self._load()
            data["subscriptions"][account_id] = tier
            self._save(data)

    # ----- async interface -----

    async def insert_discovery(self, discovery: Discovery) -> Discovery:
        await run_in_daemon_executor(self._insert_sync, discovery)
        return discovery

    async def list_discoveries(self, account_id: str) -> List[Discovery]:
        return await run_in_daemon_executor(self._list_sync, account_id)

    async def count_discoveries_since(self, account_id: str, since: datetime) -> int:
        discoveries = await self.list_discoveries(account_id)
        return sum(1 for d in discoveries if d.created_at >= since)

    async def record_attempt(self, account_id: str, at: datetime) -> None:
        await run_in_daemon_executor(self._record_attempt_sync, account_id, at)

    async def count_attempts_since(self, account_id: str, since: datetime) -> int:
        return await run_in_daemon_executor(self._count_attempts_sync, account_id, since)

    async def get_subscription_tier(self, account_id: str) -> Optional[str]:
        return await run_in_daemon_executor(self._get_tier_sync, account_id)

    async def set_subscription_tier(self, account_id: str, tier: str) -> None:
        await run_in_daemon_executor(self._set_tier_sync, account_id, tier)


def create_store(storage_config: dict) -> DiscoveryStore:
    """Build the store selected by config.STORAGE."""
    backend = storage_config.get("backend", "json")
    if backend == "memory":
        logger.info("Using in-memory discovery store (records are lost on exit)")
        return MemoryDiscoveryStore()
    if backend == "json":
        path = storage_config["discoveries_file"]
        logger.info(f"Using JSON discovery store at {path}")
        return JsonDiscoveryStore(path)
    raise ValueError(f"Unknown storage backend: {backend}")
