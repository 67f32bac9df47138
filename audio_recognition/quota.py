"""
Quota Guard

Two gates evaluated before a recognition attempt reaches the vendor:

1. Rate gate: recognition attempts in the trailing 60 minutes must stay below
   the hourly limit (20). Applies to every tier.
2. Quota gate: successful matches this calendar month (UTC) must stay below
   the subscription tier's monthly limit (free=5, discovery=50, premium=none).

Attempt counts come from the store's attempt log; monthly usage comes from the
Discovery history, so only successful matches consume quota.
"""

import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Optional

from logging_config import get_logger
from system_utils.helpers import month_start, utc_now

if TYPE_CHECKING:
    from discovery_store import DiscoveryStore

logger = get_logger(__name__)

DEFAULT_HOURLY_LIMIT = 20
DEFAULT_WINDOW = timedelta(hours=1)


class SubscriptionTier(Enum):
    FREE = "free"
    DISCOVERY = "discovery"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, value) -> "SubscriptionTier":
        """Unknown or missing tiers fall back to FREE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            if value is not None:
                logger.warning(f"Unknown subscription tier {value!r}, treating as free")
            return cls.FREE


DEFAULT_MONTHLY_LIMITS: Dict[SubscriptionTier, Optional[int]] = {
    SubscriptionTier.FREE: 5,
    SubscriptionTier.DISCOVERY: 50,
    SubscriptionTier.PREMIUM: None,  # Unbounded
}


class QuotaStatus(Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    LIMIT_REACHED = "limit_reached"


@dataclass(frozen=True)
class QuotaDecision:
    status: QuotaStatus
    tier: SubscriptionTier
    attempts_last_hour: int
    monthly_count: int
    monthly_limit: Optional[int]
    message: str = "OK"

    @property
    def allowed(self) -> bool:
        return self.status == QuotaStatus.OK


@dataclass(frozen=True)
class UsageStats:
    tier: SubscriptionTier
    count: int
    limit: Optional[int]
    attempts_last_hour: int
    hourly_limit: int

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.count)

    @property
    def can_recognize(self) -> bool:
        if self.attempts_last_hour >= self.hourly_limit:
            return False
        return self.limit is None or self.count < self.limit

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "count": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "canRecognize": self.can_recognize,
            "attemptsLastHour": self.attempts_last_hour,
            "hourlyLimit": self.hourly_limit,
        }


class QuotaGuard:
    """
    Rate and monthly-quota gate for one store.

    Check-then-act atomicity is provided by `lock_for(account_id)`: callers
    hold the account's lock from check() until the attempt has been recorded
    and its result persisted, so two concurrent attempts for the same account
    can never both pass on the last unit of capacity.
    """

    def __init__(
        self,
        store: "DiscoveryStore",
        hourly_limit: int = DEFAULT_HOURLY_LIMIT,
        window: timedelta = DEFAULT_WINDOW,
        monthly_limits: Optional[Dict[SubscriptionTier, Optional[int]]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store
        self._hourly_limit = hourly_limit
        self._window = window
        self._monthly_limits = dict(DEFAULT_MONTHLY_LIMITS)
        if monthly_limits:
            self._monthly_limits.update(monthly_limits)
        self._clock = clock
        # Entries vanish once no task holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @classmethod
    def from_config(cls, store: "DiscoveryStore", quota_config: dict, clock: Callable[[], datetime] = utc_now) -> "QuotaGuard":
        limits = {
            SubscriptionTier.parse(name): limit
            for name, limit in quota_config.get("monthly_limits", {}).items()
        }
        return cls(
            store,
            hourly_limit=int(quota_config.get("hourly_limit", DEFAULT_HOURLY_LIMIT)),
            window=timedelta(seconds=int(quota_config.get("window_seconds", DEFAULT_WINDOW.total_seconds()))),
            monthly_limits=limits,
            clock=clock,
        )

    def lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def monthly_limit(self, tier: SubscriptionTier) -> Optional[int]:
        return self._monthly_limits.get(tier)

    async def resolve_tier(self, account_id: str, tier=None) -> SubscriptionTier:
        """Use the caller-supplied tier, else ask the billing collaborator."""
        if tier is None:
            tier = await self._store.get_subscription_tier(account_id)
        return SubscriptionTier.parse(tier)

    async def _counts(self, account_id: str) -> tuple:
        now = self._clock()
        attempts = await self._store.count_attempts_since(account_id, now - self._window)
        monthly = await self._store.count_discoveries_since(account_id, month_start(now))
        return attempts, monthly

    async def check(self, account_id: str, tier=None) -> QuotaDecision:
        """
        Evaluate both gates, rate gate first.

        Returns a QuotaDecision; refusals are business outcomes, not errors.
        """
        resolved = await self.resolve_tier(account_id, tier)
        limit = self.monthly_limit(resolved)
        attempts, monthly = await self._counts(account_id)

        if attempts >= self._hourly_limit:
            logger.info(f"Rate limit hit for {account_id}: {attempts}/{self._hourly_limit} in the last hour")
            return QuotaDecision(
                QuotaStatus.RATE_LIMITED, resolved, attempts, monthly, limit,
                "Rate limit exceeded. Try again later."
            )

        if limit is not None and monthly >= limit:
            logger.info(f"Monthly limit reached for {account_id} ({resolved.value}): {monthly}/{limit}")
            return QuotaDecision(
                QuotaStatus.LIMIT_REACHED, resolved, attempts, monthly, limit,
                f"Monthly recognition limit reached ({limit}). Upgrade or wait for next month."
            )

        return QuotaDecision(QuotaStatus.OK, resolved, attempts, monthly, limit)

    async def record_attempt(self, account_id: str) -> None:
        await self._store.record_attempt(account_id, self._clock())

    async def usage(self, account_id: str, tier=None) -> UsageStats:
        resolved = await self.resolve_tier(account_id, tier)
        attempts, monthly = await self._counts(account_id)
        return UsageStats(
            tier=resolved,
            count=monthly,
            limit=self.monthly_limit(resolved),
            attempts_last_hour=attempts,
            hourly_limit=self._hourly_limit,
        )
