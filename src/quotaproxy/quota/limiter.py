"""
Rate limiting algorithms for quota management.

Provides two strategies:
- Fixed Window: per-client counters persisted in a QuotaStore
- Client Reported: stateless evaluation of a caller-supplied count
  (untrusted, advisory only)
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from quotaproxy.store.base import QuotaRecord, QuotaStore, QuotaStoreData

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_reset(value: datetime) -> str:
    """Format a reset time as ISO-8601 UTC with milliseconds and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def describe_window(window_seconds: int) -> str:
    """Human-readable name for a window length."""
    names = {86400: "day", 3600: "hour", 60: "minute", 1: "second"}
    if window_seconds in names:
        return names[window_seconds]
    return f"{window_seconds} seconds"


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    """Whether the request is allowed."""

    remaining: int
    """Remaining requests in the current window."""

    reset_time: datetime
    """When the rate limit window resets."""

    total: int
    """Maximum requests allowed in the window."""

    degraded: bool = False
    """True when produced by the fail-open path after a store failure."""

    @property
    def used(self) -> int:
        return self.total - self.remaining

    def retry_after(self, now: datetime | None = None) -> int:
        """Whole seconds until the window resets (never negative)."""
        seconds = (self.reset_time - (now or utcnow())).total_seconds()
        return max(0, math.ceil(seconds))

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset": format_reset(self.reset_time),
            "total": self.total,
            "used": self.used,
        }


def prune_expired(store: QuotaStoreData, now: datetime) -> int:
    """
    Delete records whose window has elapsed.

    Args:
        store: Mapping to prune in place
        now: Current time

    Returns:
        Number of records removed
    """
    expired = [client_id for client_id, record in store.items() if record.is_expired(now)]
    for client_id in expired:
        del store[client_id]
    return len(expired)


class FixedWindowLimiter:
    """
    Fixed window rate limiter backed by a QuotaStore.

    Every decision reloads the whole store, prunes expired windows,
    evaluates the caller's record and writes the document back when
    it changed. Nothing is kept in process memory between calls, so
    the limiter works across short-lived, independently scheduled
    invocations.

    The load/modify/save cycle has no compare-and-swap: two
    concurrent requests for the same client can both read count N
    and both save N+1, so a client may exceed its quota under bursts.
    """

    def __init__(
        self,
        store: QuotaStore,
        limit: int,
        window_seconds: int,
        store_timeout_seconds: float | None = 5.0,
    ) -> None:
        """
        Initialize fixed window limiter.

        Args:
            store: Quota store holding the per-client records
            limit: Maximum requests per window
            window_seconds: Window size in seconds
            store_timeout_seconds: Bound on each store call (None = unbounded)
        """
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        if window_seconds < 1:
            raise ValueError(f"window_seconds must be at least 1, got {window_seconds}")

        self._store = store
        self._limit = limit
        self._window = timedelta(seconds=window_seconds)
        self._window_seconds = window_seconds
        self._store_timeout = store_timeout_seconds

    @property
    def name(self) -> str:
        return "fixed_window"

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    @property
    def store(self) -> QuotaStore:
        return self._store

    async def _load(self) -> QuotaStoreData:
        return await asyncio.wait_for(self._store.load(), timeout=self._store_timeout)

    async def _save(self, store: QuotaStoreData) -> None:
        await asyncio.wait_for(self._store.save(store), timeout=self._store_timeout)

    def fresh_result(self, now: datetime, degraded: bool = False) -> RateLimitResult:
        """Result for a request that opened a new window."""
        return RateLimitResult(
            allowed=True,
            remaining=self._limit - 1,
            reset_time=now + self._window,
            total=self._limit,
            degraded=degraded,
        )

    def bypass_result(self, now: datetime | None = None) -> RateLimitResult:
        """Result reported to clients exempted by the local development policy."""
        return self.fresh_result(now or utcnow())

    async def check(self, client_id: str, now: datetime | None = None) -> RateLimitResult:
        """
        Admit or deny a request and record it.

        Args:
            client_id: Client identity to charge
            now: Current time (defaults to the wall clock)

        Returns:
            RateLimitResult; fail-open if the store misbehaves
        """
        now = now or utcnow()
        try:
            return await self._check(client_id, now)
        except Exception as e:
            logger.warning(
                f"Quota store failure for {client_id}, allowing request: "
                f"{type(e).__name__}: {e}"
            )
            return self.fresh_result(now, degraded=True)

    async def _check(self, client_id: str, now: datetime) -> RateLimitResult:
        store = await self._load()

        pruned = prune_expired(store, now)
        if pruned:
            logger.debug(f"Pruned {pruned} expired quota records")
            await self._save(store)

        record = store.get(client_id)

        if record is None or record.is_expired(now):
            record = QuotaRecord(count=1, window_reset_at=now + self._window)
            store[client_id] = record
            await self._save(store)
            return RateLimitResult(
                allowed=True,
                remaining=self._limit - 1,
                reset_time=record.window_reset_at,
                total=self._limit,
            )

        if record.count >= self._limit:
            logger.info(f"Rate limit exceeded for {client_id} ({record.count}/{self._limit})")
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=record.window_reset_at,
                total=self._limit,
            )

        record.count += 1
        await self._save(store)
        return RateLimitResult(
            allowed=True,
            remaining=self._limit - record.count,
            reset_time=record.window_reset_at,
            total=self._limit,
        )

    async def peek(self, client_id: str, now: datetime | None = None) -> RateLimitResult:
        """
        Report current usage without consuming quota or writing.

        The snapshot can be stale relative to concurrent writers.
        """
        now = now or utcnow()
        try:
            store = await self._load()
        except Exception as e:
            logger.warning(f"Quota store failure reading status for {client_id}: {e}")
            return RateLimitResult(
                allowed=True,
                remaining=self._limit,
                reset_time=now + self._window,
                total=self._limit,
                degraded=True,
            )

        record = store.get(client_id)
        if record is None or record.is_expired(now):
            return RateLimitResult(
                allowed=True,
                remaining=self._limit,
                reset_time=now + self._window,
                total=self._limit,
            )

        remaining = max(0, self._limit - record.count)
        return RateLimitResult(
            allowed=remaining > 0,
            remaining=remaining,
            reset_time=record.window_reset_at,
            total=self._limit,
        )


class ClientReportedLimiter:
    """
    Stateless limiter trusting a caller-supplied call count.

    UNTRUSTED / ADVISORY. The client decides what it reports, so
    omitting the header resets its own count. Use only where no
    shared store is available and abuse resistance does not matter.
    """

    HEADER = "X-Client-Call-Count"

    def __init__(self, limit: int, window_seconds: int) -> None:
        self._limit = limit
        self._window = timedelta(seconds=window_seconds)
        self._window_seconds = window_seconds

    @property
    def name(self) -> str:
        return "client_reported"

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    @staticmethod
    def parse_count(raw: str | None) -> int:
        """Parse the reported count; missing or malformed values count as 0."""
        if raw is None:
            return 0
        try:
            return max(0, int(raw.strip()))
        except ValueError:
            return 0

    def evaluate(self, reported_count: int, now: datetime | None = None) -> RateLimitResult:
        """
        Decide admission from the count the client claims to have used.

        Args:
            reported_count: Requests the client says it already made
            now: Current time

        Returns:
            RateLimitResult for the request being made
        """
        now = now or utcnow()
        reset_time = now + self._window

        if reported_count >= self._limit:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                total=self._limit,
            )

        return RateLimitResult(
            allowed=True,
            remaining=self._limit - reported_count - 1,
            reset_time=reset_time,
            total=self._limit,
        )

    def snapshot(self, reported_count: int, now: datetime | None = None) -> RateLimitResult:
        """Usage implied by the reported count, without a request being made."""
        now = now or utcnow()
        remaining = max(0, self._limit - reported_count)
        return RateLimitResult(
            allowed=remaining > 0,
            remaining=remaining,
            reset_time=now + self._window,
            total=self._limit,
        )
