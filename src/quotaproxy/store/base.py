"""Abstract base class and JSON codec for quota stores."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Representable range of an aware datetime, in epoch milliseconds
MIN_EPOCH_MS = (datetime.min.replace(tzinfo=timezone.utc) - EPOCH) // timedelta(milliseconds=1)
MAX_EPOCH_MS = (datetime.max.replace(tzinfo=timezone.utc) - EPOCH) // timedelta(milliseconds=1)


class QuotaStoreError(Exception):
    """Base class for quota store failures."""

    pass


class StoreUnavailableError(QuotaStoreError):
    """Raised when the backing store cannot be read or written."""

    pass


class StoreCorruptError(QuotaStoreError):
    """Raised when a persisted payload cannot be parsed."""

    pass


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=value)


@dataclass
class QuotaRecord:
    """
    Usage counter for one client identity.

    Attributes:
        count: Requests consumed in the current window
        window_reset_at: When the window ends and the count resets
    """

    count: int
    window_reset_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check whether the window has elapsed."""
        return self.window_reset_at < now

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "resetTime": to_epoch_ms(self.window_reset_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuotaRecord":
        count = data["count"]
        reset_time = data["resetTime"]
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"Invalid count: {count!r}")
        if isinstance(reset_time, bool) or not isinstance(reset_time, (int, float)):
            raise ValueError(f"Invalid resetTime: {reset_time!r}")
        # NaN and infinities fail the comparison too
        if not MIN_EPOCH_MS <= reset_time <= MAX_EPOCH_MS:
            raise ValueError(f"resetTime out of range: {reset_time!r}")
        return cls(count=count, window_reset_at=from_epoch_ms(int(reset_time)))


QuotaStoreData = dict[str, QuotaRecord]


def encode_store(store: QuotaStoreData) -> str:
    """Serialize a store mapping to its canonical JSON document."""
    return json.dumps(
        {client_id: record.to_dict() for client_id, record in store.items()},
        sort_keys=True,
        separators=(",", ":"),
    )


def decode_store(payload: str | bytes | None) -> QuotaStoreData:
    """
    Parse a persisted JSON document into a store mapping.

    Args:
        payload: Raw document, or None if nothing was ever written

    Returns:
        Mapping of client id to QuotaRecord (empty for missing payloads)

    Raises:
        StoreCorruptError: If the payload is not a valid store document
    """
    if payload is None:
        return {}
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StoreCorruptError(f"Store payload is not UTF-8: {e}") from e
    if not payload.strip():
        return {}

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StoreCorruptError(f"Store payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise StoreCorruptError(
            f"Store payload must be an object, got {type(data).__name__}"
        )

    store: QuotaStoreData = {}
    for client_id, entry in data.items():
        try:
            store[client_id] = QuotaRecord.from_dict(entry)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise StoreCorruptError(f"Invalid record for {client_id!r}: {e}") from e
    return store


class QuotaStore(ABC):
    """
    Abstract base class for quota stores.

    A quota store persists the whole client-to-record mapping as a
    single named document. Implementations must never raise from
    load() or save(): failures are logged and absorbed.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this backend.

        Returns:
            Backend name (e.g., 'memory', 'file', 'redis')
        """
        ...

    @abstractmethod
    async def load(self) -> QuotaStoreData:
        """
        Load the full store mapping.

        Returns:
            Persisted mapping, or an empty mapping if nothing was
            written, the backend failed, or the payload was corrupt
        """
        ...

    @abstractmethod
    async def save(self, store: QuotaStoreData) -> None:
        """
        Persist the full store mapping, replacing the previous value.

        Args:
            store: Mapping to persist
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def health_check(self) -> dict[str, Any]:
        return {"backend": self.name}
