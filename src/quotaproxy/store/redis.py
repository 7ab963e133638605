"""Redis quota store implementation (shared blob backend)."""

import logging
from datetime import datetime, timezone
from typing import Any

from quotaproxy.store.base import (
    QuotaStore,
    QuotaStoreData,
    StoreCorruptError,
    StoreUnavailableError,
    decode_store,
    encode_store,
)

logger = logging.getLogger(__name__)


class RedisQuotaStore(QuotaStore):
    """
    Quota store kept as a single Redis string value.

    Best for:
    - Multi-instance and serverless deployments
    - Shared quota across independently scheduled invocations

    The whole mapping is read and written as one document, the same
    way a blob store is used. There is no compare-and-swap between
    load() and save(), so concurrent writers can lose increments.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        store_name: str = "rate-limits",
        prefix: str = "quotaproxy:",
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        client: Any = None,
    ) -> None:
        """
        Initialize Redis store.

        Args:
            url: Redis connection URL
            store_name: Name of the persisted document
            prefix: Key prefix for namespacing
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            client: Pre-built redis.asyncio client (tests, shared pools)
        """
        self._url = url
        self._store_name = store_name
        self._prefix = prefix
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._client: Any = client

    @property
    def name(self) -> str:
        return "redis"

    @property
    def key(self) -> str:
        return f"{self._prefix}{self._store_name}"

    def _get_client(self) -> Any:
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(
                self._url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                decode_responses=False,
            )
        return self._client

    async def _quarantine(self, payload: bytes | str) -> None:
        """Copy a corrupt payload aside under a timestamped key."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = f"{self.key}:corrupt:{stamp}"
        try:
            await self._get_client().set(target, payload)
            logger.error(f"Corrupt quota document copied to {target}")
        except Exception as e:
            logger.error(f"Failed to quarantine corrupt quota document: {e}")

    async def load(self) -> QuotaStoreData:
        """Fetch and parse the quota document."""
        try:
            try:
                payload = await self._get_client().get(self.key)
            except Exception as e:
                raise StoreUnavailableError(f"Redis GET failed for {self.key}: {e}") from e

            try:
                return decode_store(payload)
            except StoreCorruptError as e:
                logger.error(f"Unparsable quota document at {self.key}: {e}")
                await self._quarantine(payload)
                return {}
        except StoreUnavailableError as e:
            logger.warning(f"Failed to load quota store: {e}")
            return {}

    async def save(self, store: QuotaStoreData) -> None:
        """Overwrite the quota document."""
        try:
            await self._get_client().set(self.key, encode_store(store))
        except Exception as e:
            logger.error(f"Redis SET error for {self.key}: {e}")

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                self._client = None

    async def health_check(self) -> dict[str, Any]:
        try:
            await self._get_client().ping()
            return {"backend": self.name, "connected": True, "key": self.key}
        except Exception as e:
            return {"backend": self.name, "connected": False, "error": str(e)}
