"""In-memory quota store implementation."""

import logging

from quotaproxy.store.base import (
    QuotaStore,
    QuotaStoreData,
    StoreCorruptError,
    decode_store,
    encode_store,
)

logger = logging.getLogger(__name__)


class InMemoryQuotaStore(QuotaStore):
    """
    In-memory quota store holding the serialized document.

    Best for:
    - Single-process deployments
    - Development and testing

    Limitations:
    - Not shared across processes or invocations
    - Lost on restart
    """

    def __init__(self, initial: str | None = None) -> None:
        """
        Initialize in-memory store.

        Args:
            initial: Optional serialized document to start from
        """
        self._document: str | None = initial

    @property
    def name(self) -> str:
        return "memory"

    @property
    def document(self) -> str | None:
        """Raw serialized document, as last saved."""
        return self._document

    async def load(self) -> QuotaStoreData:
        """Deserialize the held document."""
        try:
            return decode_store(self._document)
        except StoreCorruptError as e:
            logger.error(f"Discarding corrupt in-memory quota document: {e}")
            self._document = None
            return {}

    async def save(self, store: QuotaStoreData) -> None:
        """Serialize and hold the mapping."""
        try:
            self._document = encode_store(store)
        except Exception as e:
            logger.error(f"Failed to serialize quota store: {e}")

    async def close(self) -> None:
        self._document = None
