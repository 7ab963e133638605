"""File-backed quota store with atomic writes."""

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
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


class FileQuotaStore(QuotaStore):
    """
    Quota store persisted as a JSON file on the local filesystem.

    Writes go to a sibling ``.tmp`` file which is then renamed over
    the store file, so a crash mid-write never leaves a partial
    document behind. Unparsable files are moved aside with a
    timestamp suffix before the store falls back to empty.
    """

    def __init__(self, path: Path | str) -> None:
        """
        Initialize file store.

        Args:
            path: Location of the JSON document
        """
        self._path = Path(path)
        self._tmp_path = self._path.with_name(self._path.name + ".tmp")

    @property
    def name(self) -> str:
        return "file"

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> str | None:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read {self._path}: {e}") from e

    def _write(self, payload: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._tmp_path, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(self._tmp_path, self._path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write {self._path}: {e}") from e

    def _quarantine(self) -> Path | None:
        """Move a corrupt store file aside so it can be inspected."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        try:
            os.replace(self._path, target)
            return target
        except OSError as e:
            logger.error(f"Failed to quarantine corrupt quota file {self._path}: {e}")
            return None

    def _load_sync(self) -> QuotaStoreData:
        payload = self._read()
        try:
            return decode_store(payload)
        except StoreCorruptError as e:
            target = self._quarantine()
            logger.error(f"Corrupt quota store {self._path} moved to {target}: {e}")
            return {}

    async def load(self) -> QuotaStoreData:
        """Read and parse the store file."""
        try:
            return await asyncio.to_thread(self._load_sync)
        except Exception as e:
            logger.warning(f"Failed to load quota store from {self._path}: {e}")
            return {}

    async def save(self, store: QuotaStoreData) -> None:
        """Atomically replace the store file."""
        try:
            payload = encode_store(store)
            await asyncio.to_thread(self._write, payload)
            logger.debug(f"Saved {len(store)} quota records to {self._path}")
        except Exception as e:
            logger.error(f"Failed to save quota store to {self._path}: {e}")

    async def health_check(self) -> dict[str, Any]:
        return {
            "backend": self.name,
            "path": str(self._path),
            "exists": self._path.exists(),
        }
