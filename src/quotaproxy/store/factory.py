"""Quota store factory for creating stores based on configuration."""

import logging
from typing import Any

from quotaproxy.config import settings
from quotaproxy.store.base import QuotaStore
from quotaproxy.store.file import FileQuotaStore
from quotaproxy.store.memory import InMemoryQuotaStore
from quotaproxy.store.redis import RedisQuotaStore

logger = logging.getLogger(__name__)

# Global store instance
_store_instance: QuotaStore | None = None


def create_quota_store(
    backend: str | None = None,
    **kwargs: Any,
) -> QuotaStore:
    """
    Create a quota store instance.

    Args:
        backend: Backend type ("memory", "file" or "redis"), defaults to config
        **kwargs: Additional arguments passed to the backend

    Returns:
        QuotaStore instance

    Raises:
        ValueError: If backend type is unknown
    """
    backend_type = backend or settings.quota_backend

    if backend_type == "memory":
        return InMemoryQuotaStore()

    elif backend_type == "file":
        return FileQuotaStore(path=kwargs.get("path", settings.quota_file))

    elif backend_type == "redis":
        url = kwargs.get("url", settings.redis_url)
        if not url:
            logger.warning(
                "Redis URL not configured, falling back to in-memory quota store. "
                "Set REDIS_URL environment variable to share quota across instances."
            )
            return InMemoryQuotaStore()

        return RedisQuotaStore(
            url=url,
            store_name=kwargs.get("store_name", settings.quota_store_name),
            prefix=kwargs.get("prefix", settings.redis_prefix),
            socket_timeout=kwargs.get("socket_timeout", settings.store_timeout_seconds),
            socket_connect_timeout=kwargs.get(
                "socket_connect_timeout", settings.store_timeout_seconds
            ),
        )

    else:
        raise ValueError(f"Unknown quota backend: {backend_type}")


def get_quota_store() -> QuotaStore:
    """
    Get the global quota store instance.

    Creates the store on first access using configuration settings.

    Returns:
        QuotaStore instance
    """
    global _store_instance

    if _store_instance is None:
        _store_instance = create_quota_store()
        logger.info(f"Initialized {_store_instance.name} quota store")

    return _store_instance


def reset_quota_store() -> None:
    """
    Reset the global store instance.

    Useful for testing or when configuration changes.
    """
    global _store_instance
    _store_instance = None
