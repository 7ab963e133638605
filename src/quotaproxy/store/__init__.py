"""
Quota store module for durable counter persistence.

Provides pluggable store backends (in-memory, local file and Redis)
that all persist the full client-to-record mapping as one document.
"""

from quotaproxy.store.base import (
    QuotaRecord,
    QuotaStore,
    QuotaStoreData,
    QuotaStoreError,
    StoreCorruptError,
    StoreUnavailableError,
    decode_store,
    encode_store,
)
from quotaproxy.store.memory import InMemoryQuotaStore
from quotaproxy.store.file import FileQuotaStore
from quotaproxy.store.redis import RedisQuotaStore
from quotaproxy.store.factory import create_quota_store, get_quota_store

__all__ = [
    "QuotaRecord",
    "QuotaStore",
    "QuotaStoreData",
    "QuotaStoreError",
    "StoreCorruptError",
    "StoreUnavailableError",
    "decode_store",
    "encode_store",
    "InMemoryQuotaStore",
    "FileQuotaStore",
    "RedisQuotaStore",
    "create_quota_store",
    "get_quota_store",
]
