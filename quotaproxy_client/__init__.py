"""
Quota Proxy Client SDK
Python client library for the rate-limited completion proxy.
"""

from .client import AsyncProxyClient, ProxyClient, ProxyError, RateLimitExceeded
from .models import ChatCompletion, RateLimitInfo

__version__ = "0.1.0"
__all__ = [
    "ProxyClient",
    "AsyncProxyClient",
    "ProxyError",
    "RateLimitExceeded",
    "ChatCompletion",
    "RateLimitInfo",
]
