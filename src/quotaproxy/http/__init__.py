"""HTTP clients for outbound calls."""

from quotaproxy.http.client import (
    CredentialMissingError,
    UpstreamClient,
    UpstreamError,
    UpstreamResponse,
)

__all__ = [
    "CredentialMissingError",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamResponse",
]
