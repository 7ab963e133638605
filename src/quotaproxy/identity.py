"""Client identity derivation for quota partitioning."""

import hashlib
import ipaddress
import logging
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"
LOCAL_DEV_CLIENT = "local-dev"


@dataclass
class ClientIdentity:
    """Identity resolved for one inbound request."""

    client_id: str
    """Key used to partition quota."""

    ip: str
    """Raw client address as reported by the edge."""

    is_local: bool = False
    """Whether the address belongs to a local development network."""


class ClientIdentityResolver:
    """
    Derives the quota key for a request.

    Strategies:
    - ip: the raw client address
    - fingerprint: one-way hash of address and User-Agent, so raw
      addresses are never persisted
    """

    STRATEGIES = {"ip", "fingerprint"}

    LOCAL_NETWORKS = [
        ipaddress.ip_network("127.0.0.0/8"),
        ipaddress.ip_network("::1/128"),
        ipaddress.ip_network("192.168.0.0/16"),
    ]

    def __init__(
        self,
        strategy: str = "ip",
        salt: str = "",
        local_dev_bypass: bool = False,
    ) -> None:
        """
        Initialize resolver.

        Args:
            strategy: "ip" or "fingerprint"
            salt: Secret mixed into fingerprints
            local_dev_bypass: Map local addresses to the "local-dev" identity
        """
        if strategy not in self.STRATEGIES:
            raise ValueError(f"Unknown identity strategy: {strategy}")
        self._strategy = strategy
        self._salt = salt
        self._local_dev_bypass = local_dev_bypass

    @property
    def strategy(self) -> str:
        return self._strategy

    @staticmethod
    def client_ip(headers: Mapping[str, str]) -> str:
        """
        Extract the client address from edge headers.

        Prefers ``client-ip``, then the first ``x-forwarded-for`` hop,
        then the "unknown" sentinel.
        """
        client_ip = (headers.get("client-ip") or "").strip()
        if client_ip:
            return client_ip

        forwarded = headers.get("x-forwarded-for") or ""
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

        return UNKNOWN_CLIENT

    @classmethod
    def is_local_address(cls, ip: str) -> bool:
        """Check whether an address belongs to a local development network."""
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(address in network for network in cls.LOCAL_NETWORKS)

    def fingerprint(self, ip: str, user_agent: str) -> str:
        digest = hashlib.sha256(f"{self._salt}|{ip}|{user_agent}".encode("utf-8"))
        return f"fp:{digest.hexdigest()[:32]}"

    def resolve(self, headers: Mapping[str, str]) -> ClientIdentity:
        """Resolve the identity for a request's headers."""
        ip = self.client_ip(headers)
        is_local = self.is_local_address(ip)

        if is_local and self._local_dev_bypass:
            return ClientIdentity(client_id=LOCAL_DEV_CLIENT, ip=ip, is_local=True)

        if self._strategy == "fingerprint":
            user_agent = headers.get("user-agent") or ""
            client_id = self.fingerprint(ip, user_agent)
        else:
            client_id = ip

        return ClientIdentity(client_id=client_id, ip=ip, is_local=is_local)
