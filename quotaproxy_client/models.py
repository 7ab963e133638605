"""
Data models for Quota Proxy responses.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional


DEFAULT_LIMIT = 20


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class RateLimitInfo:
    """Quota state reported by the proxy."""

    limit: int
    remaining: int
    reset: datetime
    used: int

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RateLimitInfo":
        """Parse X-RateLimit-* headers, defaulting missing values."""
        reset = _parse_time(headers.get("X-RateLimit-Reset"))
        return cls(
            limit=_parse_int(headers.get("X-RateLimit-Limit"), DEFAULT_LIMIT),
            remaining=_parse_int(headers.get("X-RateLimit-Remaining"), 0),
            reset=reset or datetime.now(timezone.utc) + timedelta(hours=1),
            used=_parse_int(headers.get("X-RateLimit-Used"), 0),
        )

    @classmethod
    def from_status(cls, data: dict, fallback: "RateLimitInfo") -> "RateLimitInfo":
        """Prefer status body fields, falling back to header values."""
        reset = _parse_time(data.get("reset"))
        return cls(
            limit=data.get("limit", fallback.limit),
            remaining=data.get("remaining", fallback.remaining),
            reset=reset or fallback.reset,
            used=data.get("used", fallback.used),
        )

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0


@dataclass
class ChatCompletion:
    """A chat completion response."""

    id: str
    model: str
    content: str
    finish_reason: str
    usage: dict

    @classmethod
    def from_dict(cls, data: dict) -> "ChatCompletion":
        choices = data.get("choices", [{}])
        message = choices[0].get("message", {}) if choices else {}
        return cls(
            id=data.get("id", ""),
            model=data.get("model", ""),
            content=message.get("content", "") or "",
            finish_reason=choices[0].get("finish_reason", "") if choices else "",
            usage=data.get("usage", {}),
        )
