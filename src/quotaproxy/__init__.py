"""Rate-limited proxy for chat completion requests."""

__version__ = "0.1.0"
