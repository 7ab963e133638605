"""API package for the proxy."""

from quotaproxy.api.app import create_app
from quotaproxy.api.routes import router

__all__ = ["create_app", "router"]
