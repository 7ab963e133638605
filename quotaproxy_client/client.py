"""
Quota Proxy API Client
HTTP client with sync and async support.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from .models import ChatCompletion, RateLimitInfo


PROXY_PATH = "/api/openai-proxy"
STATUS_PATH = "/api/openai-proxy/rate-limit-status"


class ProxyError(Exception):
    """Raised when the proxy returns an error response."""

    def __init__(self, message: str, status_code: int, rate_limit: RateLimitInfo):
        self.status_code = status_code
        self.rate_limit = rate_limit
        super().__init__(message)


class RateLimitExceeded(ProxyError):
    """Raised when the caller's quota is exhausted (HTTP 429)."""

    pass


def _raise_for_proxy_error(response: httpx.Response, rate_limit: RateLimitInfo) -> None:
    if response.status_code == 429:
        raise RateLimitExceeded(
            f"Rate limit exceeded. Try again after {rate_limit.reset.isoformat()}",
            response.status_code,
            rate_limit,
        )
    if response.is_success:
        return
    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        data = {}
    message = data.get("message") or data.get("error") or "Unknown error occurred"
    raise ProxyError(message, response.status_code, rate_limit)


def _build_payload(messages: list[dict], model: str, params: dict[str, Any]) -> dict:
    payload = {"model": model, "messages": messages}
    payload.update({k: v for k, v in params.items() if v is not None})
    return payload


class ProxyClient:
    """
    Python client for the Quota Proxy.

    Example:
        ```python
        client = ProxyClient("http://localhost:8000")

        completion, rate_limit = client.chat_completions_create(
            messages=[{"role": "user", "content": "Suggest five tasks"}],
            model="gpt-3.5-turbo",
        )
        print(completion.content, rate_limit.remaining)
        ```
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 60.0,
        recaptcha_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the proxy client.

        Args:
            base_url: Proxy server URL (default: localhost:8000)
            timeout: Request timeout in seconds
            recaptcha_token: Optional bot verification token sent with requests
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        headers = {"Content-Type": "application/json"}
        if recaptcha_token:
            headers["X-Recaptcha-Token"] = recaptcha_token

        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> ProxyClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def health(self) -> dict:
        """Check API health status."""
        response = self._client.get("/health")
        response.raise_for_status()
        return response.json()

    def chat_completions_create(
        self,
        messages: list[dict],
        model: str = "gpt-3.5-turbo",
        **params: Any,
    ) -> tuple[ChatCompletion, RateLimitInfo]:
        """
        Send a chat completion request through the proxy.

        Args:
            messages: List of message dicts with role and content
            model: Upstream model name
            **params: Extra parameters passed through to the upstream API

        Returns:
            (ChatCompletion, RateLimitInfo) tuple

        Raises:
            RateLimitExceeded: When the quota is exhausted
            ProxyError: For any other error response
        """
        response = self._client.post(PROXY_PATH, json=_build_payload(messages, model, params))
        rate_limit = RateLimitInfo.from_headers(response.headers)
        _raise_for_proxy_error(response, rate_limit)
        return ChatCompletion.from_dict(response.json()), rate_limit

    def get_completion(self, prompt: str, model: str = "gpt-3.5-turbo") -> str:
        """Send a single user prompt and return the reply text."""
        completion, _ = self.chat_completions_create(
            messages=[{"role": "user", "content": prompt}],
            model=model,
        )
        return completion.content

    def get_rate_limit_status(self) -> RateLimitInfo:
        """Get current quota usage without consuming a request."""
        response = self._client.get(
            STATUS_PATH,
            params={"_": int(time.time() * 1000)},
            headers={"Cache-Control": "no-cache"},
        )
        fallback = RateLimitInfo.from_headers(response.headers)
        _raise_for_proxy_error(response, fallback)
        return RateLimitInfo.from_status(response.json(), fallback)


class AsyncProxyClient:
    """Async version of ProxyClient."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 60.0,
        recaptcha_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")

        headers = {"Content-Type": "application/json"}
        if recaptcha_token:
            headers["X-Recaptcha-Token"] = recaptcha_token

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> AsyncProxyClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def health(self) -> dict:
        response = await self._client.get("/health")
        response.raise_for_status()
        return response.json()

    async def chat_completions_create(
        self,
        messages: list[dict],
        model: str = "gpt-3.5-turbo",
        **params: Any,
    ) -> tuple[ChatCompletion, RateLimitInfo]:
        response = await self._client.post(
            PROXY_PATH, json=_build_payload(messages, model, params)
        )
        rate_limit = RateLimitInfo.from_headers(response.headers)
        _raise_for_proxy_error(response, rate_limit)
        return ChatCompletion.from_dict(response.json()), rate_limit

    async def get_completion(self, prompt: str, model: str = "gpt-3.5-turbo") -> str:
        completion, _ = await self.chat_completions_create(
            messages=[{"role": "user", "content": prompt}],
            model=model,
        )
        return completion.content

    async def get_rate_limit_status(self) -> RateLimitInfo:
        response = await self._client.get(
            STATUS_PATH,
            params={"_": int(time.time() * 1000)},
            headers={"Cache-Control": "no-cache"},
        )
        fallback = RateLimitInfo.from_headers(response.headers)
        _raise_for_proxy_error(response, fallback)
        return RateLimitInfo.from_status(response.json(), fallback)
