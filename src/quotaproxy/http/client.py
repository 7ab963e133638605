"""HTTP client for the upstream chat-completion API."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Raised when the upstream call fails or returns a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CredentialMissingError(Exception):
    """Raised when no upstream API key is configured."""

    def __init__(self) -> None:
        super().__init__("API key not configured")


@dataclass
class UpstreamResponse:
    """Successful upstream response, kept as raw bytes for verbatim relay."""

    status_code: int
    content: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def media_type(self) -> str:
        return self.headers.get("content-type", "application/json")


class UpstreamClient:
    """
    Client for an OpenAI-compatible chat-completion API.

    Uses httpx for async HTTP requests. Each admitted request maps to
    exactly one upstream call: there is no retry, since a retried
    completion would be billed twice.
    """

    DEFAULT_TIMEOUT = httpx.Timeout(
        connect=10.0,
        read=60.0,
        write=10.0,
        pool=10.0,
    )

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the upstream client.

        Args:
            api_key: Server-side credential, never exposed to callers
            base_url: API base URL
            timeout: Request timeout configuration
            transport: Optional httpx transport (tests)
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the provider's error message from a failed response."""
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str):
                return error

        return f"Upstream returned HTTP {response.status_code}"

    async def create_chat_completion(self, payload: dict[str, Any]) -> UpstreamResponse:
        """
        Create a chat completion.

        Args:
            payload: Request body including model, messages and any
                pass-through parameters

        Returns:
            UpstreamResponse with the raw response body

        Raises:
            CredentialMissingError: If no API key is configured
            UpstreamError: On network failure, timeout or non-2xx status
        """
        if not self.has_credentials:
            raise CredentialMissingError()

        client = self._get_client()
        try:
            response = await client.post(
                "/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TimeoutException as e:
            logger.error(f"Upstream timeout: {e}")
            raise UpstreamError(f"Upstream request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Upstream request failed: {e}")
            raise UpstreamError(f"Upstream request failed: {e}") from e

        if not response.is_success:
            message = self._error_message(response)
            logger.error(f"Upstream error {response.status_code}: {message}")
            raise UpstreamError(message, status_code=response.status_code)

        return UpstreamResponse(
            status_code=response.status_code,
            content=response.content,
            headers={"content-type": response.headers.get("content-type", "application/json")},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Upstream HTTP client closed")

    async def __aenter__(self) -> "UpstreamClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
