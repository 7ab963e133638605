"""Main entry point for the proxy server."""

import logging

import uvicorn

from quotaproxy.config import settings

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging from settings."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main() -> None:
    """Main entry point."""
    configure_logging()
    logger.info(f"Serving quota proxy on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "quotaproxy.api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
