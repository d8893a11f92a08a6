"""Taurus server entry point."""

import logging

from aiohttp import web

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the HTTP server."""
    from src.web.server import create_app

    if not settings.get_api_tokens():
        logger.warning("API_TOKENS is empty; all API requests will be rejected")
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is empty; chat turns will fail")

    logger.info(
        "Starting Taurus on %s:%d with model %s...",
        settings.web_host,
        settings.web_port,
        settings.claude_model,
    )
    web.run_app(create_app(), host=settings.web_host, port=settings.web_port, print=None)


if __name__ == "__main__":
    main()
