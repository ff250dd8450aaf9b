"""Startup orchestrator — configure logging, build the verifier, and serve."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn

from events_webhook.config import get_settings
from events_webhook.webhook.consumer import create_consumer_app
from events_webhook.webhook.verifier import AsyncEventVerifier

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    """Configure root logger with a human-friendly format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main() -> None:
    """Entry-point: build the event verifier, then serve the webhook."""
    settings = get_settings()
    _setup_logging(settings.log_level)

    if not settings.webhook_api_key:
        logger.critical(
            "WEBHOOK_API_KEY is not set. Put the client id of your I/O Events "
            "registration in the environment or the .env file."
        )
        sys.exit(1)

    logger.info("Public keys resolved against %s", settings.security_domain)
    verifier = AsyncEventVerifier.from_settings(settings)

    @asynccontextmanager
    async def _lifespan(app):  # noqa: ANN001
        """Release the key source's HTTP client on shutdown."""
        yield
        await verifier.aclose()

    app = create_consumer_app(
        api_key=settings.webhook_api_key,
        verifier=verifier,
        path=settings.webhook_path,
    )
    app.router.lifespan_context = _lifespan

    logger.info(
        "Starting webhook consumer on %s:%d%s",
        settings.webhook_host,
        settings.webhook_port,
        settings.webhook_path,
    )
    uvicorn.run(
        app,
        host=settings.webhook_host,
        port=settings.webhook_port,
        log_level=settings.log_level.lower(),
    )
