"""FastAPI-based HTTP server that receives Adobe I/O Events deliveries."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status

from events_webhook.errors import MalformedPayloadError, MalformedSignatureError
from events_webhook.webhook.verifier import AsyncEventVerifier

logger = logging.getLogger(__name__)


def create_consumer_app(
    *,
    api_key: str,
    verifier: AsyncEventVerifier,
    path: str = "/webhook",
) -> FastAPI:
    """Build and return a :class:`FastAPI` application for consuming webhooks.

    Parameters
    ----------
    api_key:
        Our client id; every event's ``recipient_client_id`` must match it.
    verifier:
        The :class:`AsyncEventVerifier` used to authenticate deliveries.
    path:
        Route the webhook is registered under.
    """
    app = FastAPI(title="Adobe I/O Events — Webhook Consumer")

    app.state.api_key = api_key
    app.state.verifier = verifier

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple liveness probe."""
        return {"status": "ok"}

    @app.get(path)
    async def challenge(challenge: str | None = None) -> dict[str, str]:
        """Answer the registration handshake I/O Events performs on a new webhook."""
        if challenge is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing challenge parameter",
            )
        logger.info("Answering webhook registration challenge")
        return {"challenge": challenge}

    @app.post(path)
    async def receive_webhook(request: Request) -> dict[str, str]:
        """Handle an incoming webhook delivery from I/O Events."""
        raw_body = await request.body()
        verifier: AsyncEventVerifier = request.app.state.verifier

        # ── Authentication ────────────────────────────────────────
        try:
            verified = await verifier.verify(
                raw_body, request.app.state.api_key, request.headers
            )
        except MalformedPayloadError:
            logger.warning("Rejected webhook: invalid JSON body")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid JSON body",
            )
        except MalformedSignatureError:
            logger.warning("Rejected webhook: malformed signature header")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Malformed signature header",
            )

        if not verified:
            logger.warning("Rejected webhook: event verification failed")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Event verification failed",
            )

        payload: dict[str, Any] = json.loads(raw_body)
        _log_event(payload)
        return {"status": "received"}

    return app


def _log_event(payload: dict[str, Any]) -> None:
    """Log the type and id of an authenticated event."""
    event = payload.get("event", {})
    event_type = payload.get("type") or (event.get("type") if isinstance(event, dict) else None)
    logger.info(
        "Webhook event received: id=%s type=%s",
        payload.get("event_id", "unknown"),
        event_type or "unknown",
    )
