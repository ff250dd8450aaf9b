"""Authenticate Adobe I/O Events webhook deliveries."""

from events_webhook.errors import (
    EventVerificationError,
    KeyResolutionError,
    MalformedPayloadError,
    MalformedSignatureError,
)
from events_webhook.webhook import AsyncEventVerifier, EventVerifier
