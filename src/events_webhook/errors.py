"""Exceptions raised while verifying an event payload.

A failed verification is *not* an exception: it is reported as ``False``.
The classes below signal the two other kinds of trouble, malformed input
sent by the caller and infrastructure failures while resolving keys.
"""

from __future__ import annotations


class EventVerificationError(Exception):
    """Base class for every error raised by :mod:`events_webhook`."""


class MalformedPayloadError(EventVerificationError):
    """The event payload is not a parseable JSON document."""


class MalformedSignatureError(EventVerificationError):
    """A signature header is not valid base64."""


class KeyResolutionError(EventVerificationError):
    """A public key could not be fetched or parsed.

    Parameters
    ----------
    path:
        The key path that failed to resolve.
    reason:
        Human readable cause.
    """

    def __init__(self, path: str | None, reason: str) -> None:
        super().__init__(f"Could not resolve public key {path!r}: {reason}")
        self.path = path
        self.reason = reason
