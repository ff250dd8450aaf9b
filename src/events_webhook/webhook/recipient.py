"""Target recipient check: is this event addressed to us?"""

from __future__ import annotations

import hmac
import json

from events_webhook.errors import MalformedPayloadError

RECIPIENT_CLIENT_ID = "recipient_client_id"


def matches_recipient(payload: str | bytes, expected_api_key: str) -> bool:
    """Return ``True`` if the payload's ``recipient_client_id`` is *expected_api_key*.

    A payload without the field (or with a non-string value) is simply not
    addressed to us and yields ``False``.

    Raises
    ------
    MalformedPayloadError
        If *payload* is not a JSON document.
    """
    try:
        document = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedPayloadError(
            f"Error parsing the event payload during target recipient check: {exc}"
        ) from exc

    if not isinstance(document, dict):
        return False

    recipient = document.get(RECIPIENT_CLIENT_ID)
    if not isinstance(recipient, str):
        return False

    # JSON may decode "\ud800" escapes to lone surrogates.
    return hmac.compare_digest(
        recipient.encode("utf-8", "surrogatepass"),
        expected_api_key.encode("utf-8", "surrogatepass"),
    )
