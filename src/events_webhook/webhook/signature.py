"""RSA-SHA256 signature verification for incoming webhooks."""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from events_webhook.errors import MalformedSignatureError


def decode_signature(signature_b64: str) -> bytes:
    """Strictly decode a base64 signature header value.

    Raises
    ------
    MalformedSignatureError
        If *signature_b64* is not a string of valid base64.
    """
    if not isinstance(signature_b64, str):
        raise MalformedSignatureError(
            f"Signature must be a base64 string, got {type(signature_b64).__name__}"
        )
    try:
        return base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedSignatureError(f"Signature is not valid base64: {exc}") from exc


def verify_signature(
    payload: str | bytes,
    signature_b64: str,
    public_key: RSAPublicKey,
) -> bool:
    """Verify an ``x-adobe-digital-signature-*`` header against *payload*.

    Parameters
    ----------
    payload:
        The event payload exactly as received. Text is encoded as UTF-8.
    signature_b64:
        Value of the signature header (base64 of the raw RSA signature).
    public_key:
        The RSA public key the signature was produced for.

    Returns
    -------
    bool
        ``True`` when the signature is valid.

    Raises
    ------
    MalformedSignatureError
        If the header value is not valid base64.
    """
    signature = decode_signature(signature_b64)
    data = payload.encode("utf-8") if isinstance(payload, str) else payload

    try:
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True
