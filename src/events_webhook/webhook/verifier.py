"""Adobe I/O Events payload verification.

An event is authentic when

1. its ``recipient_client_id`` matches our API key, and
2. at least one of the two signatures sent along with it validates
   against the public key whose path is sent next to it.

I/O Events always sends two key/signature pairs so that either key stays
valid while the other one is being rotated.  Each pair ("slot") is
evaluated on its own: a key that cannot be fetched or a garbled signature
in one slot never hides a valid signature in the other.

See https://developer.adobe.com/events/docs/guides/#security-considerations
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from events_webhook.config import ADOBE_IOEVENTS_SECURITY_DOMAIN, Settings
from events_webhook.errors import (
    EventVerificationError,
    KeyResolutionError,
    MalformedSignatureError,
)
from events_webhook.webhook.pubkey import AsyncPublicKeySource, PublicKeySource
from events_webhook.webhook.recipient import RECIPIENT_CLIENT_ID, matches_recipient
from events_webhook.webhook.signature import decode_signature, verify_signature

logger = logging.getLogger(__name__)

ADOBE_IOEVENTS_DIGI_SIGN_1 = "x-adobe-digital-signature-1"
ADOBE_IOEVENTS_DIGI_SIGN_2 = "x-adobe-digital-signature-2"
ADOBE_IOEVENTS_PUB_KEY_1_PATH = "x-adobe-public-key1-path"
ADOBE_IOEVENTS_PUB_KEY_2_PATH = "x-adobe-public-key2-path"


@dataclass(frozen=True)
class SignatureSlot:
    """Header names of one (public key path, signature) pair."""

    key_path_header: str
    signature_header: str


DEFAULT_SIGNATURE_SLOTS: tuple[SignatureSlot, ...] = (
    SignatureSlot(ADOBE_IOEVENTS_PUB_KEY_1_PATH, ADOBE_IOEVENTS_DIGI_SIGN_1),
    SignatureSlot(ADOBE_IOEVENTS_PUB_KEY_2_PATH, ADOBE_IOEVENTS_DIGI_SIGN_2),
)


class SlotOutcome(str, enum.Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNRESOLVED = "unresolved"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class SlotResult:
    """Outcome of evaluating one signature slot."""

    slot: SignatureSlot
    outcome: SlotOutcome
    error: EventVerificationError | None = None


def _decide(results: Sequence[SlotResult]) -> bool:
    """Combine slot results: any valid slot wins, else surface malformed input."""
    if any(r.outcome is SlotOutcome.VALID for r in results):
        return True
    for r in results:
        if r.outcome is SlotOutcome.MALFORMED and r.error is not None:
            raise r.error
    logger.warning(
        "Invalid signatures for the event payload (%s)",
        ", ".join(f"{r.slot.signature_header}={r.outcome.value}" for r in results),
    )
    return False


def _slot_headers(
    slot: SignatureSlot, headers: Mapping[str, str]
) -> tuple[str, str] | SlotResult:
    """Pull the key path and signature of *slot* out of *headers*.

    Returns a finished :class:`SlotResult` when the slot cannot be
    evaluated (missing header, malformed signature).
    """
    key_path = headers.get(slot.key_path_header)
    signature = headers.get(slot.signature_header)
    if not key_path or signature is None:
        logger.debug("Slot %s not sent with this event", slot.signature_header)
        return SlotResult(slot, SlotOutcome.UNRESOLVED)
    try:
        decode_signature(signature)
    except MalformedSignatureError as exc:
        logger.warning("Malformed %s header: %s", slot.signature_header, exc)
        return SlotResult(slot, SlotOutcome.MALFORMED, exc)
    return key_path, signature


def _log_mismatch(api_key: str, payload: str | bytes) -> None:
    logger.warning(
        "Your apiKey %s is not matching the event %s", api_key, RECIPIENT_CLIENT_ID
    )
    logger.debug("Rejected payload: %r", payload)


class EventVerifier:
    """Verify Adobe I/O Events webhook deliveries.

    Parameters
    ----------
    key_source:
        Where public keys are fetched from.  Defaults to a caching
        :class:`PublicKeySource` against *security_domain*.
    security_domain:
        Base URL for the default key source.  Ignored when *key_source*
        is given.
    slots:
        The header pairs to check; production sends two.
    owns_source:
        Close *key_source* together with the verifier.
    """

    def __init__(
        self,
        key_source: PublicKeySource | None = None,
        *,
        security_domain: str = ADOBE_IOEVENTS_SECURITY_DOMAIN,
        slots: Sequence[SignatureSlot] = DEFAULT_SIGNATURE_SLOTS,
        owns_source: bool = False,
    ) -> None:
        self._owns_source = owns_source or key_source is None
        self._keys = key_source or PublicKeySource(security_domain)
        self._slots = tuple(slots)

    @classmethod
    def from_settings(cls, settings: Settings) -> EventVerifier:
        """Build a verifier from application settings."""
        return cls(PublicKeySource.from_settings(settings), owns_source=True)

    @property
    def key_source(self) -> PublicKeySource:
        return self._keys

    # ── Public API ──────────────────────────────────────────────────

    def verify(
        self,
        payload: str | bytes,
        api_key: str,
        headers: Mapping[str, str],
    ) -> bool:
        """Return ``True`` if *payload* is addressed to *api_key* and signed.

        Parameters
        ----------
        payload:
            The event payload exactly as received.
        api_key:
            The payload's ``recipient_client_id`` must match it.
        headers:
            Request headers sent along with the payload; they carry the
            paths to the public keys and the matching signatures.

        Raises
        ------
        MalformedPayloadError
            If *payload* is not JSON.  Raised before any key is fetched.
        MalformedSignatureError
            If no slot validates and at least one signature header is not
            valid base64.
        """
        if not matches_recipient(payload, api_key):
            _log_mismatch(api_key, payload)
            return False

        results: list[SlotResult] = []
        for slot in self._slots:
            result = self.evaluate_slot(slot, payload, headers)
            results.append(result)
            if result.outcome is SlotOutcome.VALID:
                break
        return _decide(results)

    def evaluate_slots(
        self, payload: str | bytes, headers: Mapping[str, str]
    ) -> list[SlotResult]:
        """Evaluate every slot (no short-circuit) and return the results."""
        return [self.evaluate_slot(slot, payload, headers) for slot in self._slots]

    def evaluate_slot(
        self,
        slot: SignatureSlot,
        payload: str | bytes,
        headers: Mapping[str, str],
    ) -> SlotResult:
        """Check one key path / signature pair; never raises."""
        extracted = _slot_headers(slot, headers)
        if isinstance(extracted, SlotResult):
            return extracted
        key_path, signature = extracted

        try:
            public_key = self._keys.fetch_public_key(key_path)
        except KeyResolutionError as exc:
            logger.warning("Public key %s unavailable: %s", key_path, exc.reason)
            return SlotResult(slot, SlotOutcome.UNRESOLVED, exc)

        if verify_signature(payload, signature, public_key):
            return SlotResult(slot, SlotOutcome.VALID)
        return SlotResult(slot, SlotOutcome.INVALID)

    # ── lifecycle ─────────────────────────────────────────────────

    def close(self) -> None:
        if self._owns_source:
            self._keys.close()

    def __enter__(self) -> EventVerifier:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class AsyncEventVerifier:
    """Asyncio flavour of :class:`EventVerifier`.

    Both slots are evaluated concurrently, so a slow key server for one
    slot does not delay the other.
    """

    def __init__(
        self,
        key_source: AsyncPublicKeySource | None = None,
        *,
        security_domain: str = ADOBE_IOEVENTS_SECURITY_DOMAIN,
        slots: Sequence[SignatureSlot] = DEFAULT_SIGNATURE_SLOTS,
        owns_source: bool = False,
    ) -> None:
        self._owns_source = owns_source or key_source is None
        self._keys = key_source or AsyncPublicKeySource(security_domain)
        self._slots = tuple(slots)

    @classmethod
    def from_settings(cls, settings: Settings) -> AsyncEventVerifier:
        """Build a verifier from application settings."""
        return cls(AsyncPublicKeySource.from_settings(settings), owns_source=True)

    @property
    def key_source(self) -> AsyncPublicKeySource:
        return self._keys

    async def verify(
        self,
        payload: str | bytes,
        api_key: str,
        headers: Mapping[str, str],
    ) -> bool:
        """See :meth:`EventVerifier.verify`."""
        if not matches_recipient(payload, api_key):
            _log_mismatch(api_key, payload)
            return False
        return _decide(await self.evaluate_slots(payload, headers))

    async def evaluate_slots(
        self, payload: str | bytes, headers: Mapping[str, str]
    ) -> list[SlotResult]:
        """Evaluate every slot concurrently and return the results in order."""
        return list(
            await asyncio.gather(
                *(self.evaluate_slot(slot, payload, headers) for slot in self._slots)
            )
        )

    async def evaluate_slot(
        self,
        slot: SignatureSlot,
        payload: str | bytes,
        headers: Mapping[str, str],
    ) -> SlotResult:
        """Check one key path / signature pair; never raises."""
        extracted = _slot_headers(slot, headers)
        if isinstance(extracted, SlotResult):
            return extracted
        key_path, signature = extracted

        try:
            public_key = await self._keys.fetch_public_key(key_path)
        except KeyResolutionError as exc:
            logger.warning("Public key %s unavailable: %s", key_path, exc.reason)
            return SlotResult(slot, SlotOutcome.UNRESOLVED, exc)

        if verify_signature(payload, signature, public_key):
            return SlotResult(slot, SlotOutcome.VALID)
        return SlotResult(slot, SlotOutcome.INVALID)

    async def aclose(self) -> None:
        if self._owns_source:
            await self._keys.aclose()

    async def __aenter__(self) -> AsyncEventVerifier:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
