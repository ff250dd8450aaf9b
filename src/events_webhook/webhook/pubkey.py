"""Fetch (and cache) the Adobe I/O Events public keys.

The ``x-adobe-public-key{1,2}-path`` headers carry a path relative to the
security domain, e.g. ``/prod/keys/pub-key-voy5XEbWmT.pem``.  Keys are
rotated rarely and a rotation shows up as a *new* path, so a per-path cache
never serves a stale key for long.
"""

from __future__ import annotations

import asyncio
import logging
import threading

import httpx
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from events_webhook.config import ADOBE_IOEVENTS_SECURITY_DOMAIN, Settings
from events_webhook.errors import KeyResolutionError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10.0


def load_public_key(pem: bytes, path: str | None = None) -> RSAPublicKey:
    """Parse a PEM-encoded RSA public key.

    Raises
    ------
    KeyResolutionError
        If *pem* is not a PEM public key, or not an RSA one.
    """
    try:
        key = serialization.load_pem_public_key(pem)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyResolutionError(path, f"response body is not a PEM public key ({exc})") from exc

    if not isinstance(key, RSAPublicKey):
        raise KeyResolutionError(path, f"expected an RSA public key, got {type(key).__name__}")
    return key


def _key_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _check_path(path: str | None) -> str:
    if not path or not path.strip("/"):
        raise KeyResolutionError(path, "empty public key path")
    return path


def _parse_response(path: str, response: httpx.Response) -> RSAPublicKey:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise KeyResolutionError(path, f"HTTP {exc.response.status_code}") from exc
    return load_public_key(response.content, path)


class PublicKeySource:
    """Blocking public key source backed by :class:`httpx.Client`.

    Parameters
    ----------
    base_url:
        Domain the key paths are resolved against.  Override it to point
        at a stub server in tests.
    client:
        Optional pre-configured client.  When omitted the source creates
        (and owns) one.
    cache:
        Keep fetched keys for the lifetime of the source.
    timeout:
        Request timeout in seconds for the owned client.
    """

    def __init__(
        self,
        base_url: str = ADOBE_IOEVENTS_SECURITY_DOMAIN,
        *,
        client: httpx.Client | None = None,
        cache: bool = True,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._base = base_url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._cache_enabled = cache
        self._cache: dict[str, RSAPublicKey] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> PublicKeySource:
        """Build a key source from application settings."""
        return cls(
            settings.security_domain,
            cache=settings.cache_public_keys,
            timeout=settings.key_fetch_timeout,
        )

    @property
    def base_url(self) -> str:
        return self._base

    # ── Public API ──────────────────────────────────────────────────

    def fetch_public_key(self, path: str) -> RSAPublicKey:
        """Return the public key published at *path*.

        Raises
        ------
        KeyResolutionError
            On transport failure, non-2xx status or an unparseable body.
        """
        path = _check_path(path)
        if not self._cache_enabled:
            return self._download(path)

        cached = self._cache.get(path)
        if cached is not None:
            logger.debug("Public key cache hit for %s", path)
            return cached

        # One outstanding fetch per path; distinct paths do not contend.
        lock = self._lock_for(path)
        try:
            with lock:
                cached = self._cache.get(path)
                if cached is not None:
                    return cached
                key = self._download(path)
                self._cache[path] = key
                return key
        finally:
            self._release_lock(path, lock)

    def clear_cache(self) -> None:
        """Forget every cached key."""
        with self._locks_guard:
            self._cache.clear()

    # ── lifecycle ─────────────────────────────────────────────────

    def close(self) -> None:
        """Close the underlying HTTP client if this source created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> PublicKeySource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Internal steps ──────────────────────────────────────────────

    def _lock_for(self, path: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path, threading.Lock())

    def _release_lock(self, path: str, lock: threading.Lock) -> None:
        with self._locks_guard:
            if self._locks.get(path) is lock:
                del self._locks[path]

    def _download(self, path: str) -> RSAPublicKey:
        url = _key_url(self._base, path)
        logger.debug("GET %s", url)
        try:
            response = self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise KeyResolutionError(path, f"transport error ({exc})") from exc
        return _parse_response(path, response)


class AsyncPublicKeySource:
    """Non-blocking counterpart of :class:`PublicKeySource`.

    Uses :class:`httpx.AsyncClient`; concurrent fetches of the same path
    from tasks on one event loop are collapsed into a single request.
    """

    def __init__(
        self,
        base_url: str = ADOBE_IOEVENTS_SECURITY_DOMAIN,
        *,
        client: httpx.AsyncClient | None = None,
        cache: bool = True,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._base = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._cache_enabled = cache
        self._cache: dict[str, RSAPublicKey] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> AsyncPublicKeySource:
        """Build a key source from application settings."""
        return cls(
            settings.security_domain,
            cache=settings.cache_public_keys,
            timeout=settings.key_fetch_timeout,
        )

    @property
    def base_url(self) -> str:
        return self._base

    async def fetch_public_key(self, path: str) -> RSAPublicKey:
        """Return the public key published at *path*.

        Raises
        ------
        KeyResolutionError
            On transport failure, non-2xx status or an unparseable body.
        """
        path = _check_path(path)
        if not self._cache_enabled:
            return await self._download(path)

        cached = self._cache.get(path)
        if cached is not None:
            logger.debug("Public key cache hit for %s", path)
            return cached

        lock = self._locks.setdefault(path, asyncio.Lock())
        try:
            async with lock:
                cached = self._cache.get(path)
                if cached is not None:
                    return cached
                key = await self._download(path)
                self._cache[path] = key
                return key
        finally:
            if self._locks.get(path) is lock:
                del self._locks[path]

    def clear_cache(self) -> None:
        """Forget every cached key."""
        self._cache.clear()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this source created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AsyncPublicKeySource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _download(self, path: str) -> RSAPublicKey:
        url = _key_url(self._base, path)
        logger.debug("GET %s", url)
        try:
            response = await self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise KeyResolutionError(path, f"transport error ({exc})") from exc
        return _parse_response(path, response)
