"""Pytest configuration and fixtures for events-webhook tests."""

import base64
import json

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from events_webhook.webhook.verifier import (
    ADOBE_IOEVENTS_DIGI_SIGN_1,
    ADOBE_IOEVENTS_DIGI_SIGN_2,
    ADOBE_IOEVENTS_PUB_KEY_1_PATH,
    ADOBE_IOEVENTS_PUB_KEY_2_PATH,
)

API_KEY = "client-id-1234"
STUB_DOMAIN = "https://keys.test"
KEY1_PATH = "/qe/keys/pub-key-1.pem"
KEY2_PATH = "/qe/keys/pub-key-2.pem"


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def sign(private_key: rsa.RSAPrivateKey, payload: str) -> str:
    """Sign *payload* the way I/O Events does (base64 RSA-SHA256)."""
    raw = private_key.sign(payload.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(raw).decode("ascii")


class KeyServer:
    """Stub security domain serving PEM keys and counting requests."""

    def __init__(self, keys: dict[str, bytes]) -> None:
        self.keys = keys
        self.requests: list[str] = []
        self.failing: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if path in self.failing:
            raise httpx.ConnectError("connection refused", request=request)
        if path not in self.keys:
            return httpx.Response(404, text="Not Found")
        return httpx.Response(200, content=self.keys[path])

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture(scope="session")
def key1():
    return _new_key()


@pytest.fixture(scope="session")
def key2():
    return _new_key()


@pytest.fixture
def key_server(key1, key2):
    return KeyServer({KEY1_PATH: public_pem(key1), KEY2_PATH: public_pem(key2)})


@pytest.fixture
def payload():
    return json.dumps(
        {
            "event_id": "b7a0ea6f-1f3a-4e31-9b8d-6c8f4a3e1a51",
            "recipient_client_id": API_KEY,
            "event": {"type": "com.adobe.aem.page.published", "id": "42"},
        }
    )


@pytest.fixture
def signed_headers(payload, key1, key2):
    """Headers carrying two valid key path / signature pairs for *payload*."""
    return {
        ADOBE_IOEVENTS_PUB_KEY_1_PATH: KEY1_PATH,
        ADOBE_IOEVENTS_DIGI_SIGN_1: sign(key1, payload),
        ADOBE_IOEVENTS_PUB_KEY_2_PATH: KEY2_PATH,
        ADOBE_IOEVENTS_DIGI_SIGN_2: sign(key2, payload),
    }
