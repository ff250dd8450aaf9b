"""Tests for the FastAPI webhook consumer."""

import asyncio
import json
import logging

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import API_KEY, KEY1_PATH, KEY2_PATH, STUB_DOMAIN
from events_webhook.webhook.consumer import create_consumer_app
from events_webhook.webhook.pubkey import AsyncPublicKeySource
from events_webhook.webhook.verifier import (
    ADOBE_IOEVENTS_DIGI_SIGN_1,
    ADOBE_IOEVENTS_DIGI_SIGN_2,
    AsyncEventVerifier,
)


@pytest.fixture
def client(key_server):
    http = httpx.AsyncClient(transport=httpx.MockTransport(key_server))
    verifier = AsyncEventVerifier(AsyncPublicKeySource(STUB_DOMAIN, client=http))
    app = create_consumer_app(api_key=API_KEY, verifier=verifier)
    yield TestClient(app)
    asyncio.run(http.aclose())


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_registration_challenge(client):
    response = client.get("/webhook", params={"challenge": "8ec8d794"})
    assert response.status_code == 200
    assert response.json() == {"challenge": "8ec8d794"}


def test_challenge_missing(client):
    assert client.get("/webhook").status_code == 400


def test_authentic_event_accepted(client, payload, signed_headers, caplog):
    with caplog.at_level(logging.INFO, logger="events_webhook.webhook.consumer"):
        response = client.post("/webhook", content=payload, headers=signed_headers)
    assert response.status_code == 200
    assert response.json() == {"status": "received"}
    assert "com.adobe.aem.page.published" in caplog.text


def test_wrong_recipient_rejected(client, key_server, signed_headers):
    body = json.dumps({"recipient_client_id": "other"})
    response = client.post("/webhook", content=body, headers=signed_headers)
    assert response.status_code == 401
    assert key_server.calls == 0


def test_bad_signatures_rejected(client, payload, signed_headers):
    # Each signature paired with the other slot's key.
    signed_headers[ADOBE_IOEVENTS_DIGI_SIGN_1], signed_headers[ADOBE_IOEVENTS_DIGI_SIGN_2] = (
        signed_headers[ADOBE_IOEVENTS_DIGI_SIGN_2],
        signed_headers[ADOBE_IOEVENTS_DIGI_SIGN_1],
    )
    response = client.post("/webhook", content=payload, headers=signed_headers)
    assert response.status_code == 401


def test_unresolvable_keys_rejected(client, key_server, payload, signed_headers):
    key_server.failing.update({KEY1_PATH, KEY2_PATH})
    response = client.post("/webhook", content=payload, headers=signed_headers)
    assert response.status_code == 401


def test_invalid_json_is_bad_request(client, signed_headers):
    response = client.post("/webhook", content=b"{oops", headers=signed_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid JSON body"


def test_malformed_signature_is_bad_request(client, payload, signed_headers):
    signed_headers[ADOBE_IOEVENTS_DIGI_SIGN_1] = "***"
    signed_headers[ADOBE_IOEVENTS_DIGI_SIGN_2] = "***"
    response = client.post("/webhook", content=payload, headers=signed_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Malformed signature header"


def test_lone_surrogate_recipient_rejected(client, key_server, signed_headers):
    body = json.dumps({"recipient_client_id": "\ud800"})
    assert "\\ud800" in body
    response = client.post("/webhook", content=body, headers=signed_headers)
    assert response.status_code == 401
    assert key_server.calls == 0
