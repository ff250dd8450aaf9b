from events_webhook.webhook.pubkey import AsyncPublicKeySource, PublicKeySource
from events_webhook.webhook.verifier import AsyncEventVerifier, EventVerifier
