"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - signing_keys / settings: a debug Settings value with real RSA keys and a
    low bcrypt work factor
  - store: an initialized in-memory AccountStore
  - ceremonies / service: the auth graph wired exactly as api/main.py wires it
  - SoftAuthenticator: a software WebAuthn authenticator (P-256 / ES256,
    "none" attestation) that signs the options the server hands out, so the
    real py_webauthn verification path runs end to end
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: plain ':memory:' is safe here because AccountStore switches to a
StaticPool for in-memory URLs, so every session shares one connection. The
API store is created inside the patched lifespan so its async engine belongs
to the TestClient's event loop.

The DEBUG env var must be set before any api/ import so the module-level
get_settings() call in api/main.py accepts missing signing keys.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import struct
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() does not
# demand production signing keys.
os.environ.setdefault("DEBUG", "true")

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from webauthn.helpers import bytes_to_base64url

from api.limiter import limiter
from api.main import app, build_services
from auth.ceremony import CeremonyController
from auth.keys import generate_key_pair, load_key_material
from auth.models import Account
from auth.service import AuthenticationService
from auth.store import AccountStore
from auth.tokens import TokenService, hash_password
from auth.webauthn import RelyingPartyVerifier
from cache.store import ChallengeCache
from core.config import Settings

RP_ID = "localhost"
ORIGIN = "http://localhost:3000"
MEMORY_DB = "sqlite+aiosqlite:///:memory:"

# Off for functional tests; TestRateLimit in test_api_accounts.py switches it on.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Software authenticator
# ---------------------------------------------------------------------------

_FLAG_UP = 0x01
_FLAG_UV = 0x04
_FLAG_AT = 0x40


class SoftAuthenticator:
    """A single-credential authenticator that lives in memory.

    register() answers navigator.credentials.create() options and
    sign() answers navigator.credentials.get() options, both returning the
    PublicKeyCredential JSON a browser would post back. challenge= overrides
    the challenge embedded in clientDataJSON; sign_count= pins the counter.
    """

    def __init__(self, rp_id: str = RP_ID, origin: str = ORIGIN) -> None:
        self.rp_id = rp_id
        self.origin = origin
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = os.urandom(16)
        self.sign_count = 0

    @property
    def credential_id_b64(self) -> str:
        return bytes_to_base64url(self.credential_id)

    def _rp_id_hash(self) -> bytes:
        return hashlib.sha256(self.rp_id.encode("utf-8")).digest()

    def _client_data(self, ceremony: str, challenge: str) -> bytes:
        return json.dumps(
            {"type": ceremony, "challenge": challenge, "origin": self.origin, "crossOrigin": False},
            separators=(",", ":"),
        ).encode("utf-8")

    def _cose_public_key(self) -> bytes:
        numbers = self.private_key.public_key().public_numbers()
        return cbor2.dumps(
            {
                1: 2,  # kty: EC2
                3: -7,  # alg: ES256
                -1: 1,  # crv: P-256
                -2: numbers.x.to_bytes(32, "big"),
                -3: numbers.y.to_bytes(32, "big"),
            }
        )

    def register(self, options: dict, challenge: str | None = None) -> dict:
        public_key = options["publicKey"]
        client_data = self._client_data("webauthn.create", challenge or public_key["challenge"])
        auth_data = (
            self._rp_id_hash()
            + bytes([_FLAG_UP | _FLAG_UV | _FLAG_AT])
            + struct.pack(">I", self.sign_count)
            + bytes(16)  # aaguid
            + struct.pack(">H", len(self.credential_id))
            + self.credential_id
            + self._cose_public_key()
        )
        attestation = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "attestationObject": bytes_to_base64url(attestation),
            },
            "type": "public-key",
            "clientExtensionResults": {},
        }

    def sign(self, options: dict, challenge: str | None = None, sign_count: int | None = None) -> dict:
        public_key = options["publicKey"]
        if sign_count is None:
            self.sign_count += 1
            sign_count = self.sign_count
        client_data = self._client_data("webauthn.get", challenge or public_key["challenge"])
        auth_data = self._rp_id_hash() + bytes([_FLAG_UP | _FLAG_UV]) + struct.pack(">I", sign_count)
        signature = self.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(hashes.SHA256()),
        )
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
            },
            "type": "public-key",
            "clientExtensionResults": {},
        }


# ---------------------------------------------------------------------------
# Settings and keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def signing_keys() -> tuple[str, str]:
    """One RSA key per token kind. Generated once; RSA generation is slow."""
    return generate_key_pair(), generate_key_pair()


@pytest.fixture(scope="session")
def settings(signing_keys) -> Settings:
    authorization_key, refresh_key = signing_keys
    return Settings(
        debug=True,
        database_url=MEMORY_DB,
        rp_id=RP_ID,
        rp_origins=[ORIGIN],
        authorization_token_private_key=authorization_key,
        refresh_token_private_key=refresh_key,
        bcrypt_rounds=4,
        jwks_url="",
    )


@pytest.fixture(scope="session")
def token_service(settings) -> TokenService:
    return TokenService.from_settings(settings, load_key_material(settings))


# ---------------------------------------------------------------------------
# Store and services
# ---------------------------------------------------------------------------


@pytest.fixture
async def store():
    s = AccountStore(MEMORY_DB)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def cache(settings) -> ChallengeCache:
    return ChallengeCache(ttl=settings.challenge_ttl_seconds)


@pytest.fixture
def ceremonies(store, cache, settings, token_service) -> CeremonyController:
    return CeremonyController(store, RelyingPartyVerifier.from_settings(settings), cache, token_service)


@pytest.fixture
def service(store, ceremonies, token_service, settings) -> AuthenticationService:
    return AuthenticationService(store, ceremonies, token_service, bcrypt_rounds=settings.bcrypt_rounds)


@pytest.fixture
def authenticator() -> SoftAuthenticator:
    return SoftAuthenticator()


@pytest.fixture
def new_authenticator():
    """Factory for extra authenticators (a second device, an impostor)."""
    return SoftAuthenticator


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _make_account(username: str = "alice", password: str | None = "correct horse", **kwargs) -> Account:
    defaults = {
        "id": f"{username}-id".ljust(32, "0")[:32],
        "username": username,
        "email": f"{username}@example.com",
        "display_name": username.title(),
        "password_digest": hash_password(password, rounds=4) if password is not None else None,
    }
    defaults.update(kwargs)
    return Account(**defaults)


@pytest.fixture
def make_account():
    """Factory for Accounts with a fast bcrypt digest (password=None for passkey-only)."""
    return _make_account


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings):
    """Return a lifespan that wires the real auth graph over an in-memory store.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        store = AccountStore(MEMORY_DB)
        await store.initialize()
        build_services(app, settings, store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        await store.close()

    return test_lifespan


@pytest.fixture
def api_client(settings) -> Generator[TestClient, None, None]:
    """TestClient over the real app with a fresh in-memory store per test."""
    app.router.lifespan_context = _patch_lifespan(settings)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
