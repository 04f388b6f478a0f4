"""
auth/keys.py -- Token signing key material.

Each token kind (authorization, refresh) has its own RSA key pair. Keeping
them apart means a leaked refresh key cannot mint authorization tokens and
vice versa.

Private keys: base64 PKCS8 DER strings from Settings, decoded with
    cryptography. `python main.py generate-keys` produces them.

Public keys: fetched by key id from the JWKS endpoint at Settings.jwks_url
    (the credentials authority). Without a JWKS URL the public key is derived
    from the private key, which is what single-node deployments and tests do.

Everything is loaded once by load_key_material() at startup. KeyMaterial is
frozen and holds only PEM strings, so it can be shared across requests
without locking.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk
from jose.exceptions import JWKError

from auth.models import TokenKind

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.keys")

_RSA_KEY_SIZE = 2048
_ALGORITHM = "RS256"


class KeyLoadError(ValueError):
    """Raised at startup when signing keys cannot be decoded or fetched."""


@dataclass(frozen=True)
class SigningKeyPair:
    key_id: str
    private_key_pem: str
    public_key_pem: str


@dataclass(frozen=True)
class KeyMaterial:
    authorization: SigningKeyPair
    refresh: SigningKeyPair

    def for_kind(self, kind: TokenKind) -> SigningKeyPair:
        return self.refresh if kind is TokenKind.REFRESH else self.authorization


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def generate_key_pair() -> str:
    """Return a new RSA private key as a base64 PKCS8 DER string."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=_RSA_KEY_SIZE)
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(der).decode("ascii")


def decode_private_key(secret: str) -> rsa.RSAPrivateKey:
    """Decode a base64 PKCS8 DER secret into an RSA private key."""
    try:
        der = base64.b64decode(secret, validate=True)
        key = serialization.load_der_private_key(der, password=None)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise KeyLoadError(f"Private key is not valid base64 PKCS8: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError("Private key must be an RSA key.")
    return key


def _private_pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def _public_pem(key: rsa.RSAPublicKey) -> str:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


# ---------------------------------------------------------------------------
# JWKS provider
# ---------------------------------------------------------------------------


class JwkProvider:
    """Look up public keys by key id from a JWKS document.

    The document is fetched lazily and cached for the lifetime of the
    provider. A miss triggers one refetch, so a rotated key published after
    startup is still found.
    """

    def __init__(self, url: str, timeout: float = 10, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._keys: dict[str, dict] = {}

    def _refresh(self) -> None:
        try:
            resp = self._session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            entries = resp.json().get("keys", [])
        except (requests.RequestException, ValueError) as exc:
            raise KeyLoadError(f"Could not fetch JWKS from {self.url}: {exc}") from exc
        self._keys = {e["kid"]: e for e in entries if "kid" in e}
        logger.info("Loaded %d keys from JWKS", len(self._keys))

    def get(self, key_id: str) -> str:
        """Return the PEM public key for key_id."""
        if key_id not in self._keys:
            self._refresh()
        entry = self._keys.get(key_id)
        if entry is None:
            raise KeyLoadError(f"Key id {key_id!r} not present in JWKS at {self.url}")
        try:
            return jwk.construct(entry, algorithm=_ALGORITHM).to_pem().decode("ascii")
        except JWKError as exc:
            raise KeyLoadError(f"JWKS entry {key_id!r} is not a usable RSA key: {exc}") from exc


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _load_pair(secret: str, key_id: str, provider: Optional[JwkProvider], debug: bool) -> SigningKeyPair:
    if secret:
        private_key = decode_private_key(secret)
    elif debug:
        logger.warning(
            "WARNING: No private key configured for %r. Using an ephemeral key; "
            "tokens will not survive a restart.",
            key_id,
        )
        private_key = decode_private_key(generate_key_pair())
    else:
        raise KeyLoadError(f"No private key configured for {key_id!r}.")

    if provider is not None:
        public_pem = provider.get(key_id)
    else:
        public_pem = _public_pem(private_key.public_key())
    return SigningKeyPair(key_id=key_id, private_key_pem=_private_pem(private_key), public_key_pem=public_pem)


def load_key_material(settings: Settings, provider: Optional[JwkProvider] = None) -> KeyMaterial:
    """Build the process-wide KeyMaterial from Settings.

    provider overrides the JWKS lookup; when omitted one is created from
    Settings.jwks_url, or public keys are derived locally if that is empty.
    """
    if provider is None and settings.jwks_url:
        provider = JwkProvider(settings.jwks_url)
    return KeyMaterial(
        authorization=_load_pair(
            settings.authorization_token_private_key,
            settings.authorization_token_key_id,
            provider,
            settings.debug,
        ),
        refresh=_load_pair(
            settings.refresh_token_private_key,
            settings.refresh_token_key_id,
            provider,
            settings.debug,
        ),
    )
