"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work; these types only describe shape.

Account.credentials is a tuple, not a set or list: an Account read from the
store is a snapshot. Adding a passkey goes through AccountStore.append_credential
and a fresh read, so concurrent requests never share a mutable collection.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AuthenticationStrategy(str, Enum):
    """How an account proves its identity. Derived, never stored."""

    PASSWORD = "PASSWORD"
    PASSKEY = "PASSKEY"


class TokenKind(str, Enum):
    AUTHORIZATION = "AUTHORIZATION"
    REFRESH = "REFRESH"


class CeremonyKind(str, Enum):
    REGISTRATION = "REGISTRATION"
    ASSERTION = "ASSERTION"


@dataclass(frozen=True)
class FidoCredential:
    """A registered WebAuthn public key.

    credential_id and public_key_cose are base64url strings (no padding), the
    same encoding the browser uses for rawId.

    sign_count is the last authenticator signature counter the server
    accepted. The store advances it after each successful assertion; the
    object itself is never changed.
    """

    credential_id: str
    public_key_cose: str
    key_type: str = "public-key"
    sign_count: int = 0


@dataclass(frozen=True)
class Account:
    """An identity as seen by the authentication core.

    password_digest is None for passkey-only accounts.
    """

    id: str
    username: str
    email: str
    display_name: str
    password_digest: str | None = None
    credentials: tuple[FidoCredential, ...] = field(default_factory=tuple)
    created_at: str | None = None


@dataclass(frozen=True)
class SecurityToken:
    """A session token pair. Both tokens carry the same uuid and session claims."""

    authorization_token: str
    refresh_token: str


@dataclass(frozen=True)
class NewAccount:
    """Sign-up input, already validated by the API layer."""

    username: str
    email: str
    display_name: str
    password: str | None = None
    authentication_strategy: AuthenticationStrategy = AuthenticationStrategy.PASSWORD


@dataclass(frozen=True)
class CeremonyOptions:
    """Options the client passes to navigator.credentials.create()/get().

    options is the {"publicKey": {...}} mapping, ready to serialize.
    """

    kind: CeremonyKind
    options: dict
