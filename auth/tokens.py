"""
auth/tokens.py -- Session tokens, password hashing, and auth cookies.

Security design decisions:
  JWT: python-jose with RS256. Authorization tokens (1 hour) and refresh
       tokens (1 year) are signed with different key pairs (auth/keys.py) and
       carry the key id in the `kid` header. A token presented as the wrong
       kind fails signature verification. Verification raises TokenExpired
       for a well-signed token past its `exp` and InvalidOrNullToken for
       everything else; expiry is only reported once the signature checks out.

  Rotation: TokenService.rotate() verifies the refresh token and issues a
       brand-new pair for the same uuid/session. The old refresh token is not
       revoked (there is no revocation list); the caller simply replaces it.

  Passwords: bcrypt directly (no passlib wrapper). The work factor comes from
       Settings.bcrypt_rounds so tests can lower it.

  Cookies: both tokens are delivered as httpOnly, SameSite=Lax cookies whose
       max_age matches the token lifetime.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from auth.errors import InvalidOrNullToken, TokenExpired
from auth.models import SecurityToken, TokenKind
from core.config import AUTHORIZATION_TOKEN_TTL_SECONDS, REFRESH_TOKEN_TTL_SECONDS

if TYPE_CHECKING:
    from auth.keys import KeyMaterial
    from core.config import Settings

logger = logging.getLogger("authgate.auth")

_ALGORITHM = "RS256"

UUID_CLAIM = "uuid"
SESSION_ID_CLAIM = "session"

AUTHORIZATION_TOKEN_COOKIE = "__at__"
REFRESH_TOKEN_COOKIE = "__rt__"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer
    caps password length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed digest in the store.
        return False


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issue, verify, and rotate session token pairs.

    Stateless apart from the immutable KeyMaterial, so one instance is shared
    by all requests.
    """

    def __init__(
        self,
        keys: KeyMaterial,
        issuer: str,
        audience: str,
        subject: str,
        authorization_ttl: timedelta = timedelta(seconds=AUTHORIZATION_TOKEN_TTL_SECONDS),
        refresh_ttl: timedelta = timedelta(seconds=REFRESH_TOKEN_TTL_SECONDS),
    ) -> None:
        self._keys = keys
        self.issuer = issuer
        self.audience = audience
        self.subject = subject
        self.authorization_ttl = authorization_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings, keys: KeyMaterial) -> "TokenService":
        return cls(
            keys,
            issuer=settings.credentials_authority,
            audience=settings.api_audience,
            subject=settings.token_subject,
            authorization_ttl=timedelta(seconds=settings.authorization_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
        )

    def issue(self, uuid: str, session_id: str) -> SecurityToken:
        """Mint a fresh authorization/refresh pair for uuid and session_id."""
        return SecurityToken(
            authorization_token=self._encode(TokenKind.AUTHORIZATION, uuid, session_id, self.authorization_ttl),
            refresh_token=self._encode(TokenKind.REFRESH, uuid, session_id, self.refresh_ttl),
        )

    def verify(self, token: Optional[str], kind: TokenKind, claim: str = UUID_CLAIM) -> str:
        """Verify token as kind and return the requested claim (uuid by default).

        Raises:
            TokenExpired:        signature is valid but `exp` has passed.
            InvalidOrNullToken:  missing token, bad signature, wrong issuer,
                                 audience or subject, or a missing claim.
        """
        payload = self._decode(token, kind)
        value = payload.get(claim)
        if not isinstance(value, str) or not value:
            raise InvalidOrNullToken(f"{kind.value.title()} token is missing the {claim!r} claim.")
        return value

    def rotate(self, security_token: SecurityToken) -> SecurityToken:
        """Exchange a valid refresh token for a brand-new token pair."""
        payload = self._decode(security_token.refresh_token, TokenKind.REFRESH)
        uuid = payload.get(UUID_CLAIM)
        session_id = payload.get(SESSION_ID_CLAIM)
        if not isinstance(uuid, str) or not isinstance(session_id, str):
            raise InvalidOrNullToken("Refresh Token is invalid or null.")
        logger.debug("Rotating token pair for session %s", session_id)
        return self.issue(uuid, session_id)

    def _encode(self, kind: TokenKind, uuid: str, session_id: str, ttl: timedelta) -> str:
        pair = self._keys.for_kind(kind)
        issued_at = datetime.now(timezone.utc)
        claims = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": self.subject,
            "iat": issued_at,
            "exp": issued_at + ttl,
            UUID_CLAIM: uuid,
            SESSION_ID_CLAIM: session_id,
        }
        return jwt.encode(claims, pair.private_key_pem, algorithm=_ALGORITHM, headers={"kid": pair.key_id})

    def _decode(self, token: Optional[str], kind: TokenKind) -> dict:
        label = kind.value.title()
        if not token:
            raise InvalidOrNullToken(f"{label} Token is invalid or null.")
        pair = self._keys.for_kind(kind)
        try:
            return jwt.decode(
                token,
                pair.public_key_pem,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                subject=self.subject,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired(f"{label} Token is expired.") from exc
        except JWTError as exc:
            raise InvalidOrNullToken(f"{label} Token is invalid or null.") from exc


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, tokens: SecurityToken, settings: Settings) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches each token's lifetime.
    """
    for name, value, max_age in (
        (AUTHORIZATION_TOKEN_COOKIE, tokens.authorization_token, settings.authorization_token_ttl_seconds),
        (REFRESH_TOKEN_COOKIE, tokens.refresh_token, settings.refresh_token_ttl_seconds),
    ):
        response.set_cookie(
            name,
            value=value,
            max_age=max_age,
            path="/",
            domain=settings.cookie_domain,
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
        )


def clear_auth_cookies(response, settings: Settings) -> None:
    for name in (AUTHORIZATION_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(name, path="/", domain=settings.cookie_domain)
