"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead
and pass the Settings value to constructors.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. rp_id -> RP_ID). Type coercion and validation are built in.

  frozen=True: Settings is an immutable value. Components receive it by
      reference at construction time; nothing mutates it afterwards.

  @model_validator(mode="after"): Cross-field validation after all fields
      are resolved. Production mode refuses to start without token signing
      keys; development mode lets auth/keys.py generate ephemeral ones.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

# One year, matching the refresh token lifetime (365.2425 days).
REFRESH_TOKEN_TTL_SECONDS = 31_556_952
AUTHORIZATION_TOKEN_TTL_SECONDS = 3600


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite+aiosqlite:///authgate.db"

    # ------------------------------------------------------------------
    # Relying party (WebAuthn)
    # ------------------------------------------------------------------

    rp_id: str = "localhost"
    rp_name: str = "authgate"
    rp_origins: list[str] = ["http://localhost:3000"]
    challenge_ttl_seconds: int = Field(default=300, ge=10, le=3600)
    # Client-side timeout handed to navigator.credentials.create().
    registration_timeout_ms: int = 30_000

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Base64 PKCS8 DER private keys, one per token kind. Empty string is the
    # "not configured" sentinel -- see validate_signing_keys().
    authorization_token_private_key: str = ""
    refresh_token_private_key: str = ""
    authorization_token_key_id: str = "authorization"
    refresh_token_key_id: str = "refresh"
    # Empty means "derive the public key from the private key".
    jwks_url: str = ""

    credentials_authority: str = "https://auth.localhost"
    api_audience: str = "authgate-api"
    token_subject: str = "authgate"

    authorization_token_ttl_seconds: int = AUTHORIZATION_TOKEN_TTL_SECONDS
    refresh_token_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=16)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cookie_domain: Optional[str] = None
    secure_cookies: bool = False
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = []
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing key policy.

        Dev mode (DEBUG=true): missing keys are allowed. auth/keys.py
            generates an ephemeral pair and logs a warning; tokens will not
            survive a restart.

        Production mode: refuse to start unless both private keys are set.

        Both modes: the two kinds must use different key ids, otherwise a
            JWKS lookup would hand back the same public key for both.
        """
        missing = [
            name
            for name in ("authorization_token_private_key", "refresh_token_private_key")
            if not getattr(self, name)
        ]
        if missing and not self.debug:
            raise ValueError(
                f"{', '.join(m.upper() for m in missing)} required in production mode. "
                "Run `python main.py generate-keys` to create them, "
                "or set DEBUG=true for development."
            )
        if self.authorization_token_key_id == self.refresh_token_key_id:
            raise ValueError("AUTHORIZATION_TOKEN_KEY_ID and REFRESH_TOKEN_KEY_ID must differ.")
        return self

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins; defaults to the relying-party origins."""
        return self.cors_origins or self.rp_origins


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
