"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names on the wire are camelCase (what the web frontend sends); Python
attributes stay snake_case via aliases.
"""

from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

from auth.models import AuthenticationStrategy, NewAccount

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Lowercase letters, digits, dot and underscore. No "@", so a username can
# never be mistaken for an email by the account store, and at most 30
# characters, so it can never collide with a 32-character account id.
USERNAME_PATTERN = r"^[a-z0-9_.]{3,30}$"

# bcrypt only looks at the first 72 bytes.
_PASSWORD_MAX = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class NewAccountRequest(BaseModel):
    """Request body for POST /accounts/new."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    username: str = Field(pattern=USERNAME_PATTERN)
    display_name: str = Field(alias="displayName", min_length=1, max_length=100)
    email: EmailStr
    password: Optional[str] = Field(default=None, min_length=8, max_length=_PASSWORD_MAX)
    authentication_strategy: AuthenticationStrategy = Field(
        default=AuthenticationStrategy.PASSWORD,
        alias="authenticationStrategy",
    )

    def to_domain(self) -> NewAccount:
        return NewAccount(
            username=self.username,
            email=self.email.lower(),
            display_name=self.display_name,
            password=self.password,
            authentication_strategy=self.authentication_strategy,
        )


class IdentifierRequest(BaseModel):
    """Request body carrying only an account identifier (username, email or id)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=255)


class AuthenticateRequest(IdentifierRequest):
    """Request body for POST /accounts/authenticate."""

    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)


class PasskeyCredentialsRequest(IdentifierRequest):
    """Request body for the two passkey validation endpoints.

    passkeyCredentials is the PublicKeyCredential the browser returned, either
    as a JSON string or already parsed.
    """

    passkey_credentials: Union[str, dict] = Field(
        validation_alias=AliasChoices("passkeyCredentials", "credentials"),
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Token pair, also delivered as cookies."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    authorization_token: str = Field(alias="authorizationToken")
    refresh_token: str = Field(alias="refreshToken")


class StrategyResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    authentication_strategy: AuthenticationStrategy = Field(alias="authenticationStrategy")


class AccountResponse(BaseModel):
    """Response for GET /accounts/me. Never includes the password digest or keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    uuid: str
    username: str
    email: str
    display_name: str = Field(alias="displayName")
    authentication_strategy: AuthenticationStrategy = Field(alias="authenticationStrategy")
    passkeys: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
