"""
api/routes/accounts.py -- Account sign-up, sign-in and passkey REST endpoints.

Routes:
  POST /accounts/new                                   -- create account; tokens or registration options
  POST /accounts/authenticationStrategy                -- PASSWORD or PASSKEY for an identifier
  POST /accounts/authenticate                          -- password sign-in or assertion options
  POST /accounts/passkeys/register                     -- registration options for an existing account
  POST /accounts/passkeys/validateRegistrationChallenge -- attach a passkey; 201
  POST /accounts/passkeys/validatePasskeyChallenge     -- passkey sign-in; tokens
  POST /accounts/refresh                               -- rotate the token pair
  GET  /accounts/me                                    -- account behind the authorization token
  POST /accounts/signout                               -- clear both token cookies

Every token response sets the "__at__" and "__rt__" cookies, echoes the pair
in the body, and carries Cache-Control: no-store.

Errors are raised as AuthError subclasses by the service layer and rendered
by the AuthError handler in api/main.py. Handlers here never build error
bodies themselves.

Security:
  POST /authenticate and both passkey validation routes are rate-limited per
  IP (Settings.login_rate_limit).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    AuthenticateRequest,
    IdentifierRequest,
    MessageResponse,
    NewAccountRequest,
    PasskeyCredentialsRequest,
    StrategyResponse,
    TokenResponse,
)
from auth.dependencies import authorization_token, get_app_settings, get_service, security_token
from auth.models import CeremonyOptions, SecurityToken
from auth.service import AuthenticationOutcome, AuthenticationService
from auth.strategy import strategy_for
from auth.tokens import clear_auth_cookies, set_auth_cookies
from core.config import Settings, get_settings

logger = logging.getLogger("authgate.api")

# Auth policy:
# - everything under /accounts is public except GET /accounts/me, which
#   requires a valid authorization token (cookie or Bearer header).
router = APIRouter(tags=["Accounts"])


def _login_limit() -> str:
    return get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _token_response(tokens: SecurityToken, settings: Settings, status_code: int = 200) -> JSONResponse:
    body = TokenResponse(
        message="Authenticated.",
        authorization_token=tokens.authorization_token,
        refresh_token=tokens.refresh_token,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))
    set_auth_cookies(resp, tokens, settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _options_response(options: CeremonyOptions, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=options.options)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _outcome_response(outcome: AuthenticationOutcome, settings: Settings, status_code: int = 200) -> JSONResponse:
    if isinstance(outcome, CeremonyOptions):
        return _options_response(outcome, status_code)
    return _token_response(outcome, settings, status_code)


# ---------------------------------------------------------------------------
# Sign-up and sign-in
# ---------------------------------------------------------------------------


@router.post("/accounts/new", status_code=201)
async def create_account(
    body: NewAccountRequest,
    service: AuthenticationService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Create an account.

    PASSWORD accounts receive a token pair. PASSKEY accounts receive
    registration options and complete sign-up through
    /accounts/passkeys/validateRegistrationChallenge.
    """
    outcome = await service.create_account(body.to_domain())
    return _outcome_response(outcome, settings, status_code=201)


@router.post("/accounts/authenticationStrategy", response_model=StrategyResponse)
async def authentication_strategy(
    body: IdentifierRequest,
    service: AuthenticationService = Depends(get_service),
) -> StrategyResponse:
    strategy = await service.authentication_strategy(body.identifier)
    return StrategyResponse(authentication_strategy=strategy)


@router.post("/accounts/authenticate")
@limiter.limit(_login_limit)  # must stay BELOW @router.post
async def authenticate(
    request: Request,
    body: AuthenticateRequest,
    service: AuthenticationService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Sign in with a password, or receive assertion options for a passkey account."""
    outcome = await service.authenticate(body.identifier, body.password)
    return _outcome_response(outcome, settings)


# ---------------------------------------------------------------------------
# Passkey ceremonies
# ---------------------------------------------------------------------------


@router.post("/accounts/passkeys/register")
async def start_passkey_registration(
    body: IdentifierRequest,
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    options = await service.ceremonies.start_registration(body.identifier)
    return _options_response(options)


@router.post("/accounts/passkeys/validateRegistrationChallenge", status_code=201, response_model=MessageResponse)
@limiter.limit(_login_limit)
async def validate_registration_challenge(
    request: Request,
    body: PasskeyCredentialsRequest,
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    await service.ceremonies.validate_registration(body.identifier, body.passkey_credentials)
    return JSONResponse(status_code=201, content=MessageResponse(message="Passkey registered.").model_dump())


@router.post("/accounts/passkeys/validatePasskeyChallenge")
@limiter.limit(_login_limit)
async def validate_passkey_challenge(
    request: Request,
    body: PasskeyCredentialsRequest,
    service: AuthenticationService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    tokens = await service.ceremonies.validate_assertion(body.identifier, body.passkey_credentials)
    return _token_response(tokens, settings)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.post("/accounts/refresh")
async def refresh(
    tokens: SecurityToken = Depends(security_token),
    service: AuthenticationService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Exchange the refresh token for a new pair. Same uuid and session."""
    return _token_response(service.refresh(tokens), settings)


@router.get("/accounts/me", response_model=AccountResponse)
async def me(
    token: str | None = Depends(authorization_token),
    service: AuthenticationService = Depends(get_service),
) -> AccountResponse:
    account = await service.account_details(token)
    return AccountResponse(
        uuid=account.id,
        username=account.username,
        email=account.email,
        display_name=account.display_name,
        authentication_strategy=strategy_for(account),
        passkeys=len(account.credentials),
    )


@router.post("/accounts/signout", response_model=MessageResponse)
async def signout(settings: Settings = Depends(get_app_settings)) -> JSONResponse:
    """Clear both token cookies. Tokens already issued stay valid until they expire."""
    resp = JSONResponse(content=MessageResponse(message="Signed out.").model_dump())
    clear_auth_cookies(resp, settings)
    return resp
