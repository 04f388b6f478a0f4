"""Tests for auth/service.py -- create account, authenticate, refresh.

Covers:
- PASSWORD sign-up returns tokens; PASSKEY sign-up returns registration options
- duplicate username or email raises AccountExists and writes nothing
- store not acknowledging the write raises AccountCreationError
- password sign-in: success, wrong password, missing password, unknown account
- passkey-only accounts get an assertion challenge
- refresh rotates; account_details resolves the authorization token
"""

from unittest.mock import AsyncMock

import pytest

from auth.errors import (
    AccountCreationError,
    AccountExists,
    AccountNotFound,
    InvalidOrNullToken,
    InvalidPassword,
    NullPassword,
)
from auth.models import (
    AuthenticationStrategy,
    CeremonyKind,
    CeremonyOptions,
    FidoCredential,
    NewAccount,
    SecurityToken,
    TokenKind,
)

PASSWORD = "correct horse battery"


def _new(username="nina", email=None, password=PASSWORD, strategy=AuthenticationStrategy.PASSWORD) -> NewAccount:
    return NewAccount(
        username=username,
        email=email or f"{username}@example.com",
        display_name=username.title(),
        password=password,
        authentication_strategy=strategy,
    )


# ---------------------------------------------------------------------------
# Create account
# ---------------------------------------------------------------------------


async def test_create_password_account_returns_tokens(service, store, token_service):
    outcome = await service.create_account(_new())
    assert isinstance(outcome, SecurityToken)

    account = await store.find_account("nina")
    assert token_service.verify(outcome.authorization_token, TokenKind.AUTHORIZATION) == account.id
    assert account.password_digest and account.password_digest != PASSWORD


async def test_create_passkey_account_returns_registration_options(service, store):
    outcome = await service.create_account(_new("olga", password=None, strategy=AuthenticationStrategy.PASSKEY))
    assert isinstance(outcome, CeremonyOptions)
    assert outcome.kind is CeremonyKind.REGISTRATION
    assert outcome.options["publicKey"]["user"]["name"] == "olga@example.com"
    assert (await store.find_account("olga")).password_digest is None


async def test_passkey_sign_up_completes_with_registration(service, store, authenticator):
    options = await service.create_account(_new("pete", password=None, strategy=AuthenticationStrategy.PASSKEY))
    await service.ceremonies.validate_registration("pete", authenticator.register(options.options))
    assert await service.authentication_strategy("pete") is AuthenticationStrategy.PASSKEY


async def test_duplicate_username(service, store):
    await service.create_account(_new("quinn"))
    with pytest.raises(AccountExists):
        await service.create_account(_new("quinn", email="different@example.com"))
    assert await store.find_account("different@example.com") is None


async def test_duplicate_email(service, store):
    await service.create_account(_new("rita"))
    with pytest.raises(AccountExists):
        await service.create_account(_new("rita2", email="rita@example.com"))
    assert await store.find_account("rita2") is None


async def test_unacknowledged_write(service, store, monkeypatch):
    monkeypatch.setattr(store, "create_account", AsyncMock(return_value=False))
    with pytest.raises(AccountCreationError):
        await service.create_account(_new("sam"))


# ---------------------------------------------------------------------------
# Authenticate
# ---------------------------------------------------------------------------


async def test_authenticate_with_password(service, token_service):
    await service.create_account(_new("tina"))
    for identifier in ("tina", "tina@example.com"):
        outcome = await service.authenticate(identifier, PASSWORD)
        assert isinstance(outcome, SecurityToken)
        assert token_service.verify(outcome.refresh_token, TokenKind.REFRESH)


async def test_authenticate_wrong_password(service):
    await service.create_account(_new("uma"))
    with pytest.raises(InvalidPassword):
        await service.authenticate("uma", "not the password")


async def test_authenticate_missing_password(service):
    await service.create_account(_new("vic"))
    with pytest.raises(NullPassword):
        await service.authenticate("vic", None)


async def test_authenticate_unknown_account(service):
    with pytest.raises(AccountNotFound):
        await service.authenticate("nobody", PASSWORD)


async def test_passkey_only_account_gets_assertion(service, store, make_account):
    account = make_account("wade", password=None)
    await store.create_account(account)
    await store.append_credential(account.id, FidoCredential(credential_id="d2FkZS1jcmVk", public_key_cose="a2V5"))

    outcome = await service.authenticate("wade", "ignored")
    assert isinstance(outcome, CeremonyOptions)
    assert outcome.kind is CeremonyKind.ASSERTION
    assert [c["id"] for c in outcome.options["publicKey"]["allowCredentials"]] == ["d2FkZS1jcmVk"]


async def test_account_with_password_and_passkey_can_use_password(service, store):
    await service.create_account(_new("xena"))
    account = await store.find_account("xena")
    await store.append_credential(account.id, FidoCredential(credential_id="eGVuYS1jcmVk", public_key_cose="a2V5"))

    assert isinstance(await service.authenticate("xena", PASSWORD), SecurityToken)
    with pytest.raises(NullPassword):
        await service.authenticate("xena")


async def test_passwordless_account_without_passkey_needs_password(service, store, make_account):
    await store.create_account(make_account("yuri", password=None))
    with pytest.raises(NullPassword):
        await service.authenticate("yuri", PASSWORD)


# ---------------------------------------------------------------------------
# Strategy, refresh, account details
# ---------------------------------------------------------------------------


async def test_authentication_strategy(service):
    await service.create_account(_new("zoe"))
    assert await service.authentication_strategy("zoe") is AuthenticationStrategy.PASSWORD
    with pytest.raises(AccountNotFound):
        await service.authentication_strategy("nobody")


async def test_refresh_rotates(service, token_service):
    tokens = await service.create_account(_new("abby"))
    rotated = service.refresh(tokens)
    assert token_service.verify(rotated.authorization_token, TokenKind.AUTHORIZATION) == token_service.verify(
        tokens.authorization_token, TokenKind.AUTHORIZATION
    )


async def test_account_details(service):
    tokens = await service.create_account(_new("bella"))
    account = await service.account_details(tokens.authorization_token)
    assert account.username == "bella"

    with pytest.raises(InvalidOrNullToken):
        await service.account_details(None)
    with pytest.raises(InvalidOrNullToken):
        await service.account_details(tokens.refresh_token)
