"""
auth/service.py -- Account sign-up, sign-in and token refresh.

AuthenticationService is what the HTTP routes call. It composes the strategy
resolver, the ceremony controller and the token service; it owns no state of
its own.

Password work (bcrypt) runs in a worker thread so it does not stall the
event loop for other requests.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Optional, Union

from sqlalchemy.exc import IntegrityError

from auth.errors import AccountCreationError, AccountExists, AccountNotFound, InvalidPassword, NullPassword
from auth.models import (
    Account,
    AuthenticationStrategy,
    CeremonyOptions,
    NewAccount,
    SecurityToken,
    TokenKind,
)
from auth.strategy import StrategyResolver
from auth.tokens import hash_password, verify_password

if TYPE_CHECKING:
    from auth.ceremony import CeremonyController
    from auth.store import AccountStore
    from auth.tokens import TokenService

logger = logging.getLogger("authgate.auth")

AuthenticationOutcome = Union[SecurityToken, CeremonyOptions]


class AuthenticationService:
    def __init__(
        self,
        store: AccountStore,
        ceremonies: CeremonyController,
        tokens: TokenService,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._store = store
        self._ceremonies = ceremonies
        self._tokens = tokens
        self._resolver = StrategyResolver(store)
        self._bcrypt_rounds = bcrypt_rounds

    @property
    def ceremonies(self) -> CeremonyController:
        return self._ceremonies

    async def create_account(self, new_account: NewAccount) -> AuthenticationOutcome:
        """Create an account, then either issue tokens or start passkey registration.

        Raises:
            AccountExists:        username or email already in use (no write happens).
            AccountCreationError: the store did not acknowledge the write.
        """
        if await self._store.find_account(new_account.username) is not None or (
            await self._store.find_account(new_account.email) is not None
        ):
            raise AccountExists()

        digest: Optional[str] = None
        if new_account.password is not None:
            digest = await asyncio.to_thread(hash_password, new_account.password, self._bcrypt_rounds)

        account = Account(
            id=uuid.uuid4().hex,
            username=new_account.username,
            email=new_account.email,
            display_name=new_account.display_name,
            password_digest=digest,
        )
        try:
            created = await self._store.create_account(account)
        except IntegrityError as exc:
            # A concurrent sign-up took the username or email first.
            raise AccountExists() from exc
        if not created:
            raise AccountCreationError()
        logger.info("Account %s created (strategy=%s)", account.id, new_account.authentication_strategy.value)

        if new_account.authentication_strategy is AuthenticationStrategy.PASSKEY:
            return await self._ceremonies.start_registration(account.username)
        return self._tokens.issue(account.id, uuid.uuid4().hex)

    async def authentication_strategy(self, identifier: str) -> AuthenticationStrategy:
        return await self._resolver.resolve(identifier)

    async def authenticate(self, identifier: str, password: Optional[str] = None) -> AuthenticationOutcome:
        """Sign in with a password, or start a passkey assertion.

        Passkey-only accounts (credentials, no password) always get an
        assertion challenge. Everyone else must present a matching password.
        """
        account = await self._store.find_account(identifier)
        if account is None:
            raise AccountNotFound()

        if account.credentials and account.password_digest is None:
            return await self._ceremonies.start_assertion(identifier)

        if password is None or account.password_digest is None:
            raise NullPassword()
        if not await asyncio.to_thread(verify_password, password, account.password_digest):
            logger.info("Password mismatch for account %s", account.id)
            raise InvalidPassword()
        return self._tokens.issue(account.id, uuid.uuid4().hex)

    def refresh(self, security_token: SecurityToken) -> SecurityToken:
        return self._tokens.rotate(security_token)

    async def account_details(self, authorization_token: Optional[str]) -> Account:
        """Return the account an authorization token belongs to."""
        account_id = self._tokens.verify(authorization_token, TokenKind.AUTHORIZATION)
        account = await self._store.find_account(account_id)
        if account is None:
            raise AccountNotFound()
        return account
