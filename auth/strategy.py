"""
auth/strategy.py -- Decide whether an account signs in with a password or a passkey.

An account with at least one registered passkey uses PASSKEY; every other
account uses PASSWORD. The answer is derived on each lookup and never stored.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from auth.errors import AccountNotFound
from auth.models import Account, AuthenticationStrategy

if TYPE_CHECKING:
    from auth.store import AccountStore


def strategy_for(account: Account) -> AuthenticationStrategy:
    return AuthenticationStrategy.PASSKEY if account.credentials else AuthenticationStrategy.PASSWORD


class StrategyResolver:
    def __init__(self, store: AccountStore) -> None:
        self._store = store

    async def resolve(self, identifier: str) -> AuthenticationStrategy:
        """Return the strategy for identifier (username, email or id).

        Raises AccountNotFound if the store has no match. Read-only.
        """
        account = await self._store.find_account(identifier)
        if account is None:
            raise AccountNotFound()
        return strategy_for(account)
