"""
auth/ceremony.py -- Passkey registration and assertion ceremonies.

Each (identifier, ceremony kind) moves through

    Idle -> ChallengeIssued -> Verified | Failed

start_* builds options, caches the challenge under (identifier, kind), and
returns the options for the browser. validate_* takes the challenge out of
the cache before its first await, hands the signed response to the
relying-party verifier, and acts on the result. A failed attempt puts the
challenge back; a successful one leaves it gone, so a signed response is
redeemed at most once even when two requests race. A second start for the
same key replaces the first challenge, so the earlier response can no longer
validate.

Every way a ceremony can fail after the start (no cached challenge, expired
challenge, wrong challenge, bad signature, replayed counter) is reported as
RequestNotCompleted. Only the verifier's message differs.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from auth.errors import AccountNotFound, AuthError, RequestNotCompleted
from auth.models import Account, CeremonyKind, CeremonyOptions, SecurityToken
from auth.webauthn import AssertionChallenge, CredentialResponse, Failed, RegistrationChallenge

if TYPE_CHECKING:
    from auth.store import AccountStore
    from auth.tokens import TokenService
    from auth.webauthn import RelyingPartyVerifier
    from cache.store import ChallengeCache

logger = logging.getLogger("authgate.ceremony")


class CeremonyController:
    def __init__(
        self,
        store: AccountStore,
        verifier: RelyingPartyVerifier,
        cache: ChallengeCache,
        tokens: TokenService,
    ) -> None:
        self._store = store
        self._verifier = verifier
        self._cache = cache
        self._tokens = tokens

    async def _account(self, identifier: str) -> Account:
        account = await self._store.find_account(identifier)
        if account is None:
            raise AccountNotFound()
        return account

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def start_registration(self, identifier: str) -> CeremonyOptions:
        account = await self._account(identifier)
        challenge = self._verifier.build_registration_options(account)
        self._cache.put((identifier, CeremonyKind.REGISTRATION), challenge)
        logger.info("Registration ceremony started for account %s", account.id)
        return CeremonyOptions(kind=CeremonyKind.REGISTRATION, options=challenge.options)

    async def validate_registration(self, identifier: str, response: CredentialResponse) -> None:
        """Verify an attestation and attach the new passkey to the account."""
        key = (identifier, CeremonyKind.REGISTRATION)
        # Taken out of the cache before the first await; a concurrent
        # request with the same response finds nothing.
        challenge = self._cache.pop(key)
        if not isinstance(challenge, RegistrationChallenge):
            raise RequestNotCompleted("Passkey registration failed.")
        try:
            await self._complete_registration(identifier, challenge, response)
        except AuthError:
            self._cache.restore(key, challenge)
            raise

    async def _complete_registration(
        self, identifier: str, challenge: RegistrationChallenge, response: CredentialResponse
    ) -> None:
        result = self._verifier.verify_registration(challenge, response)
        if isinstance(result, Failed):
            raise RequestNotCompleted(result.reason)

        account = await self._account(identifier)
        if not await self._store.append_credential(account.id, result.value):
            raise RequestNotCompleted("Cannot register passkey at the moment.")
        logger.info("Passkey registered for account %s", account.id)

    # ------------------------------------------------------------------
    # Assertion
    # ------------------------------------------------------------------

    async def start_assertion(self, identifier: str) -> CeremonyOptions:
        """Issue an assertion challenge.

        An unknown identifier gets a resident-key request rather than an
        error, matching what an account with no passkeys gets. The failure
        surfaces at validation.
        """
        account = await self._store.find_account(identifier)
        credentials = account.credentials if account is not None else ()
        challenge = self._verifier.build_assertion_request(credentials)
        self._cache.put((identifier, CeremonyKind.ASSERTION), challenge)
        return CeremonyOptions(kind=CeremonyKind.ASSERTION, options=challenge.options)

    async def validate_assertion(self, identifier: str, response: CredentialResponse) -> SecurityToken:
        """Verify a signed assertion and issue a token pair for a new session.

        The challenge is single use. A failed attempt puts it back so the
        client can retry until it expires.
        """
        key = (identifier, CeremonyKind.ASSERTION)
        challenge = self._cache.pop(key)
        account = await self._account(identifier)
        if not isinstance(challenge, AssertionChallenge):
            raise RequestNotCompleted()
        try:
            return await self._complete_assertion(account, challenge, response)
        except RequestNotCompleted:
            self._cache.restore(key, challenge)
            raise

    async def _complete_assertion(
        self, account: Account, challenge: AssertionChallenge, response: CredentialResponse
    ) -> SecurityToken:
        credential_id = self._verifier.credential_id_of(response)
        stored = next((c for c in account.credentials if c.credential_id == credential_id), None)
        if stored is None:
            raise RequestNotCompleted()

        result = self._verifier.verify_assertion(challenge, response, stored)
        if isinstance(result, Failed):
            raise RequestNotCompleted(result.reason)

        # Compare-and-set against the counter verified above. Losing means
        # another assertion for this credential landed in between.
        if not await self._store.update_sign_count(
            stored.credential_id, expected=stored.sign_count, sign_count=result.value.new_sign_count
        ):
            raise RequestNotCompleted()
        logger.info("Passkey assertion succeeded for account %s", account.id)
        return self._tokens.issue(account.id, uuid.uuid4().hex)
