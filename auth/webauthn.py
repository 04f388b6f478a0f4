"""
auth/webauthn.py -- Relying-party adapter over py_webauthn.

All WebAuthn cryptography (COSE key parsing, attestation statements,
signature algorithms, the signature-counter rule) is py_webauthn's job. This
module only:

  - builds creation/request options for our accounts and serializes them in
    the {"publicKey": {...}} shape navigator.credentials.create()/get() take;
  - runs verification and returns Verified(value) or Failed(reason).

py_webauthn reports every verification problem by raising. Those exceptions
stop here; the ceremony controller only ever sees a result object and turns a
Failed into RequestNotCompleted once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import (
    base64url_to_bytes,
    bytes_to_base64url,
    parse_authentication_credential_json,
)
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from auth.models import Account, FidoCredential

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.webauthn")

# What the browser hands back: the PublicKeyCredential as JSON text or parsed.
CredentialResponse = Union[str, dict]

_PARSE_ERRORS = (WebAuthnException, ValueError, KeyError, TypeError)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Verified:
    value: Any


@dataclass(frozen=True)
class Failed:
    reason: str


VerificationResult = Union[Verified, Failed]


@dataclass(frozen=True)
class AssertionOutcome:
    credential_id: str
    new_sign_count: int


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrationChallenge:
    """Everything needed to validate a registration response later."""

    challenge: bytes
    user_id: bytes
    rp_id: str
    timeout: int
    user_verification: UserVerificationRequirement
    options: dict = field(repr=False)


@dataclass(frozen=True)
class AssertionChallenge:
    """Everything needed to validate an assertion response later.

    An empty allowed_credentials tuple means resident-key mode: the
    authenticator picks a discoverable credential itself.
    """

    challenge: bytes
    allowed_credentials: tuple[str, ...]
    options: dict = field(repr=False)

    @property
    def resident_key(self) -> bool:
        return not self.allowed_credentials


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------


class RelyingPartyVerifier:
    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        origins: list[str],
        timeout_ms: int = 30_000,
        user_verification: UserVerificationRequirement = UserVerificationRequirement.REQUIRED,
    ) -> None:
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origins = list(origins)
        self.timeout_ms = timeout_ms
        self.user_verification = user_verification

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelyingPartyVerifier":
        return cls(
            rp_id=settings.rp_id,
            rp_name=settings.rp_name,
            origins=settings.rp_origins,
            timeout_ms=settings.registration_timeout_ms,
        )

    @property
    def _require_user_verification(self) -> bool:
        return self.user_verification == UserVerificationRequirement.REQUIRED

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def build_registration_options(self, account: Account) -> RegistrationChallenge:
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=account.id.encode("utf-8"),
            user_name=account.email,
            user_display_name=account.display_name,
            timeout=self.timeout_ms,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=self.user_verification,
            ),
            exclude_credentials=[_descriptor(c) for c in account.credentials],
        )
        return RegistrationChallenge(
            challenge=options.challenge,
            user_id=account.id.encode("utf-8"),
            rp_id=self.rp_id,
            timeout=self.timeout_ms,
            user_verification=self.user_verification,
            options={"publicKey": json.loads(options_to_json(options))},
        )

    def verify_registration(self, challenge: RegistrationChallenge, response: CredentialResponse) -> VerificationResult:
        """Check challenge, origin, rp id, flags and attestation.

        On success the value is the new FidoCredential.
        """
        try:
            verified = verify_registration_response(
                credential=response,
                expected_challenge=challenge.challenge,
                expected_rp_id=challenge.rp_id,
                expected_origin=self.origins,
                require_user_verification=self._require_user_verification,
            )
        except _PARSE_ERRORS as exc:
            logger.info("Registration verification failed: %s", exc)
            return Failed(str(exc) or "Passkey registration failed.")
        return Verified(
            FidoCredential(
                credential_id=bytes_to_base64url(verified.credential_id),
                public_key_cose=bytes_to_base64url(verified.credential_public_key),
                key_type=verified.credential_type.value,
                sign_count=verified.sign_count,
            )
        )

    # ------------------------------------------------------------------
    # Assertion
    # ------------------------------------------------------------------

    def build_assertion_request(self, allowed_credentials: tuple[FidoCredential, ...]) -> AssertionChallenge:
        options = generate_authentication_options(
            rp_id=self.rp_id,
            timeout=self.timeout_ms,
            allow_credentials=[_descriptor(c) for c in allowed_credentials],
            user_verification=self.user_verification,
        )
        return AssertionChallenge(
            challenge=options.challenge,
            allowed_credentials=tuple(c.credential_id for c in allowed_credentials),
            options={"publicKey": json.loads(options_to_json(options))},
        )

    def credential_id_of(self, response: CredentialResponse) -> Optional[str]:
        """Return the base64url credential id an assertion response refers to."""
        try:
            parsed = parse_authentication_credential_json(response)
        except _PARSE_ERRORS:
            return None
        return bytes_to_base64url(parsed.raw_id)

    def verify_assertion(
        self,
        challenge: AssertionChallenge,
        response: CredentialResponse,
        stored_credential: FidoCredential,
    ) -> VerificationResult:
        """Check challenge, origin, rp id, signature and the signature counter.

        py_webauthn rejects a counter that is not greater than the stored one
        (unless both are zero, which means the authenticator has no counter).
        On success the value is an AssertionOutcome.
        """
        if challenge.allowed_credentials and stored_credential.credential_id not in challenge.allowed_credentials:
            return Failed("Credential was not offered for this challenge.")
        try:
            verified = verify_authentication_response(
                credential=response,
                expected_challenge=challenge.challenge,
                expected_rp_id=self.rp_id,
                expected_origin=self.origins,
                credential_public_key=base64url_to_bytes(stored_credential.public_key_cose),
                credential_current_sign_count=stored_credential.sign_count,
                require_user_verification=self._require_user_verification,
            )
        except _PARSE_ERRORS as exc:
            logger.info("Assertion verification failed: %s", exc)
            return Failed(str(exc) or "Passkey challenge failed.")
        return Verified(
            AssertionOutcome(
                credential_id=bytes_to_base64url(verified.credential_id),
                new_sign_count=verified.new_sign_count,
            )
        )


def _descriptor(credential: FidoCredential) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(id=base64url_to_bytes(credential.credential_id))
