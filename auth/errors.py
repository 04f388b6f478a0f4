"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure a caller can observe is one of these. Each carries the HTTP
status the API layer responds with, a machine-readable code, and a human
message. api/main.py registers a single exception handler for AuthError, so
none of them escape as an unhandled 500.

Ceremony failures are deliberately coarse: a challenge that was never
started, one that expired, and one that does not match the response all
surface as RequestNotCompleted. Distinguishing them would let a caller probe
ceremony state.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class AccountNotFound(AuthError):
    status_code = 404
    code = "account_not_found"
    default_message = "Account not found."


class AccountExists(AuthError):
    status_code = 409
    code = "account_exists"
    default_message = "Account already exists."


class AccountCreationError(AuthError):
    status_code = 500
    code = "account_creation_error"
    default_message = "Account creation failed."


class NullPassword(AuthError):
    status_code = 400
    code = "null_password"
    default_message = "Please provide password."


class InvalidPassword(AuthError):
    status_code = 403
    code = "invalid_password"
    default_message = "Password do not match."


class InvalidOrNullToken(AuthError):
    status_code = 401
    code = "invalid_or_null_token"
    default_message = "Token is invalid or null."


class TokenExpired(AuthError):
    status_code = 401
    code = "token_expired"
    default_message = "Token is expired."


class RequestNotCompleted(AuthError):
    status_code = 500
    code = "request_not_completed"
    default_message = "Passkey challenge failed."
