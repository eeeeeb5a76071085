"""Typed errors surfaced by the token, OTP and signature services.

Messages here reach end users. They never include secrets, codes, hashes or
the reason an OTP did not match.
"""

from typing import Optional

LINK_INVALID_MESSAGE = "This link is no longer valid."


class PactLinkError(Exception):
    """Base class for all recoverable-at-the-boundary service errors."""

    code = "error"
    http_status = 400
    public_message = "The request could not be completed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.public_message}


# Token errors: terminal for the token, the caller must request a new one.


class TokenError(PactLinkError):
    http_status = 410
    public_message = LINK_INVALID_MESSAGE


class TokenNotFound(TokenError):
    code = "token_not_found"
    http_status = 404


class TokenExpired(TokenError):
    code = "token_expired"


class TokenAlreadyUsed(TokenError):
    code = "token_already_used"


class TokenRevoked(TokenError):
    code = "token_revoked"


class InvalidTokenRequest(PactLinkError):
    code = "invalid_token_request"
    public_message = "The token request is invalid."


# OTP errors


class OTPError(PactLinkError):
    pass


class OTPNotIssued(OTPError):
    code = "otp_not_issued"
    http_status = 409
    public_message = "No verification code has been issued for this link."


class OTPChallengeExists(OTPError):
    code = "otp_challenge_exists"
    http_status = 409
    public_message = "A verification code has already been issued for this link."


class OTPExpired(OTPError):
    code = "otp_expired"
    http_status = 410
    public_message = "The verification code has expired. Please request a new signing link."


class OTPAttemptsExceeded(OTPError):
    code = "otp_attempts_exceeded"
    http_status = 429
    public_message = "Too many incorrect attempts. Please request a new signing link."


class OTPMismatch(OTPError):
    """Recoverable: the caller may resubmit until attempts run out."""

    code = "otp_mismatch"
    http_status = 400
    public_message = "The verification code is incorrect."

    def __init__(self, attempts_remaining: int):
        super().__init__()
        self.attempts_remaining = attempts_remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["attempts_remaining"] = self.attempts_remaining
        return data


# Signature errors


class SignatureNotFound(PactLinkError):
    code = "signature_not_found"
    http_status = 404
    public_message = "No signature slot exists for this contract and role."


class SignatureAlreadyApplied(PactLinkError):
    """Conflict, not a failure: carries the final signature row."""

    code = "signature_already_applied"
    http_status = 409
    public_message = "This contract has already been signed."

    def __init__(self, signature=None):
        super().__init__()
        self.signature = signature
