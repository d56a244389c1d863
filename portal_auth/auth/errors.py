"""Error taxonomy for the two-factor handshake.

Each error carries a stable ``kind`` that clients can match on and the HTTP
status the API answers with. Messages are safe to show to end users.
"""
from typing import Optional


class TwoFactorError(Exception):
    kind = "TwoFactorError"
    status_code = 400
    default_message = "Two-factor authentication failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidCodeError(TwoFactorError):
    kind = "InvalidCode"
    default_message = "Invalid verification code"


class InvalidPasswordError(TwoFactorError):
    kind = "InvalidPassword"
    status_code = 401
    default_message = "Invalid email or password"


class RateLimitedError(TwoFactorError):
    kind = "RateLimited"
    status_code = 429
    default_message = "Too many verification attempts. Please try again later."

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retry_after"] = self.retry_after_seconds
        return body


class SessionNotFoundError(TwoFactorError):
    kind = "SessionNotFound"
    status_code = 401
    default_message = "Session not found. Please log in again."


class SessionExpiredError(SessionNotFoundError):
    kind = "SessionExpired"
    default_message = "Session expired. Please log in again."


class SecondFactorRequiredError(TwoFactorError):
    kind = "SecondFactorRequired"
    status_code = 403
    default_message = "Two-factor verification required"


class AlreadyEnabledError(TwoFactorError):
    kind = "AlreadyEnabled"
    status_code = 409
    default_message = "Two-factor authentication is already enabled"


class AlreadyCompleteError(TwoFactorError):
    kind = "AlreadyComplete"
    status_code = 409
    default_message = "Two-factor verification already completed for this session"


class NotInitiatedError(TwoFactorError):
    kind = "NotInitiated"
    default_message = "Two-factor setup has not been initiated"


class NotEnabledError(TwoFactorError):
    kind = "NotEnabled"
    default_message = "Two-factor authentication is not enabled for this user"


class EncodingError(TwoFactorError):
    kind = "EncodingError"
    status_code = 500
    default_message = "Failed to generate provisioning image"


class LimiterUnavailableError(TwoFactorError):
    kind = "LimiterUnavailable"
    status_code = 503
    default_message = "Verification is temporarily unavailable"
