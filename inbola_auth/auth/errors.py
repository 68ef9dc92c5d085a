from typing import Optional
from fastapi import status


class AuthError(Exception):
    """Base for every failure the auth core reports to a caller.

    ``kind`` is the stable, client-facing error kind; ``reason`` is a finer
    grained tag used for logging and for tests (e.g. ``mismatch``/``exhausted``).
    """
    kind = "AuthError"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False
    default_message = "Authentication failed"

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None,
                 retry_after: Optional[int] = None, remaining_attempts: Optional[int] = None):
        self.message = message or self.default_message
        self.reason = reason or self.kind
        self.retry_after = retry_after
        self.remaining_attempts = remaining_attempts
        super().__init__(self.message)

    def __repr__(self):
        return f"{type(self).__name__}(reason={self.reason!r}, message={self.message!r})"


class InvalidProof(AuthError):
    kind = "InvalidProof"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid verification data"


class ExpiredProof(AuthError):
    kind = "ExpiredProof"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Verification data has expired"


class NotFound(AuthError):
    kind = "NotFound"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Nothing to verify; request a new code or log in again"


class RateLimited(AuthError):
    kind = "RateLimited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"


class AlreadyLinkedElsewhere(AuthError):
    kind = "AlreadyLinkedElsewhere"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This identity is already linked to another account"


class ProviderAlreadyLinked(AuthError):
    kind = "ProviderAlreadyLinked"
    status_code = status.HTTP_409_CONFLICT
    default_message = "A login of this type is already linked to the account"


class SecurityViolation(AuthError):
    kind = "SecurityViolation"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Refresh token reuse detected; all sessions revoked"


class ProviderUnavailable(AuthError):
    kind = "ProviderUnavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Identity provider is unavailable, try again"


class DeliveryFailed(AuthError):
    kind = "DeliveryFailed"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True
    default_message = "Could not deliver the verification code"


class InvalidCredentials(AuthError):
    kind = "InvalidCredentials"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"


class AccountDisabled(AuthError):
    kind = "AccountDisabled"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Account is disabled"


class LastBinding(AuthError):
    kind = "LastBinding"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Cannot remove the only login method of the account"


class InvalidRequest(AuthError):
    kind = "InvalidRequest"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid request"


# -- specific variants (same kind as their parent, distinct reason) --------------

class OtpMismatch(InvalidProof):
    default_message = "Incorrect verification code"

    def __init__(self, remaining_attempts: int):
        super().__init__(reason="mismatch", remaining_attempts=remaining_attempts)


class OtpExhausted(InvalidProof):
    default_message = "Too many incorrect attempts, request a new code"

    def __init__(self):
        super().__init__(reason="exhausted", remaining_attempts=0)


class InvalidSignature(InvalidProof):
    default_message = "Invalid signature"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, reason="invalid_signature")


class InvalidToken(InvalidProof):
    default_message = "Invalid or rejected token"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, reason="invalid_token")


class StaleAuth(ExpiredProof):
    default_message = "Authentication data is too old, log in again"

    def __init__(self):
        super().__init__(reason="stale_auth")


class TokenExpired(ExpiredProof):
    default_message = "Token expired"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, reason="token_expired")


class TooSoon(RateLimited):
    default_message = "Wait before requesting another code"

    def __init__(self, retry_after: int):
        super().__init__(reason="too_soon", retry_after=retry_after)
