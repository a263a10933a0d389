"""Domain errors raised by services and mapped to HTTP responses by the routers."""
from __future__ import annotations

from fastapi import HTTPException, status


class StrikerateError(Exception):
    """Base class for request-terminal domain failures."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthorizationError(StrikerateError):
    """Unauthorized actor, bad signature, stale nonce or ownership mismatch."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(StrikerateError):
    status_code = status.HTTP_404_NOT_FOUND


class StateConflictError(StrikerateError):
    """The entity is not in a state that permits the requested operation."""

    status_code = status.HTTP_400_BAD_REQUEST


class RequestValidationError(StrikerateError):
    status_code = status.HTTP_400_BAD_REQUEST


class PaymentError(StrikerateError):
    """A stake payment could not be verified on the payment rail."""

    status_code = status.HTTP_400_BAD_REQUEST


class PayoutError(StrikerateError):
    """The payout transfer failed; the claim stays retryable."""

    status_code = status.HTTP_502_BAD_GATEWAY


def to_http_exception(exc: StrikerateError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)
