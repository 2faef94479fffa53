"""Error taxonomy shared by routers and services.

Every error is an ``HTTPException`` so services can raise it directly, the
same way they raise plain ``HTTPException`` elsewhere.  ``kind`` is the
machine-readable tag clients switch on (e.g. ``unauthorized`` -> redirect to
login) and is rendered next to ``detail`` by the handler in ``main.py``.
"""
from typing import Optional
from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """Base class for all domain errors."""

    kind = "service_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationError(ServiceError):
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class InvalidAmount(ValidationError):
    kind = "invalid_amount"
    default_detail = "Amount must be a positive integer in minor currency units"


class NotFound(ServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Conflict(ServiceError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict"


class AlreadyPurchased(Conflict):
    kind = "already_purchased"
    default_detail = "You already have a ticket for this event"


class AlreadyRegistered(Conflict):
    kind = "already_registered"
    default_detail = "User is already an affiliate"


class PreconditionFailed(ServiceError):
    kind = "precondition_failed"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Operation not available"


class EventNotPurchasable(PreconditionFailed):
    kind = "event_not_purchasable"
    default_detail = "Event is not available for ticket purchase"


class SoldOut(PreconditionFailed):
    kind = "sold_out"
    default_detail = "Event is sold out"


class PayoutAccountMissing(PreconditionFailed):
    kind = "payout_account_missing"
    default_detail = "Artist has not completed payout onboarding"


class Unauthorized(ServiceError):
    kind = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed"


class RateLimited(ServiceError):
    kind = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests"

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(detail, headers={"Retry-After": str(retry_after)})


class ExternalServiceError(ServiceError):
    """Payment processor or store unavailable.

    The caller only ever sees the generic message; the cause is logged
    where the error is raised.
    """

    kind = "external_service_error"
    default_detail = "A payment service is temporarily unavailable"


class SignatureInvalid(ServiceError):
    kind = "signature_invalid"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid signature"
