"""Domain errors and their HTTP rendering.

Services raise these; routers let them propagate and the handlers registered
in ``register_exception_handlers`` turn them into ``{"detail", "code"}``
responses. Business rejections (capacity, duplicate enrollment) are ordinary
results for the caller, not server faults, so they are logged at INFO.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "DOMAIN_ERROR"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class ValidationError(DomainError):
    """Invalid request"""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


class NotFound(DomainError):
    """Not found"""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class PermissionDenied(DomainError):
    """Not allowed"""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class CourseNotFound(NotFound):
    """Course not found"""

    code = "COURSE_NOT_FOUND"


class CapacityExceeded(DomainError):
    """This center is no longer accepting enrollments"""

    status_code = status.HTTP_409_CONFLICT
    code = "CAPACITY_EXCEEDED"


class CenterLocked(CapacityExceeded):
    """This center is no longer accepting enrollments"""

    code = "CENTER_LOCKED"


class CenterInUse(DomainError):
    """Center still has pending or active enrollments"""

    status_code = status.HTTP_409_CONFLICT
    code = "CENTER_IN_USE"


class AlreadyEnrolled(DomainError):
    """You are already enrolled in this course"""

    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_ENROLLED"


class AlreadyActive(DomainError):
    """Enrollment is not ejected"""

    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_ACTIVE"


class AlreadyProcessed(DomainError):
    """Payment already processed"""

    status_code = status.HTTP_200_OK
    code = "ALREADY_PROCESSED"


class SignatureInvalid(DomainError):
    """Invalid signature"""

    status_code = status.HTTP_403_FORBIDDEN
    code = "SIGNATURE_INVALID"


class DatabaseError(DomainError):
    """Temporary storage failure, please retry"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DATABASE_ERROR"


class UpstreamPaymentError(DomainError):
    """Payment provider unavailable"""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "UPSTREAM_PAYMENT_ERROR"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("rate limit hit on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": "Rate limit exceeded", "code": "RATE_LIMITED"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
