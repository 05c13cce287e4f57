"""Mapping of domain exceptions onto HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ehr_onboarding.core.exceptions import (
    ConfigurationError,
    ConnectionNotFoundError,
    EhrOnboardingError,
    InvalidStatusTransitionError,
)
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_EXCEPTION = (
    (ConnectionNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStatusTransitionError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


async def ehr_onboarding_error_handler(
    request: Request, exc: EhrOnboardingError
) -> JSONResponse:
    """Render a domain error as {message, error_code}."""
    status_code = status.HTTP_400_BAD_REQUEST
    for exception_type, mapped_status in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exception_type):
            status_code = mapped_status
            break

    logger.warning(
        "request_rejected",
        path=request.url.path,
        status_code=status_code,
        error_code=exc.code,
    )
    return JSONResponse(
        status_code=status_code,
        content={"message": exc.message, "error_code": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain exception handlers on an app."""
    app.add_exception_handler(EhrOnboardingError, ehr_onboarding_error_handler)
