"""Translate domain exceptions into HTTP errors for the routers."""

from fastapi import HTTPException, status

from vibephoto.errors import (
    Forbidden,
    InsufficientCredits,
    InvalidInput,
    InvalidState,
    NotFound,
    ProviderTransientError,
    ProviderUnavailable,
    VibePhotoError,
    WebhookVerificationError,
)

_STATUS_FOR_ERROR: tuple[tuple[type[VibePhotoError], int], ...] = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (InvalidState, status.HTTP_409_CONFLICT),
    (InsufficientCredits, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidInput, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProviderTransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ProviderUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (WebhookVerificationError, status.HTTP_401_UNAUTHORIZED),
)


def http_error(exc: VibePhotoError) -> HTTPException:
    """Return the HTTPException for ``exc``; unmapped errors are re-raised."""
    for error_type, status_code in _STATUS_FOR_ERROR:
        if isinstance(exc, error_type):
            detail: dict = {"code": exc.code, "message": str(exc)}
            if isinstance(exc, InsufficientCredits):
                detail.update(required=exc.required, available=exc.available)
            return HTTPException(status_code=status_code, detail=detail)
    raise exc
