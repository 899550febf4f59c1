from fastapi import Header, HTTPException, status

from rpm_core.shared.exceptions import (
    AlertStateError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


async def get_clinician_id(
    x_clinician_id: str | None = Header(default=None, alias="X-Clinician-ID"),
) -> str:
    """Acting clinician for attribution; identity is asserted upstream."""
    if not x_clinician_id or not x_clinician_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Clinician-ID header is required",
        )
    return x_clinician_id.strip()


def http_error(exc: DomainError) -> HTTPException:
    """Map a domain error onto the HTTP status the API reports for it."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, AlertStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
    )
