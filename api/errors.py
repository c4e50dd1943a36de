"""Mapping of domain errors to HTTP errors."""
from fastapi import HTTPException, status

from lifecycle import (
    LifecycleError, NotFoundError, ForbiddenError, InvalidTransitionError, InvalidRequestError
)


def http_error(error: LifecycleError) -> HTTPException:
    """HTTP error for a lifecycle error raised by a service."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, InvalidTransitionError):
        # Current status lets the client resynchronize its view
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                'message': str(error),
                'current_status': error.current_status,
                'requested_status': error.requested_status,
            }
        )
    if isinstance(error, InvalidRequestError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))


def transition_response(result) -> dict:
    """Response body for an applied transition."""
    return {
        'entity': result.entity,
        'previous_status': result.previous_status,
        'notified': result.notified,
        'warning': str(result.delivery_error) if result.delivery_error else None,
    }
