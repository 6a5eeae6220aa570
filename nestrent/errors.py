# Domain errors raised by the service layer.
# Each carries the HTTP status the API maps it to (see main.service_error_handler).
from __future__ import annotations

from fastapi import status


class ServiceError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class BookingValidationError(ServiceError):
    """Malformed or inverted dates, stay below minimum, or an otherwise invalid request."""
    status_code = status.HTTP_400_BAD_REQUEST


class BookingConflictError(ServiceError):
    """Requested dates intersect an active booking or a blocked date."""
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class PersistenceError(ServiceError):
    """Storage failure; nothing was committed and the caller may retry."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ResourceBusyError(ServiceError):
    """Another process holds the booking lock for this apartment; retry shortly."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
