"""Service-level error taxonomy.

Services raise these; the HTTP layer maps them to status codes through the
handler registered in ``caresupply.main``. The daily batch catches them per
template and logs them instead.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Illegal state transition, bad quantity, malformed day-of-month."""

    status_code = 400


class InvalidTransitionError(ValidationError):
    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            'Status transition from "{}" to "{}" is not allowed'.format(from_status, to_status)
        )
        self.from_status = from_status
        self.to_status = to_status


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    """Cross-institution access attempt."""

    status_code = 403


__all__ = [
    "ForbiddenError",
    "InvalidTransitionError",
    "NotFoundError",
    "ServiceError",
    "ValidationError",
]
