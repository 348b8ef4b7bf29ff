class OrderError(Exception):
    """Base class for failures surfaced to API callers as an HTTP status and a message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderError):
    status_code = 400


class NotFound(OrderError):
    status_code = 404


class Conflict(OrderError):
    status_code = 409


class Forbidden(OrderError):
    status_code = 403


class InvalidState(OrderError):
    status_code = 400
