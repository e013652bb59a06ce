"""
Service-layer exceptions.

Services raise these; route handlers translate them to HTTP responses using
the status_code carried by each class.
"""


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400

    def __init__(self, message: str = "Request could not be processed"):
        super().__init__(message)
        self.message = message


class BadRequestError(ServiceError):
    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class ServiceUnavailableError(ServiceError):
    status_code = 503
