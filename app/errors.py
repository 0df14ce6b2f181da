"""
Domain error taxonomy.

Services raise these; public operations turn them into failed ActionResults and
routers map the kind onto an HTTP status.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization_error"
    ALREADY_PROCESSED = "already_processed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_STATE = "invalid_state"
    EXTERNAL_SERVICE = "external_service_error"
    CONFIGURATION = "configuration_error"


class ServiceError(Exception):
    kind = ErrorKind.VALIDATION
    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None, data: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class AuthorizationError(ServiceError):
    kind = ErrorKind.AUTHORIZATION
    status_code = 403


class AlreadyProcessedError(ServiceError):
    kind = ErrorKind.ALREADY_PROCESSED
    status_code = 409


class InsufficientFundsError(ServiceError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    status_code = 400


class InvalidStateError(ServiceError):
    kind = ErrorKind.INVALID_STATE
    status_code = 409


class ExternalServiceError(ServiceError):
    kind = ErrorKind.EXTERNAL_SERVICE
    status_code = 502


class ConfigurationError(ServiceError):
    kind = ErrorKind.CONFIGURATION
    status_code = 500


STATUS_BY_KIND = {
    cls.kind: cls.status_code
    for cls in (
        ValidationError,
        NotFoundError,
        AuthorizationError,
        AlreadyProcessedError,
        InsufficientFundsError,
        InvalidStateError,
        ExternalServiceError,
        ConfigurationError,
    )
}
