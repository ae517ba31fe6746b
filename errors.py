"""Domain errors raised by the service modules.

Each error carries the HTTP status it maps to; main.py renders them as
``{"detail": message}``.
"""


class CommerceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CommerceError):
    status_code = 400


class AuthError(CommerceError):
    status_code = 401


class ForbiddenError(CommerceError):
    status_code = 403


class NotFoundError(CommerceError):
    status_code = 404


class ConflictError(CommerceError):
    status_code = 409


class PaymentGatewayError(CommerceError):
    status_code = 502
