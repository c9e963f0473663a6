"""
DuckFlix - Custom Exceptions and Exception Handlers
"""
import structlog
from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = structlog.get_logger('exceptions')


class DuckFlixException(Exception):
    """Base exception for DuckFlix"""
    status_code = 400

    def __init__(self, message: str, code: str = "DUCKFLIX_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self):
        body = {
            'success': False,
            'code': self.code,
            'error': self.error_label(),
            'message': self.message
        }
        if self.details:
            body['details'] = self.details
        return body

    def error_label(self):
        return self.code.replace('_', ' ').capitalize()


class ValidationException(DuckFlixException):
    """Validation-related exceptions"""
    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR")
        logger.warning(f"Validation error: {message}")


class AuthenticationException(DuckFlixException):
    """Bad username/password or missing token"""
    status_code = 401

    def __init__(self, message: str = "Authentication required", code: str = "AUTH_ERROR"):
        super().__init__(message, code=code)


class AuthorizationException(DuckFlixException):
    """Authorization-related exceptions"""
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, code="FORBIDDEN")
        logger.warning(f"Authorization error: {message}")


class AccountDisabledException(DuckFlixException):
    status_code = 403

    def __init__(self, message: str = "Your account requires a valid Real-Debrid API key. Please contact an administrator."):
        super().__init__(message, code="ACCOUNT_DISABLED")

    def error_label(self):
        return "Account disabled"


class CredentialExpiredException(DuckFlixException):
    """Upstream reported the RD subscription as lapsed"""
    status_code = 403

    def __init__(self, message: str = "Your Real-Debrid subscription has expired. Please renew and contact an administrator.",
                 expired_at: str = None):
        super().__init__(message, code="RD_SUBSCRIPTION_EXPIRED",
                         details={'expiredAt': expired_at} if expired_at else None)

    def error_label(self):
        return "Real-Debrid subscription expired"


class NoCredentialException(DuckFlixException):
    """User has no RD key of its own and none to inherit"""
    status_code = 403

    def __init__(self, user_id=None):
        self.user_id = user_id
        super().__init__("No Real-Debrid API key is configured for this account.", code="NO_CREDENTIAL")

    def error_label(self):
        return "No Real-Debrid credential"


class LeaseConflictException(DuckFlixException):
    """Another network location holds a live lease on the credential"""
    status_code = 409

    def __init__(self, active_user: str, started_at: str, active_location: str = None):
        self.active_location = active_location
        super().__init__(
            "This Real-Debrid account is already streaming on another network.",
            code="LEASE_CONFLICT",
            details={'activeUser': active_user, 'startedAt': started_at},
        )

    def error_label(self):
        return "Concurrent stream detected"


class UpstreamValidationFailure(DuckFlixException):
    """Transient or unexpected failure talking to Real-Debrid"""
    status_code = 502

    def __init__(self, message: str, http_status: int = None):
        self.http_status = http_status
        super().__init__(message, code="UPSTREAM_ERROR")


def register_exception_handlers(app):
    """Register exception handlers with Flask app"""

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle HTTP exceptions"""
        return jsonify({
            'success': False,
            'code': e.name.upper().replace(' ', '_'),
            'error': e.name,
            'message': e.description
        }), e.code

    @app.errorhandler(DuckFlixException)
    def handle_duckflix_exception(e):
        """Handle DuckFlix custom exceptions, status comes from the class"""
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_generic_exception(e):
        """Handle all other exceptions"""
        logger.error(f"Unhandled exception: {e}", exc_info=True)
        return jsonify({
            'success': False,
            'code': 'INTERNAL_ERROR',
            'error': 'Internal error',
            'message': 'An unexpected error occurred'
        }), 500
