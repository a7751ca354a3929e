"""
Back-office exception taxonomy and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework import exceptions as drf_exceptions

logger = logging.getLogger(__name__)


class BackofficeException(Exception):
    """Base exception for back-office errors."""

    status_code = 500
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class Forbidden(BackofficeException):
    """
    Raised when the authorization check fails.

    The message is deliberately generic; it never names the missing
    permission.
    """
    status_code = 403
    code = 'FORBIDDEN'

    def __init__(self, message="This action is not permitted.", details=None):
        super().__init__(message, details)


class NotFound(BackofficeException):
    """Raised when a referenced account or role does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class ValidationFailed(BackofficeException):
    """Raised when input validation fails. Carries per-field messages."""
    status_code = 400
    code = 'VALIDATION_ERROR'

    def __init__(self, message="Validation failed", fields=None, details=None):
        self.fields = fields or {}
        super().__init__(message, details)


class DuplicateEmail(ValidationFailed):
    """Raised when an email is already held by another account."""

    def __init__(self, email=None):
        super().__init__(
            "Validation failed",
            fields={'email': ["An account with this email already exists."]},
            details={'email': email} if email else None,
        )


class StoreFailure(BackofficeException):
    """Raised when persistence rejects an operation for a non-exceptional reason."""
    status_code = 500
    code = 'STORE_FAILURE'


def _error_payload(exc, request_id):
    payload = {
        'error': exc.message,
        'code': exc.code,
    }
    if isinstance(exc, ValidationFailed):
        payload['fields'] = exc.fields
    if request_id:
        payload['request_id'] = request_id
    return payload


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, BackofficeException):
        log_method = logger.error if exc.status_code >= 500 else logger.info
        log_method(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'code': exc.code,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        return Response(_error_payload(exc, request_id), status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, drf_exceptions.ValidationError) and response is not None:
        fields = response.data if isinstance(response.data, dict) else {'non_field_errors': response.data}
        response.data = _error_payload(ValidationFailed(fields=fields), request_id)
        return response

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'detail': 'An unexpected error occurred',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
