"""
Domain exceptions and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base exception for authorization and hierarchy errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'DOMAIN_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthorizationDenied(DomainError):
    """Raised when the user is not allowed to perform an action."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'AUTHORIZATION_DENIED'


class LastAdministratorViolation(DomainError):
    """Raised when an operation would leave the system without an active administrator."""
    status_code = status.HTTP_409_CONFLICT
    code = 'LAST_ADMINISTRATOR'


class SelfDeletionViolation(DomainError):
    """Raised when a user tries to delete their own account."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'SELF_DELETION'


class OrphanedPermissionInvariantViolation(DomainError):
    """A stored permission references an entity that no longer exists."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'ORPHANED_PERMISSION'


class CriticalStateDetected(DomainError):
    """No active administrator exists and none could be recovered."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = 'CRITICAL_STATE'


class EntityHasDependents(DomainError):
    """Raised when deleting an entity that still has children."""
    status_code = status.HTTP_409_CONFLICT
    code = 'ENTITY_HAS_DEPENDENTS'


class EntityNotFound(DomainError):
    """Raised when a hierarchy entity cannot be resolved."""
    status_code = status.HTTP_404_NOT_FOUND
    code = 'ENTITY_NOT_FOUND'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, DomainError):
        logger.warning(
            f"Domain error: {exc.__class__.__name__}",
            extra={
                'code': exc.code,
                'error_message': exc.message,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        data = {
            'error': exc.message,
            'code': exc.code,
        }
        if exc.details:
            data['details'] = exc.details
        if request_id:
            data['request_id'] = request_id
        return Response(data, status=exc.status_code)

    # Call DRF's default exception handler
    response = exception_handler(exc, context)

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
