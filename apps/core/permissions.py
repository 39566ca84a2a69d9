"""
DRF permission classes backed by the authorization resolver.

This module provides:
- IsAuthenticatedUser: rejects anonymous and soft-deleted users
- IsAdministrator: requires the Administrator role
- HasSystemPermission: requires a ``system.*`` permission declared on the view
- HasEntityPermission: object-level check through AuthorizationResolver.can
"""
import logging
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


def _is_active_user(user):
    return bool(
        user
        and getattr(user, 'is_authenticated', False)
        and not getattr(user, 'is_deleted', False)
    )


class IsAuthenticatedUser(BasePermission):
    """Allow only authenticated users that are not soft deleted."""

    def has_permission(self, request, view):
        return _is_active_user(request.user)


class IsAdministrator(BasePermission):
    """
    Allow only users holding a role flagged ``is_administrator``.
    """

    message = 'Only administrators can perform this action.'

    def has_permission(self, request, view):
        if not _is_active_user(request.user):
            return False

        from apps.rbac.resolver import AuthorizationResolver

        if AuthorizationResolver.is_administrator(request.user):
            return True

        SecurityLogger.log_authorization_denied(
            request.user, 'administrator', target=view.__class__.__name__
        )
        return False


class HasSystemPermission(BasePermission):
    """
    Enforce the ``required_system_permission`` declared on a view.

    Usage in views:
        class AuditLogListView(APIView):
            permission_classes = [HasSystemPermission]
            required_system_permission = 'system.view-audit-logs'
    """

    def has_permission(self, request, view):
        if not _is_active_user(request.user):
            return False

        required = getattr(view, 'required_system_permission', None)
        if not required:
            return True

        from apps.rbac.resolver import AuthorizationResolver

        allowed = AuthorizationResolver.has_system_permission(request.user, required)
        if not allowed:
            logger.warning(
                f"Permission denied: missing {required}",
                extra={
                    'user_id': request.user.id,
                    'required_permission': required,
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
        return allowed


class HasEntityPermission(BasePermission):
    """
    Object-level permission for hierarchy entities.

    The HTTP method is mapped to an action through ``view.method_actions``
    (defaults below) and checked with AuthorizationResolver.can.
    """

    DEFAULT_METHOD_ACTIONS = {
        'GET': 'view',
        'HEAD': 'view',
        'OPTIONS': 'view',
        'PUT': 'update',
        'PATCH': 'update',
        'DELETE': 'delete',
    }

    def has_permission(self, request, view):
        return _is_active_user(request.user)

    def has_object_permission(self, request, view, obj):
        from apps.rbac.resolver import AuthorizationResolver

        method_actions = getattr(view, 'method_actions', self.DEFAULT_METHOD_ACTIONS)
        action = method_actions.get(request.method)
        if action is None:
            return False

        allowed = AuthorizationResolver.can(request.user, action, obj)
        if not allowed:
            SecurityLogger.log_authorization_denied(
                request.user, action, target=f"{obj.entity_type}:{obj.pk}"
            )
        return allowed
