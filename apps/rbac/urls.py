"""
RBAC API URLs.

Provides endpoints for:
- User administration (soft delete, force delete, restore)
- Role assignments
- Administrator health
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    UserDeleteView,
    UserForceDeleteView,
    UserRestoreView,
    UserRoleAssignView,
    UserRoleRemoveView,
    AdministratorStatusView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # User administration
    path('users/<int:user_id>', UserDeleteView.as_view(), name='user-delete'),
    path('users/<int:user_id>/force', UserForceDeleteView.as_view(), name='user-force-delete'),
    path('users/<int:user_id>/restore', UserRestoreView.as_view(), name='user-restore'),

    # Role assignments
    path('users/<int:user_id>/roles', UserRoleAssignView.as_view(), name='user-role-assign'),
    path('users/<int:user_id>/roles/<int:role_id>', UserRoleRemoveView.as_view(), name='user-role-remove'),

    # Administrators
    path('administrators/status', AdministratorStatusView.as_view(), name='administrator-status'),

    # Audit log endpoint
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
