"""
RBAC REST API views.

Implements endpoints for:
- User administration (soft delete, force delete, restore)
- Role assignments (with optional role templates)
- Administrator health
- Audit log viewing
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from django.db import transaction
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.pagination import StandardResultsSetPagination
from apps.core.permissions import HasSystemPermission, IsAdministrator
from apps.hierarchy.services import HierarchyService
from apps.rbac.models import User, Role, AuditLog
from apps.rbac.protection import AdministratorProtectionService
from apps.rbac.serializers import (
    UserSerializer, AssignRoleSerializer, AuditLogSerializer,
    AdministratorStatusSerializer,
)
from apps.rbac.services import RBACService, UserService


MANAGE_USERS = 'system.manage-users'
VIEW_AUDIT_LOGS = 'system.view-audit-logs'

LAST_ADMINISTRATOR_EXAMPLE = OpenApiExample(
    'Last Administrator',
    value={
        'error': "Cannot delete user 'Ana' (ID: 1) because they are the last active administrator "
                 "in the system. The system must always have at least one active administrator. "
                 "Please assign the administrator role to another user before deleting this one.",
        'code': 'LAST_ADMINISTRATOR'
    },
    response_only=True,
    status_codes=['409']
)


@extend_schema_view(
    delete=extend_schema(
        tags=['Users'],
        summary='Soft delete user',
        description='''
Soft delete a user. Role links are kept so the user can be restored.

**Required permission:** `system.manage-users`

Fails with 409 when the user is the last active administrator and with 400
when users try to delete themselves.
        ''',
        responses={
            204: None,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[LAST_ADMINISTRATOR_EXAMPLE],
    )
)
class UserDeleteView(APIView):
    """
    DELETE /v1/users/{user_id}
    """

    permission_classes = [HasSystemPermission]
    required_system_permission = MANAGE_USERS

    def delete(self, request, user_id):
        user = get_object_or_404(User.objects, id=user_id)
        UserService.delete_user(user, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    delete=extend_schema(
        tags=['Users'],
        summary='Permanently delete user',
        description='''
Permanently delete a user, including soft-deleted ones.

**Administrators only.** Fails with 409 when no other active administrator
would remain.
        ''',
        responses={
            204: None,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
    )
)
class UserForceDeleteView(APIView):
    """
    DELETE /v1/users/{user_id}/force
    """

    permission_classes = [IsAdministrator]

    def delete(self, request, user_id):
        user = get_object_or_404(User.objects_with_deleted, id=user_id)
        UserService.force_delete_user(user, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['Users'],
        summary='Restore user',
        description='''
Restore a soft-deleted user with their previous roles.

**Required permission:** `system.manage-users`
        ''',
        request=None,
        responses={
            200: UserSerializer,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        },
    )
)
class UserRestoreView(APIView):
    """
    POST /v1/users/{user_id}/restore
    """

    permission_classes = [HasSystemPermission]
    required_system_permission = MANAGE_USERS

    def post(self, request, user_id):
        user = get_object_or_404(User.objects_with_deleted.deleted(), id=user_id)
        user = UserService.restore_user(user, actor=request.user, request=request)
        return Response(UserSerializer(user).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Users'],
        summary='Assign role',
        description='''
Assign a role to a user.

With `entity_type` and `entity_id` the role's permission template is also
applied to that entity, e.g. `Sector Manager` for sector 4 grants
`sectors.view.4`, `sectors.update.4`, `assets.create.sector.4`, ...

**Required permission:** `system.manage-users`
        ''',
        request=AssignRoleSerializer,
        responses={
            200: OpenApiTypes.OBJECT,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        },
    )
)
class UserRoleAssignView(APIView):
    """
    POST /v1/users/{user_id}/roles
    """

    permission_classes = [HasSystemPermission]
    required_system_permission = MANAGE_USERS

    @transaction.atomic
    def post(self, request, user_id):
        user = get_object_or_404(User.objects, id=user_id)

        serializer = AssignRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = Role.objects.get(id=serializer.validated_data['role_id'])

        granted = []
        entity_type = serializer.validated_data.get('entity_type')
        if entity_type:
            entity = HierarchyService.resolve(entity_type, serializer.validated_data['entity_id'])
            granted = RBACService.apply_role_template(
                user, role.name, entity, granted_by=request.user, request=request
            )
        else:
            RBACService.assign_role(user, role, assigned_by=request.user, request=request)

        return Response({
            'user': UserSerializer(user).data,
            'granted_permissions': granted,
        })


@extend_schema_view(
    delete=extend_schema(
        tags=['Users'],
        summary='Remove role',
        description='''
Remove a role from a user.

**Required permission:** `system.manage-users`

Removing the Administrator role from the last active administrator fails
with 409.
        ''',
        responses={
            204: None,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
    )
)
class UserRoleRemoveView(APIView):
    """
    DELETE /v1/users/{user_id}/roles/{role_id}
    """

    permission_classes = [HasSystemPermission]
    required_system_permission = MANAGE_USERS

    def delete(self, request, user_id, role_id):
        user = get_object_or_404(User.objects, id=user_id)
        role = get_object_or_404(Role, id=role_id)

        removed = RBACService.remove_role(user, role, removed_by=request.user, request=request)
        if not removed:
            return Response(
                {'error': 'User does not have this role'},
                status=status.HTTP_404_NOT_FOUND
            )

        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['Administrators'],
        summary='Administrator status',
        description='''
Active and soft-deleted administrators and whether the system is in
critical state (no active administrator).

**Administrators only.**
        ''',
        responses={200: AdministratorStatusSerializer},
    )
)
class AdministratorStatusView(APIView):
    """
    GET /v1/administrators/status
    """

    permission_classes = [IsAdministrator]

    def get(self, request):
        administrators = list(AdministratorProtectionService.get_all_administrators())
        data = {
            'active_administrators': sum(1 for user in administrators if user.deleted_at is None),
            'total_administrators': len(administrators),
            'critical': AdministratorProtectionService.is_in_critical_state(),
            'administrators': administrators,
        }
        return Response(AdministratorStatusSerializer(data).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Audit'],
        summary='List audit logs',
        description='''
List audit log entries, newest first.

**Required permission:** `system.view-audit-logs`
        ''',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR, description='Filter by action (e.g. sector.deleted)'),
            OpenApiParameter('target_type', OpenApiTypes.STR, description='Filter by target type'),
            OpenApiParameter('target_id', OpenApiTypes.INT, description='Filter by target id'),
            OpenApiParameter('actor_id', OpenApiTypes.INT, description='Filter by actor id'),
            OpenApiParameter('from_date', OpenApiTypes.DATETIME, description='Created at or after'),
            OpenApiParameter('to_date', OpenApiTypes.DATETIME, description='Created at or before'),
        ],
        responses={200: AuditLogSerializer(many=True)},
    )
)
class AuditLogListView(APIView):
    """
    GET /v1/audit-logs
    """

    permission_classes = [HasSystemPermission]
    required_system_permission = VIEW_AUDIT_LOGS
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        logs = AuditLog.objects.select_related('user')

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        target_id = request.query_params.get('target_id')
        if target_id and target_id.isdigit():
            logs = logs.filter(target_id=int(target_id))

        actor_id = request.query_params.get('actor_id')
        if actor_id and actor_id.isdigit():
            logs = logs.filter(actor_id=int(actor_id))

        from_date = request.query_params.get('from_date')
        if from_date:
            logs = logs.filter(created_at__gte=from_date)

        to_date = request.query_params.get('to_date')
        if to_date:
            logs = logs.filter(created_at__lte=to_date)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)

        serializer = AuditLogSerializer(page, many=True)

        return paginator.get_paginated_response(serializer.data)
