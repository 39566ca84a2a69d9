"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login)
- Users and their roles
- Role assignments and role templates
- Audit logs
"""
from rest_framework import serializers

from apps.hierarchy.models import ENTITY_MODELS
from apps.rbac.models import User, Permission, Role, AuditLog


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    permission_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'description', 'is_system', 'is_administrator',
            'permission_count', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        return obj.role_permissions.count()


class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    roles = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'is_active', 'roles',
            'last_login_at', 'deleted_at', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_roles(self, obj):
        return list(obj.user_roles.values_list('role__name', flat=True))


class PermissionSerializer(serializers.ModelSerializer):

    class Meta:
        model = Permission
        fields = [
            'id', 'name', 'display_name', 'resource', 'action',
            'entity_type', 'entity_id'
        ]
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    """
    Assign a role, optionally applying its permission template to one entity.
    """

    role_id = serializers.IntegerField(required=True)
    entity_type = serializers.ChoiceField(choices=list(ENTITY_MODELS), required=False)
    entity_id = serializers.IntegerField(required=False, min_value=1)

    def validate_role_id(self, value):
        if not Role.objects.filter(id=value).exists():
            raise serializers.ValidationError(f"Role '{value}' does not exist")
        return value

    def validate(self, attrs):
        if ('entity_type' in attrs) != ('entity_id' in attrs):
            raise serializers.ValidationError(
                'entity_type and entity_id must be given together'
            )
        return attrs


class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'actor_type', 'actor_id', 'user_email', 'action',
            'target_type', 'target_id', 'diff', 'metadata',
            'ip_address', 'user_agent', 'request_id',
            'created_at'
        ]
        read_only_fields = fields


class AdministratorStatusSerializer(serializers.Serializer):

    active_administrators = serializers.IntegerField()
    total_administrators = serializers.IntegerField()
    critical = serializers.BooleanField()
    administrators = UserSerializer(many=True)
