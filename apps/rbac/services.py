"""
RBAC and user administration services.

Implements:
- RBACService: grant store operations (roles, direct permissions, role templates)
- UserService: user lifecycle guarded by AdministratorProtectionService
- AuthService: JWT issuing and validation
"""
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional, Dict, Any

from django.conf import settings
from django.db import transaction
import jwt

from apps.core.exceptions import AuthorizationDenied, LastAdministratorViolation, SelfDeletionViolation
from apps.core.logging import SecurityLogger
from apps.rbac import permission_names
from apps.rbac.audit import AuditService
from apps.rbac.models import (
    User, Permission, Role, RolePermission, UserRole, UserPermission,
)
from apps.rbac.protection import AdministratorProtectionService, ProtectedOperation

logger = logging.getLogger(__name__)


# Per-role permission templates applied to a single entity.
# {id} is the entity id, {scope} its scope type, {resource} its resource.
ROLE_PERMISSION_TEMPLATES = {
    'Plant Manager': [
        'plants.view.{id}',
        'plants.update.{id}',
        'plants.manage-shifts.{id}',
        'users.invite.plant.{id}',
        'areas.create.plant.{id}',
        'areas.viewAny.plant.{id}',
        'sectors.viewAny.plant.{id}',
        'sectors.create.plant.{id}',
        'assets.viewAny.plant.{id}',
        'assets.create.plant.{id}',
        'assets.manage.plant.{id}',
        'assets.execute-routines.plant.{id}',
        'assets.import.plant.{id}',
        'assets.export.plant.{id}',
        'shifts.viewAny.plant.{id}',
        'shifts.create.plant.{id}',
        'shifts.manage.plant.{id}',
        'asset-types.viewAny.plant.{id}',
        'asset-types.create.plant.{id}',
        'manufacturers.viewAny.plant.{id}',
        'manufacturers.create.plant.{id}',
    ],
    'Area Manager': [
        'users.invite.area.{id}',
        'areas.view.{id}',
        'areas.update.{id}',
        'sectors.create.area.{id}',
        'sectors.viewAny.area.{id}',
        'assets.viewAny.area.{id}',
        'assets.create.area.{id}',
        'assets.manage.area.{id}',
        'assets.execute-routines.area.{id}',
        'assets.export.area.{id}',
    ],
    'Sector Manager': [
        'users.invite.sector.{id}',
        'sectors.view.{id}',
        'sectors.update.{id}',
        'assets.viewAny.sector.{id}',
        'assets.create.sector.{id}',
        'assets.manage.sector.{id}',
        'assets.execute-routines.sector.{id}',
        'assets.export.sector.{id}',
    ],
    'Technician': [
        'assets.view.{id}',
        'assets.execute-routines.{id}',
        'assets.viewAny.{scope}.{id}',
        'assets.view.{scope}.{id}',
        'assets.execute-routines.{scope}.{id}',
    ],
    'Viewer': [
        '{resource}.view.{id}',
        '{resource}.viewAny.{scope}.{id}',
    ],
}

DEFAULT_ROLES = {
    Role.ADMINISTRATOR: {
        'description': 'Full access to every plant, area, sector and asset',
        'is_administrator': True,
    },
    'Plant Manager': {'description': 'Manages a plant and everything inside it'},
    'Area Manager': {'description': 'Manages an area and its sectors'},
    'Sector Manager': {'description': 'Manages a sector and its assets'},
    'Technician': {'description': 'Views assets and executes maintenance routines'},
    'Viewer': {'description': 'Read-only access to assigned entities'},
}


class RBACService:
    """
    Grant store operations. Every change invalidates the affected users'
    cached permission sets and is written to the audit log.
    """

    @classmethod
    def seed_default_roles(cls):
        """Create the default roles (idempotent). Returns names of created roles."""
        created_roles = []
        for name, config in DEFAULT_ROLES.items():
            _, created = Role.objects.get_or_create_role(
                name=name,
                description=config['description'],
                is_system=True,
                is_administrator=config.get('is_administrator', False),
            )
            if created:
                created_roles.append(name)
        return created_roles

    @classmethod
    def get_administrator_role(cls):
        role, _ = Role.objects.get_or_create_role(
            name=Role.ADMINISTRATOR,
            description=DEFAULT_ROLES[Role.ADMINISTRATOR]['description'],
            is_system=True,
            is_administrator=True,
        )
        return role

    @classmethod
    def get_user_roles(cls, user):
        return Role.objects.filter(user_roles__user=user)

    @classmethod
    def get_role_permissions(cls, role):
        return set(role.get_permissions().values_list('name', flat=True))

    @classmethod
    def can_assign_role(cls, assigner, role):
        """
        Only administrators hand out administrator roles. ``None`` is the
        system itself (bootstrap, management commands).
        """
        if assigner is None or not role.is_administrator:
            return True
        return AdministratorProtectionService.is_administrator(assigner)

    @classmethod
    def can_manage_user(cls, actor, user):
        """Only administrators delete, restore or change the roles of administrators."""
        if actor is None or not AdministratorProtectionService.is_administrator(user):
            return True
        return AdministratorProtectionService.is_administrator(actor)

    @classmethod
    def ensure_can_manage_user(cls, actor, user, operation):
        """
        Raises:
            AuthorizationDenied: a non-administrator targets an administrator
        """
        if not cls.can_manage_user(actor, user):
            SecurityLogger.log_authorization_denied(actor, operation, target=f'user:{user.pk}')
            raise AuthorizationDenied(
                'Only administrators can manage administrator accounts.',
                details={'user_id': user.pk, 'operation': operation}
            )

    @classmethod
    def assign_role(cls, user, role, assigned_by=None, request=None):
        """
        Assign a role to a user (idempotent).

        Returns:
            UserRole instance

        Raises:
            AuthorizationDenied: a non-administrator assigns an administrator role
        """
        if not cls.can_assign_role(assigned_by, role):
            SecurityLogger.log_authorization_denied(assigned_by, 'assign_role', target=f'role:{role.pk}')
            raise AuthorizationDenied(
                f"Only administrators can assign the '{role.name}' role.",
                details={'role_id': role.pk}
            )

        user_role, created = UserRole.objects.assign(user, role, assigned_by=assigned_by)
        if created:
            AuditService.record(
                assigned_by,
                'role.assigned',
                user,
                diff={'role': role.name},
                metadata={'role_id': role.id},
                request=request,
            )
            if role.is_administrator:
                AuditService.record(assigned_by, 'user.administrator.granted', user, request=request)
        return user_role

    @classmethod
    def remove_role(cls, user, role, removed_by=None, request=None):
        """
        Remove a role from a user.

        Removing the only administrator role of the last active
        administrator is rejected.

        Returns:
            bool: whether the user held the role

        Raises:
            AuthorizationDenied: a non-administrator changes an administrator's roles
            LastAdministratorViolation
        """
        with transaction.atomic():
            if not UserRole.objects.filter(user=user, role=role).exists():
                return False

            cls.ensure_can_manage_user(removed_by, user, 'remove_role')

            if role.is_administrator:
                check = AdministratorProtectionService.can_perform_operation(
                    user, ProtectedOperation.REMOVE_ROLE, actor=removed_by, role=role
                )
                if not check.allowed:
                    raise LastAdministratorViolation(check.message)

            UserRole.objects.remove(user, role)
            AuditService.record(
                removed_by,
                'role.removed',
                user,
                diff={'role': role.name},
                metadata={'role_id': role.id},
                request=request,
            )
        return True

    @classmethod
    def grant_permission(cls, user, permission_name, granted_by=None, request=None):
        """
        Grant a permission directly to a user.

        Raises:
            Permission.DoesNotExist: If the permission doesn't exist
        """
        permission = Permission.objects.by_name(permission_name)
        if permission is None:
            raise Permission.DoesNotExist(f"Permission '{permission_name}' does not exist")

        user_permission, created = UserPermission.objects.grant_permission(
            user, permission, granted_by=granted_by
        )
        if created:
            AuditService.record(
                granted_by,
                'permission.granted',
                user,
                diff={'permission': permission.name},
                request=request,
            )
        return user_permission

    @classmethod
    def revoke_permission(cls, user, permission_name, revoked_by=None, request=None):
        permission = Permission.objects.by_name(permission_name)
        if permission is None:
            return False

        deleted = UserPermission.objects.revoke_permission(user, permission)
        if deleted:
            AuditService.record(
                revoked_by,
                'permission.revoked',
                user,
                diff={'permission': permission.name},
                request=request,
            )
        return bool(deleted)

    @classmethod
    def grant_role_permission(cls, role, permission_name):
        """
        Add a permission to a role (idempotent).

        Raises:
            Permission.DoesNotExist: If the permission doesn't exist
        """
        permission = Permission.objects.by_name(permission_name)
        if permission is None:
            raise Permission.DoesNotExist(f"Permission '{permission_name}' does not exist")
        role_permission, _ = RolePermission.objects.grant_permission(role, permission)
        return role_permission

    @classmethod
    def revoke_role_permission(cls, role, permission_name):
        permission = Permission.objects.by_name(permission_name)
        if permission is None:
            return False
        return bool(RolePermission.objects.revoke_permission(role, permission))

    @classmethod
    def render_role_template(cls, role_name, entity):
        """
        Permission names of ``role_name``'s template for ``entity``.

        Single-id names whose resource does not match the entity's type are
        skipped, so 'assets.view.{id}' is only rendered for assets.
        """
        names = []
        for template in ROLE_PERMISSION_TEMPLATES.get(role_name, []):
            name = template.format(id=entity.pk, scope=entity.entity_type, resource=entity.resource)
            parsed = permission_names.parse(name)
            if parsed is None:
                continue
            if not parsed.qualified and parsed.resource.value != entity.resource:
                continue
            names.append(name)
        return names

    @classmethod
    def apply_role_template(cls, user, role_name, entity, granted_by=None, request=None):
        """
        Assign ``role_name`` and grant its template permissions for ``entity``.

        Only permissions already in the catalog are granted.

        Returns:
            list of granted permission names
        """
        role = Role.objects.by_name(role_name)
        if role is None:
            raise Role.DoesNotExist(f"Role '{role_name}' does not exist")

        names = cls.render_role_template(role_name, entity)
        granted = []
        with transaction.atomic():
            cls.assign_role(user, role, assigned_by=granted_by, request=request)
            existing = Permission.objects.filter(name__in=names)
            for permission in existing:
                UserPermission.objects.grant_permission(user, permission, granted_by=granted_by)
                granted.append(permission.name)

            AuditService.record(
                granted_by,
                'permissions.granted',
                user,
                diff={'permissions': sorted(granted)},
                metadata={
                    'role_context': role_name,
                    'entity_type': entity.entity_type,
                    'entity_id': entity.pk,
                },
                request=request,
            )
        return sorted(granted)


class UserService:
    """
    User lifecycle operations guarded by the administrator invariant.
    """

    @classmethod
    def create_user(cls, email, name, password=None, created_by=None, request=None):
        """
        Create a user. The first user of an empty system becomes Administrator.
        """
        with transaction.atomic():
            is_first_user = not User.objects_with_deleted.exists()
            user = User.objects.create_user(email=email, password=password, name=name)
            AuditService.record(created_by, 'user.created', user, request=request)

            if is_first_user:
                cls.bootstrap_first_administrator(user)

        return user

    @classmethod
    def bootstrap_first_administrator(cls, user):
        """Give ``user`` the Administrator role as the root administrator."""
        role = RBACService.get_administrator_role()
        UserRole.objects.assign(user, role)
        AuditService.record(
            None,
            'user.administrator.granted',
            user,
            metadata={'reason': 'First user of the system'},
        )
        logger.info("First user bootstrapped as administrator", extra={'user_id': user.id})
        return user

    @classmethod
    def delete_user(cls, user, actor=None, request=None):
        """
        Soft delete a user.

        Raises:
            AuthorizationDenied: a non-administrator deletes an administrator
            LastAdministratorViolation: user is the last active administrator
            SelfDeletionViolation: actor and user are the same
        """
        with transaction.atomic():
            RBACService.ensure_can_manage_user(actor, user, 'delete')

            check = AdministratorProtectionService.can_perform_operation(
                user, ProtectedOperation.DELETE, actor=actor
            )
            if not check.allowed:
                raise LastAdministratorViolation(check.message)

            if actor is not None and actor.pk == user.pk:
                raise SelfDeletionViolation('You cannot delete your own account.')

            user.delete()
            AuditService.record(actor, 'user.deleted', user, request=request)

        logger.info("User soft deleted", extra={'user_id': user.id})
        return user

    @classmethod
    def force_delete_user(cls, user, actor=None, request=None):
        """
        Permanently delete a user (soft-deleted or not).

        Raises:
            AuthorizationDenied: a non-administrator deletes an administrator
            LastAdministratorViolation: no other active administrator would remain
            SelfDeletionViolation: actor and user are the same
        """
        user_id = user.pk
        with transaction.atomic():
            RBACService.ensure_can_manage_user(actor, user, 'force_delete')

            check = AdministratorProtectionService.can_perform_operation(
                user, ProtectedOperation.FORCE_DELETE, actor=actor
            )
            if not check.allowed:
                raise LastAdministratorViolation(check.message)

            if actor is not None and actor.pk == user_id:
                raise SelfDeletionViolation('You cannot delete your own account.')

            user.hard_delete()
            AuditService.record(
                actor,
                'user.force_deleted',
                target_type='user',
                target_id=user_id,
                diff={'old': {'email': user.email, 'name': user.name}},
                request=request,
            )

        logger.info("User permanently deleted", extra={'user_id': user_id})

    @classmethod
    def restore_user(cls, user, actor=None, request=None):
        """
        Restore a soft-deleted user with their previous roles.

        Raises:
            AuthorizationDenied: a non-administrator restores an administrator
        """
        if not user.is_deleted:
            return user
        RBACService.ensure_can_manage_user(actor, user, 'restore')
        user.restore()
        AuditService.record(actor, 'user.restored', user, request=request)
        return user


class AuthService:
    """
    JWT authentication helpers.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': user.id,
            'email': user.email,
            'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
            'iat': now,
        }
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload, or None if invalid or expired.
        """
        try:
            return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_payload(cls, payload: Dict[str, Any]) -> Optional[User]:
        user_id = payload.get('user_id')
        if user_id is None:
            return None
        return User.objects.filter(pk=user_id).first()

    @classmethod
    def login(cls, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate by email and password.

        Returns:
            {'user': User, 'token': str} or None for bad credentials
        """
        user = User.objects.by_email(email)
        if user is None or not user.check_password(password):
            logger.info("Failed login", extra={'email': email})
            return None

        user.update_last_login()
        return {'user': user, 'token': cls.generate_jwt(user)}
