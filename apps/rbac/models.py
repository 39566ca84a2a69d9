"""
RBAC models for hierarchical, scope-qualified access control.

Implements:
- User (soft-deletable identity, AUTH_USER_MODEL)
- Role (named permission bundle; may confer administrator rights)
- Permission (scope-qualified permission names, see permission_names)
- RolePermission, UserRole, UserPermission (grant links)
- AuditLog (audit trail for sensitive operations)
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.hashers import make_password, check_password
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.utils import timezone

from apps.core.models import SoftDeleteManager, SoftDeleteModel, SoftDeleteQuerySet, TimestampedModel
from apps.rbac import permission_names

logger = logging.getLogger(__name__)


PERMISSION_CACHE_KEY = 'perms:user:{user_id}'


def permission_cache_key(user_id):
    return PERMISSION_CACHE_KEY.format(user_id=user_id)


def invalidate_permission_cache(user_ids):
    """Drop cached effective permissions for the given user ids."""
    keys = [permission_cache_key(user_id) for user_id in set(user_ids)]
    if keys:
        cache.delete_many(keys)


class UserQuerySet(SoftDeleteQuerySet):

    def administrators(self):
        """Users holding at least one administrator role."""
        return self.filter(user_roles__role__is_administrator=True).distinct()


class UserManager(SoftDeleteManager.from_queryset(UserQuerySet)):
    """
    Manager for User queries. Excludes soft-deleted users.
    """

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, name='', **extra_fields):
        """
        Create a new user with hashed password.

        Does not assign any role; see UserService.create_user for the
        first-administrator bootstrap.
        """
        if not email:
            raise ValueError('Email address is required')

        user = self.model(email=self.normalize_email(email), name=name, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    @staticmethod
    def normalize_email(email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            return email
        return email_name + '@' + domain_part.lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(SoftDeleteModel):
    """
    Application user.

    Soft deletion keeps role links in place so that restoring a user
    brings back the same rights.
    """

    name = models.CharField(
        max_length=255,
        help_text="Display name"
    )
    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password",
        db_column='password_hash'
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last successful login"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = ['name']

    objects = UserManager()
    objects_with_deleted = models.Manager.from_queryset(UserQuerySet)()

    class Meta:
        db_table = 'users'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['deleted_at']),
        ]

    def __str__(self):
        return self.name or self.email

    @property
    def password(self):
        return self.password_hash

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def update_last_login(self):
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at', 'updated_at'])

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_active(self):
        return self.deleted_at is None

    @property
    def display_label(self):
        """Name and id as shown in protection messages."""
        return f"'{self.name or self.email}' (ID: {self.id})"

    def natural_key(self):
        return (self.email,)


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def by_name(self, name):
        return self.filter(name=name).first()

    def administrator_roles(self):
        return self.filter(is_administrator=True)

    def system_roles(self):
        return self.filter(is_system=True)

    def get_or_create_role(self, name, description='', is_system=False, is_administrator=False):
        """Get or create a role (idempotent)."""
        return self.get_or_create(
            name=name,
            defaults={
                'description': description,
                'is_system': is_system,
                'is_administrator': is_administrator,
            }
        )


class Role(TimestampedModel):
    """
    Named bundle of permissions.

    ``is_administrator`` roles bypass every permission check.
    ``is_system`` roles are seeded and cannot be deleted.
    """

    ADMINISTRATOR = 'Administrator'

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Role name (e.g., 'Administrator', 'Plant Manager')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a system-seeded role"
    )
    is_administrator = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this role confers full administrative rights"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']

    def __str__(self):
        return self.name

    def delete(self, *args, **kwargs):
        if self.is_system:
            raise ValidationError(f"System role '{self.name}' cannot be deleted.")
        return super().delete(*args, **kwargs)

    def get_permissions(self):
        """Get all permissions granted by this role."""
        return Permission.objects.filter(role_permissions__role=self)

    def has_permission(self, permission_name):
        return self.role_permissions.filter(permission__name=permission_name).exists()


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_name(self, name):
        return self.filter(name=name).first()

    def anchored_at(self, entity_type, entity_id):
        """Permissions whose scope references the given entity."""
        return self.filter(entity_type=entity_type, entity_id=entity_id)

    def system(self):
        return self.filter(entity_type__isnull=True, name__startswith=f'{permission_names.SYSTEM_PREFIX}.')

    def get_or_create_permission(self, name, display_name='', description=''):
        """Get or create a permission by name (idempotent)."""
        return self.get_or_create(
            name=name,
            defaults={
                'display_name': display_name or name,
                'description': description,
            }
        )


class Permission(TimestampedModel):
    """
    A permission name plus its parsed anchor.

    ``resource``, ``action``, ``entity_type`` and ``entity_id`` are derived
    from ``name`` on save. Names that do not parse keep empty anchor
    columns; PermissionValidationService reports them.
    """

    name = models.CharField(
        max_length=255,
        unique=True,
        help_text="Permission name (e.g., 'sectors.view.42', 'assets.create.plant.7')"
    )
    display_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Human-readable label"
    )
    description = models.TextField(
        blank=True,
    )
    resource = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
    )
    action = models.CharField(
        max_length=50,
        blank=True,
    )
    entity_type = models.CharField(
        max_length=20,
        null=True,
        blank=True,
        help_text="Scope type of the anchoring entity"
    )
    entity_id = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Id of the anchoring entity"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['name']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id']),
        ]

    def __str__(self):
        return self.name

    @property
    def parsed(self):
        return permission_names.parse(self.name)

    def save(self, *args, **kwargs):
        parsed = self.parsed
        if parsed is not None:
            self.resource = parsed.resource.value
            self.action = parsed.action.value
            anchor = parsed.anchor
            self.entity_type = anchor[0].value if anchor else None
            self.entity_id = anchor[1] if anchor else None
        super().save(*args, **kwargs)


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        role_permission, created = self.get_or_create(role=role, permission=permission)
        if created:
            invalidate_permission_cache(role.user_roles.values_list('user_id', flat=True))
        return role_permission, created

    def revoke_permission(self, role, permission):
        """Revoke permission from role."""
        deleted, _ = self.filter(role=role, permission=permission).delete()
        if deleted:
            invalidate_permission_cache(role.user_roles.values_list('user_id', flat=True))
        return deleted


class RolePermission(TimestampedModel):
    """
    Maps permissions to roles.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class UserRoleManager(models.Manager):
    """Manager for UserRole queries."""

    def assign(self, user, role, assigned_by=None):
        """Assign role to user (idempotent)."""
        user_role, created = self.get_or_create(
            user=user,
            role=role,
            defaults={'assigned_by': assigned_by}
        )
        invalidate_permission_cache([user.id])
        return user_role, created

    def remove(self, user, role):
        deleted, _ = self.filter(user=user, role=role).delete()
        invalidate_permission_cache([user.id])
        return deleted


class UserRole(TimestampedModel):
    """
    Maps roles to users.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles',
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles',
    )
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role"
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['user', 'role']
        indexes = [
            models.Index(fields=['role']),
        ]

    def __str__(self):
        return f"{self.user.email} -> {self.role.name}"


class UserPermissionManager(models.Manager):
    """Manager for direct permission grants."""

    def grant_permission(self, user, permission, granted_by=None):
        """Grant permission to user (idempotent)."""
        user_permission, created = self.get_or_create(
            user=user,
            permission=permission,
            defaults={'granted_by': granted_by}
        )
        invalidate_permission_cache([user.id])
        return user_permission, created

    def revoke_permission(self, user, permission):
        deleted, _ = self.filter(user=user, permission=permission).delete()
        invalidate_permission_cache([user.id])
        return deleted


class UserPermission(TimestampedModel):
    """
    Permission granted directly to a user.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_permissions',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='user_permissions',
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_grants_made',
    )

    objects = UserPermissionManager()

    class Meta:
        db_table = 'user_permissions'
        unique_together = [('user', 'permission')]
        ordering = ['user', 'permission']

    def __str__(self):
        return f"{self.permission.name} to {self.user.email}"


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_user(self, user):
        """Audit logs for actions performed by a user."""
        return self.filter(actor_type=AuditLog.ACTOR_USER, actor_id=user.id)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        """Get audit logs for a specific target type and optionally target ID."""
        qs = self.filter(target_type=target_type)
        if target_id is not None:
            qs = qs.filter(target_id=target_id)
        return qs

    def by_request(self, request_id):
        return self.filter(request_id=request_id)

    def recent(self, days=30):
        """Get audit logs from the last N days."""
        cutoff = timezone.now() - timedelta(days=days)
        return self.filter(created_at__gte=cutoff)


class AuditLog(TimestampedModel):
    """
    Audit trail for hierarchy mutations, grant changes and user administration.

    ``actor_id`` is never null: actions without an authenticated user are
    attributed to the configured system actor.
    """

    ACTOR_USER = 'user'
    ACTOR_SYSTEM = 'system'
    ACTOR_TYPE_CHOICES = [
        (ACTOR_USER, 'User'),
        (ACTOR_SYSTEM, 'System'),
    ]

    actor_type = models.CharField(
        max_length=10,
        choices=ACTOR_TYPE_CHOICES,
        default=ACTOR_USER,
    )
    actor_id = models.BigIntegerField(
        db_index=True,
        help_text="Id of the user (or system actor) who performed the action"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Acting user, kept while the user row exists"
    )

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Event name (e.g., 'sector.created', 'role.removed')"
    )
    target_type = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
        help_text="Type of target entity (e.g., 'sector', 'user')"
    )
    target_id = models.BigIntegerField(
        null=True,
        blank=True,
    )

    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Old/new values"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
    )

    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
    )
    user_agent = models.TextField(
        blank=True,
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['actor_type', 'actor_id', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        return f"{self.action} by {self.actor_type}:{self.actor_id}"

    @classmethod
    def log_action(cls, action, user=None, target_type='', target_id=None,
                   diff=None, metadata=None, request=None):
        """
        Create an audit log entry.

        Failures are logged and swallowed; the insert runs in a savepoint
        so a failed write never breaks the caller's transaction.

        Args:
            action: Event name
            user: Acting user; None or anonymous falls back to the system actor
            target_type: Type of the affected object
            target_id: Id of the affected object
            diff: Before/after values
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)

        Returns:
            AuditLog instance, or None when the write failed
        """
        if user is not None and not getattr(user, 'is_authenticated', False):
            user = None

        log_data = {
            'action': action,
            'target_type': target_type or '',
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }
        if user is not None:
            log_data['actor_type'] = cls.ACTOR_USER
            log_data['actor_id'] = user.id
            log_data['user'] = user
        else:
            log_data['actor_type'] = cls.ACTOR_SYSTEM
            log_data['actor_id'] = settings.AUDIT_SYSTEM_ACTOR_ID

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None) or ''

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {e}",
                extra={'audit_action': action, 'target_type': target_type},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        """Extract client IP from request."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
