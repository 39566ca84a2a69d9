"""
Permission catalog.

Generates the fixed set of scope-qualified permissions for every hierarchy
entity and removes them again when the entity goes away. Called explicitly
by EntityService inside the entity's transaction.
"""
import logging

from django.db import transaction

from apps.core.exceptions import EntityHasDependents
from apps.rbac.models import (
    Permission, RolePermission, UserPermission, UserRole,
    invalidate_permission_cache,
)
from apps.rbac.permission_names import Action, PermissionName, Resource

logger = logging.getLogger(__name__)


SELF = 'self'
SCOPED = 'scoped'

# (resource, action, form) per entity type. SELF permissions are written
# '{resource}.{action}.{id}', SCOPED ones '{resource}.{action}.{type}.{id}'.
ENTITY_TEMPLATES = {
    'plant': [
        (Resource.PLANTS, Action.VIEW, SELF),
        (Resource.PLANTS, Action.UPDATE, SELF),
        (Resource.PLANTS, Action.DELETE, SELF),
        (Resource.PLANTS, Action.MANAGE_SHIFTS, SELF),
        (Resource.USERS, Action.INVITE, SCOPED),
        (Resource.AREAS, Action.VIEW_ANY, SCOPED),
        (Resource.AREAS, Action.CREATE, SCOPED),
        (Resource.SECTORS, Action.VIEW_ANY, SCOPED),
        (Resource.SECTORS, Action.CREATE, SCOPED),
        (Resource.ASSETS, Action.VIEW_ANY, SCOPED),
        (Resource.ASSETS, Action.CREATE, SCOPED),
        (Resource.ASSETS, Action.MANAGE, SCOPED),
        (Resource.ASSETS, Action.EXECUTE_ROUTINES, SCOPED),
        (Resource.ASSETS, Action.IMPORT, SCOPED),
        (Resource.ASSETS, Action.EXPORT, SCOPED),
        (Resource.SHIFTS, Action.VIEW_ANY, SCOPED),
        (Resource.SHIFTS, Action.CREATE, SCOPED),
        (Resource.SHIFTS, Action.MANAGE, SCOPED),
        (Resource.ASSET_TYPES, Action.VIEW_ANY, SCOPED),
        (Resource.ASSET_TYPES, Action.CREATE, SCOPED),
        (Resource.MANUFACTURERS, Action.VIEW_ANY, SCOPED),
        (Resource.MANUFACTURERS, Action.CREATE, SCOPED),
    ],
    'area': [
        (Resource.AREAS, Action.VIEW, SELF),
        (Resource.AREAS, Action.UPDATE, SELF),
        (Resource.AREAS, Action.DELETE, SELF),
        (Resource.USERS, Action.INVITE, SCOPED),
        (Resource.SECTORS, Action.VIEW_ANY, SCOPED),
        (Resource.SECTORS, Action.CREATE, SCOPED),
        (Resource.ASSETS, Action.VIEW_ANY, SCOPED),
        (Resource.ASSETS, Action.CREATE, SCOPED),
        (Resource.ASSETS, Action.MANAGE, SCOPED),
        (Resource.ASSETS, Action.EXECUTE_ROUTINES, SCOPED),
        (Resource.ASSETS, Action.EXPORT, SCOPED),
    ],
    'sector': [
        (Resource.SECTORS, Action.VIEW, SELF),
        (Resource.SECTORS, Action.UPDATE, SELF),
        (Resource.SECTORS, Action.DELETE, SELF),
        (Resource.USERS, Action.INVITE, SCOPED),
        (Resource.ASSETS, Action.VIEW_ANY, SCOPED),
        (Resource.ASSETS, Action.CREATE, SCOPED),
        (Resource.ASSETS, Action.MANAGE, SCOPED),
        (Resource.ASSETS, Action.EXECUTE_ROUTINES, SCOPED),
        (Resource.ASSETS, Action.EXPORT, SCOPED),
    ],
    'asset': [
        (Resource.ASSETS, Action.VIEW, SELF),
        (Resource.ASSETS, Action.UPDATE, SELF),
        (Resource.ASSETS, Action.DELETE, SELF),
        (Resource.ASSETS, Action.MANAGE, SELF),
        (Resource.ASSETS, Action.EXECUTE_ROUTINES, SELF),
    ],
}

SYSTEM_PERMISSIONS = [
    (PermissionName.system(Action.CREATE, Resource.PLANTS), 'Create plants'),
    (PermissionName.system(Action.CREATE, Resource.AREAS), 'Create areas in any plant'),
    (PermissionName.system(Action.CREATE, Resource.SECTORS), 'Create sectors in any area'),
    (PermissionName.system(Action.CREATE, Resource.ASSETS), 'Create assets in any sector'),
    (PermissionName.system(Action.MANAGE, Resource.USERS), 'Manage users and role assignments'),
    (PermissionName.system(Action.VIEW, Resource.AUDIT_LOGS), 'View the audit log'),
    (PermissionName.system(Action.BULK_IMPORT, Resource.ASSETS), 'Bulk import assets'),
    (PermissionName.system(Action.BULK_EXPORT, Resource.ASSETS), 'Bulk export assets'),
]


class PermissionCatalog:
    """
    Lifecycle of entity-scoped permissions.
    """

    @classmethod
    def names_for_entity(cls, entity):
        """Permission names an entity of this type owns, in template order."""
        names = []
        for resource, action, form in ENTITY_TEMPLATES[entity.entity_type]:
            if form == SELF:
                name = PermissionName.for_entity(resource, action, entity.pk)
            else:
                name = PermissionName.scoped(resource, action, entity.entity_type, entity.pk)
            names.append(name)
        return names

    @classmethod
    def create_for_entity(cls, entity):
        """
        Store the permissions for ``entity``.

        Idempotent: existing names are reused, never duplicated.

        Returns:
            list of Permission instances
        """
        permissions = []
        created_count = 0
        with transaction.atomic():
            for name in cls.names_for_entity(entity):
                permission, created = Permission.objects.get_or_create_permission(
                    name=str(name),
                    display_name=f"{name.action.value} {name.resource.value} ({entity.entity_type}: {entity.name})"[:255],
                )
                permissions.append(permission)
                created_count += int(created)

        logger.info(
            "Entity permissions generated",
            extra={
                'entity_type': entity.entity_type,
                'entity_id': entity.pk,
                'permissions_created': created_count,
                'permissions_total': len(permissions),
            }
        )
        return permissions

    @classmethod
    def permissions_for_entity(cls, entity):
        return Permission.objects.anchored_at(entity.entity_type, entity.pk)

    @classmethod
    def ensure_deletable(cls, entity):
        """
        Raises:
            EntityHasDependents: ``entity`` still has children
        """
        if entity.has_children():
            dependents = getattr(entity, entity.child_relation).count()
            raise EntityHasDependents(
                f"Cannot delete {entity.entity_type} '{entity.name}' (ID: {entity.pk}) "
                f"because it still has {dependents} {entity.child_relation}. "
                f"Remove or move them first.",
                details={'dependents': dependents, 'relation': entity.child_relation}
            )

    @classmethod
    def delete_for_entity(cls, entity):
        """
        Remove every permission anchored at ``entity``.

        Rejected while the entity still has children.

        Returns:
            number of permissions deleted
        """
        cls.ensure_deletable(entity)
        return cls.purge_for_entity(entity.entity_type, entity.pk)

    @classmethod
    def purge_for_entity(cls, entity_type, entity_id):
        """
        Detach and delete every permission anchored at (entity_type, entity_id).

        Role and user links are removed first and the cached permission sets
        of every affected user are invalidated.
        """
        with transaction.atomic():
            permission_ids = list(
                Permission.objects.anchored_at(entity_type, entity_id).values_list('id', flat=True)
            )
            if not permission_ids:
                return 0

            affected_users = set(
                UserPermission.objects.filter(permission_id__in=permission_ids)
                .values_list('user_id', flat=True)
            )
            affected_users.update(
                UserRole.objects.filter(role__role_permissions__permission_id__in=permission_ids)
                .values_list('user_id', flat=True)
            )

            role_links, _ = RolePermission.objects.filter(permission_id__in=permission_ids).delete()
            user_links, _ = UserPermission.objects.filter(permission_id__in=permission_ids).delete()
            _, per_model = Permission.objects.filter(id__in=permission_ids).delete()
            deleted = per_model.get(Permission._meta.label, 0)

        invalidate_permission_cache(affected_users)

        logger.info(
            "Entity permissions deleted",
            extra={
                'entity_type': entity_type,
                'entity_id': entity_id,
                'deleted': deleted,
                'role_links': role_links,
                'user_links': user_links,
                'affected_users': len(affected_users),
            }
        )
        return deleted

    @classmethod
    def ensure_system_permissions(cls):
        """Store the system permissions (idempotent)."""
        permissions = []
        for name, description in SYSTEM_PERMISSIONS:
            permission, _ = Permission.objects.get_or_create_permission(
                name=str(name),
                display_name=description,
                description=description,
            )
            permissions.append(permission)
        return permissions
