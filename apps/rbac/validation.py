"""
Permission validation and maintenance.

Reports stored permissions whose names do not parse and permissions whose
anchoring entity no longer exists, and optionally removes the latter.
"""
import logging
import re

from django.db import transaction

from apps.core.exceptions import OrphanedPermissionInvariantViolation
from apps.core.logging import SecurityLogger
from apps.hierarchy.models import ENTITY_MODELS, Asset, Sector
from apps.rbac import permission_names
from apps.rbac.catalog import PermissionCatalog
from apps.rbac.models import Permission

logger = logging.getLogger(__name__)


class PermissionValidationService:

    @staticmethod
    def validate_permission_name(name):
        """
        Returns:
            (bool, error message or None)
        """
        if not isinstance(name, str) or not name:
            return False, 'Permission name must be a non-empty string'
        if permission_names.parse(name) is None:
            return False, f"Invalid permission format: '{name}'"
        return True, None

    @classmethod
    def validate_all_permissions(cls):
        """
        Validate every stored permission name.

        Returns:
            dict with total, valid, invalid and errors ({name, error})
        """
        result = {'total': 0, 'valid': 0, 'invalid': 0, 'errors': []}
        for name in Permission.objects.values_list('name', flat=True).iterator():
            result['total'] += 1
            valid, error = cls.validate_permission_name(name)
            if valid:
                result['valid'] += 1
            else:
                result['invalid'] += 1
                result['errors'].append({'name': name, 'error': error})
        return result

    @classmethod
    def find_orphaned_permissions(cls):
        """Permissions anchored at entities that no longer exist."""
        orphaned_ids = []
        for entity_type, model in ENTITY_MODELS.items():
            anchored = Permission.objects.filter(entity_type=entity_type)
            anchored_ids = set(anchored.values_list('entity_id', flat=True))
            if not anchored_ids:
                continue
            existing = set(model.objects.filter(pk__in=anchored_ids).values_list('pk', flat=True))
            missing = anchored_ids - existing
            if missing:
                orphaned_ids.extend(
                    anchored.filter(entity_id__in=missing).values_list('id', flat=True)
                )
        return Permission.objects.filter(id__in=orphaned_ids)

    @classmethod
    def cleanup_orphaned_permissions(cls, dry_run=False):
        """
        Remove permissions anchored at missing entities.

        Every orphan found is reported as a security event, since the
        catalog is expected to purge them together with their entity.

        Returns:
            list of orphaned permission names (deleted unless dry_run)
        """
        orphaned = list(cls.find_orphaned_permissions())
        if not orphaned:
            return []

        violation = OrphanedPermissionInvariantViolation(
            f"{len(orphaned)} permission(s) reference entities that no longer exist",
            details={'names': [permission.name for permission in orphaned]}
        )
        SecurityLogger.log_event(
            'orphaned_permission',
            level='error',
            count=len(orphaned),
            error_message=violation.message,
        )

        if not dry_run:
            anchors = {(permission.entity_type, permission.entity_id) for permission in orphaned}
            with transaction.atomic():
                for entity_type, entity_id in anchors:
                    PermissionCatalog.purge_for_entity(entity_type, entity_id)

        return [permission.name for permission in orphaned]

    @staticmethod
    def validate_hierarchy_consistency():
        """
        Check denormalized asset ancestry against the owning sector.

        Returns:
            list of {asset_id, error} dicts
        """
        errors = []
        sectors = dict(Sector.objects.values_list('id', 'area__plant_id'))
        for asset_id, sector_id, area_id, plant_id, sector_area_id in Asset.objects.values_list(
            'id', 'sector_id', 'area_id', 'plant_id', 'sector__area_id'
        ).iterator():
            if area_id != sector_area_id:
                errors.append({'asset_id': asset_id, 'error': 'area does not match sector'})
            elif plant_id != sectors.get(sector_id):
                errors.append({'asset_id': asset_id, 'error': 'plant does not match sector'})
        return errors

    @staticmethod
    def sanitize_permission_name(name):
        """Lowercase, drop characters outside [a-z0-9.-] and collapse dots."""
        name = re.sub(r'[^a-z0-9\-.]', '', str(name).lower())
        name = re.sub(r'\.{2,}', '.', name)
        return name.strip('.')
