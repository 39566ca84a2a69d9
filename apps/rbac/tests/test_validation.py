"""
Tests for permission validation and orphan cleanup.
"""
import pytest

from apps.hierarchy.models import Asset
from apps.rbac.models import Permission, UserPermission
from apps.rbac.validation import PermissionValidationService


@pytest.mark.django_db
class TestValidatePermissionNames:

    @pytest.mark.parametrize('name', [
        'sectors.view.1',
        'assets.manage.plant.12',
        'system.view-audit-logs',
    ])
    def test_valid_names(self, name):
        assert PermissionValidationService.validate_permission_name(name) == (True, None)

    @pytest.mark.parametrize('name', ['', None, 'sectors.view', 'assets.fly.plant.1'])
    def test_invalid_names(self, name):
        valid, error = PermissionValidationService.validate_permission_name(name)

        assert valid is False
        assert error

    def test_validate_all_reports_bad_rows(self, hierarchy):
        Permission.objects.create(name='legacy permission', display_name='Legacy')

        result = PermissionValidationService.validate_all_permissions()

        assert result['invalid'] == 1
        assert result['errors'][0]['name'] == 'legacy permission'
        assert result['total'] == result['valid'] + 1

    def test_sanitize(self):
        assert PermissionValidationService.sanitize_permission_name(' Sectors..View.4 ') == 'sectors.view.4'


@pytest.mark.django_db
class TestOrphanedPermissions:

    def _orphan_asset(self, asset):
        # Row removed without going through EntityService, leaving its permissions behind
        Asset.objects.filter(pk=asset.pk).delete()

    def test_consistent_catalog_has_no_orphans(self, hierarchy):
        assert not PermissionValidationService.find_orphaned_permissions().exists()
        assert PermissionValidationService.cleanup_orphaned_permissions() == []

    def test_find_orphans(self, hierarchy):
        asset = hierarchy['asset']
        self._orphan_asset(asset)

        orphaned = set(PermissionValidationService.find_orphaned_permissions().values_list('name', flat=True))

        assert orphaned == {
            f'assets.view.{asset.id}',
            f'assets.update.{asset.id}',
            f'assets.delete.{asset.id}',
            f'assets.manage.{asset.id}',
            f'assets.execute-routines.{asset.id}',
        }

    def test_dry_run_keeps_rows(self, hierarchy):
        self._orphan_asset(hierarchy['asset'])

        names = PermissionValidationService.cleanup_orphaned_permissions(dry_run=True)

        assert len(names) == 5
        assert PermissionValidationService.find_orphaned_permissions().count() == 5

    def test_cleanup_removes_rows_and_links(self, user, hierarchy, grant):
        asset = hierarchy['asset']
        grant(user, f'assets.update.{asset.id}')
        self._orphan_asset(asset)

        names = PermissionValidationService.cleanup_orphaned_permissions()

        assert len(names) == 5
        assert not PermissionValidationService.find_orphaned_permissions().exists()
        assert not UserPermission.objects.filter(user=user).exists()


@pytest.mark.django_db
class TestHierarchyConsistency:

    def test_consistent(self, hierarchy):
        assert PermissionValidationService.validate_hierarchy_consistency() == []

    def test_detects_stale_denormalized_area(self, hierarchy):
        asset = hierarchy['asset']
        Asset.objects.filter(pk=asset.pk).update(area=hierarchy['other_area'])

        errors = PermissionValidationService.validate_hierarchy_consistency()

        assert errors == [{'asset_id': asset.id, 'error': 'area does not match sector'}]
