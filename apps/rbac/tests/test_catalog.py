"""
Tests for the permission catalog.

Covers generation per entity type, idempotence, deletion guards and the
purge of role/user links.
"""
import logging

import pytest

from apps.core.exceptions import EntityHasDependents
from apps.hierarchy.services import EntityService
from apps.rbac.catalog import PermissionCatalog
from apps.rbac.models import Permission, Role, RolePermission, UserPermission, UserRole
from apps.rbac.resolver import AuthorizationResolver


@pytest.mark.django_db
class TestPermissionGeneration:
    """Test permission generation for new entities."""

    def test_sector_permissions(self, hierarchy):
        sector = hierarchy['sector']
        names = set(
            PermissionCatalog.permissions_for_entity(sector).values_list('name', flat=True)
        )

        sid = sector.id
        assert names == {
            f'sectors.view.{sid}',
            f'sectors.update.{sid}',
            f'sectors.delete.{sid}',
            f'users.invite.sector.{sid}',
            f'assets.viewAny.sector.{sid}',
            f'assets.create.sector.{sid}',
            f'assets.manage.sector.{sid}',
            f'assets.execute-routines.sector.{sid}',
            f'assets.export.sector.{sid}',
        }

    def test_plant_permissions_include_scoped_children(self, hierarchy):
        plant = hierarchy['plant']
        names = set(
            PermissionCatalog.permissions_for_entity(plant).values_list('name', flat=True)
        )

        assert f'plants.view.{plant.id}' in names
        assert f'plants.manage-shifts.{plant.id}' in names
        assert f'areas.create.plant.{plant.id}' in names
        assert f'assets.manage.plant.{plant.id}' in names
        assert f'manufacturers.viewAny.plant.{plant.id}' in names
        assert len(names) == 22

    def test_asset_permissions(self, hierarchy):
        asset = hierarchy['asset']
        names = set(
            PermissionCatalog.permissions_for_entity(asset).values_list('name', flat=True)
        )

        assert names == {
            f'assets.view.{asset.id}',
            f'assets.update.{asset.id}',
            f'assets.delete.{asset.id}',
            f'assets.manage.{asset.id}',
            f'assets.execute-routines.{asset.id}',
        }

    def test_anchor_columns_are_filled(self, hierarchy):
        sector = hierarchy['sector']
        permission = Permission.objects.get(name=f'assets.manage.sector.{sector.id}')

        assert permission.resource == 'assets'
        assert permission.action == 'manage'
        assert permission.entity_type == 'sector'
        assert permission.entity_id == sector.id

    def test_generation_is_idempotent(self, hierarchy):
        sector = hierarchy['sector']
        before = Permission.objects.count()

        PermissionCatalog.create_for_entity(sector)
        PermissionCatalog.create_for_entity(sector)

        assert Permission.objects.count() == before
        assert PermissionCatalog.permissions_for_entity(sector).count() == 9

    def test_entity_lifecycle_log_records(self, caplog, monkeypatch):
        """Every log call on the create/update/delete path builds a valid record."""
        monkeypatch.setattr(logging.getLogger('apps'), 'propagate', True)
        with caplog.at_level(logging.DEBUG, logger='apps'):
            plant = EntityService.create_plant('Logged Plant')
            EntityService.update(plant, name='Logged Plant 2')
            EntityService.delete(plant)

        generated = [r for r in caplog.records if r.getMessage() == 'Entity permissions generated']
        assert len(generated) == 1
        assert generated[0].permissions_created == 22
        assert generated[0].permissions_total == 22
        assert generated[0].entity_type == 'plant'

    def test_rolled_back_create_leaves_no_permissions(self, hierarchy, monkeypatch):
        """A failing audit write inside the entity transaction rolls everything back."""
        area = hierarchy['area']
        before = Permission.objects.count()

        def boom(*args, **kwargs):
            raise RuntimeError('audit down')

        monkeypatch.setattr('apps.hierarchy.services.AuditService.record', boom)

        with pytest.raises(RuntimeError):
            EntityService.create_sector(area, 'Doomed')

        assert Permission.objects.count() == before


@pytest.mark.django_db
class TestPermissionDeletion:
    """Test deleting entity permissions."""

    def test_delete_rejected_while_children_exist(self, hierarchy):
        sector = hierarchy['sector']

        with pytest.raises(EntityHasDependents) as exc_info:
            PermissionCatalog.delete_for_entity(sector)

        assert 'Sector 1' in exc_info.value.message
        assert '2 assets' in exc_info.value.message
        assert PermissionCatalog.permissions_for_entity(sector).count() == 9

    def test_delete_after_children_removed(self, hierarchy):
        sector = hierarchy['sector']
        EntityService.delete(hierarchy['asset'])
        EntityService.delete(hierarchy['asset2'])

        deleted = PermissionCatalog.delete_for_entity(sector)

        assert deleted == 9
        assert not Permission.objects.filter(entity_type='sector', entity_id=sector.id).exists()

    def test_purge_detaches_roles_and_users(self, hierarchy, user):
        asset = hierarchy['asset']
        name = f'assets.update.{asset.id}'
        permission = Permission.objects.get(name=name)

        role = Role.objects.create(name='Asset Editor')
        RolePermission.objects.grant_permission(role, permission)
        UserRole.objects.assign(user, role)
        UserPermission.objects.grant_permission(user, permission)

        assert AuthorizationResolver.can(user, 'update', asset)

        EntityService.delete(asset)

        assert not RolePermission.objects.filter(role=role).exists()
        assert not UserPermission.objects.filter(user=user).exists()
        assert name not in AuthorizationResolver.effective_permission_names(user)

    def test_purge_leaves_other_entities_alone(self, hierarchy):
        asset2 = hierarchy['asset2']

        EntityService.delete(hierarchy['asset'])

        assert PermissionCatalog.permissions_for_entity(asset2).count() == 5


@pytest.mark.django_db
class TestSystemPermissions:

    def test_ensure_system_permissions_is_idempotent(self):
        first = PermissionCatalog.ensure_system_permissions()
        second = PermissionCatalog.ensure_system_permissions()

        assert [p.id for p in first] == [p.id for p in second]
        assert Permission.objects.by_name('system.create-plants') is not None
        assert Permission.objects.by_name('system.create-plants').entity_type is None
