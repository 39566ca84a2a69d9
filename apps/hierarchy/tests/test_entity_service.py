"""
Tests for HierarchyService and EntityService.
"""
import pytest
from django.core.exceptions import ValidationError

from apps.core.exceptions import EntityHasDependents, EntityNotFound
from apps.hierarchy.models import Asset, Plant, Sector
from apps.hierarchy.services import EntityService, HierarchyService
from apps.rbac.catalog import PermissionCatalog
from apps.rbac.models import Permission


@pytest.mark.django_db
class TestHierarchyService:

    def test_ancestors_nearest_first(self, hierarchy):
        assert HierarchyService.ancestors_of(hierarchy['asset']) == [
            hierarchy['sector'], hierarchy['area'], hierarchy['plant'],
        ]
        assert HierarchyService.ancestors_of(hierarchy['plant']) == []

    def test_parent_of(self, hierarchy):
        assert HierarchyService.parent_of(hierarchy['sector']) == hierarchy['area']
        assert HierarchyService.parent_of(hierarchy['plant']) is None

    def test_resolve(self, hierarchy):
        assert HierarchyService.resolve('area', hierarchy['area'].id) == hierarchy['area']

    def test_resolve_unknown(self, hierarchy):
        with pytest.raises(EntityNotFound):
            HierarchyService.resolve('sector', 999999)
        with pytest.raises(EntityNotFound):
            HierarchyService.resolve('galaxy', 1)
        with pytest.raises(EntityNotFound):
            HierarchyService.resolve('plant', 'abc')

    def test_descendant_lookups(self, hierarchy):
        plant = hierarchy['plant']
        lookups = HierarchyService.descendant_lookups(plant)

        assert Asset.objects.filter(**lookups[Asset]).count() == 2
        assert Sector.objects.filter(**lookups[Sector]).count() == 1


@pytest.mark.django_db
class TestEntityService:

    def test_asset_copies_ancestry(self, hierarchy):
        asset = hierarchy['asset']

        assert asset.area_id == hierarchy['area'].id
        assert asset.plant_id == hierarchy['plant'].id
        assert asset.name == 'X-1'

    def test_create_generates_permissions(self):
        plant = EntityService.create_plant('Fresh', code='FR')

        assert plant.code == 'FR'
        assert PermissionCatalog.permissions_for_entity(plant).count() == 22

    def test_update_keeps_permissions(self, hierarchy):
        sector = hierarchy['sector']

        EntityService.update(sector, name='Renamed', description='Packing line')

        sector.refresh_from_db()
        assert sector.name == 'Renamed'
        assert PermissionCatalog.permissions_for_entity(sector).count() == 9

    def test_update_cannot_reparent(self, hierarchy):
        asset = hierarchy['asset']

        with pytest.raises(ValidationError):
            EntityService.update(asset, sector=hierarchy['other_sector'])
        with pytest.raises(ValidationError):
            EntityService.update(hierarchy['sector'], area_id=hierarchy['other_area'].id)
        with pytest.raises(ValidationError):
            EntityService.update(asset, name='Moved', plant_id=hierarchy['other_plant'].id)

        asset.refresh_from_db()
        assert asset.sector_id == hierarchy['sector'].id
        assert asset.plant_id == hierarchy['plant'].id
        assert asset.name != 'Moved'

    def test_delete_with_children_is_rejected(self, hierarchy):
        plant = hierarchy['plant']

        with pytest.raises(EntityHasDependents):
            EntityService.delete(plant)

        assert Plant.objects.filter(pk=plant.pk).exists()
        assert PermissionCatalog.permissions_for_entity(plant).count() == 22

    def test_delete_leaf_to_root(self, hierarchy):
        plant_id = hierarchy['other_plant'].id

        for key in ('other_asset', 'other_sector', 'other_area', 'other_plant'):
            EntityService.delete(hierarchy[key])

        assert not Plant.objects.filter(pk=plant_id).exists()
        assert not Permission.objects.filter(entity_type='plant', entity_id=plant_id).exists()
        assert Permission.objects.filter(entity_type='plant', entity_id=hierarchy['plant'].id).count() == 22
