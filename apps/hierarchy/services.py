"""
Hierarchy services.

- HierarchyService: read-only parent/ancestor/descendant lookups
- EntityService: create/update/delete of hierarchy entities, keeping the
  permission catalog in step inside the same transaction
"""
import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from apps.core.exceptions import EntityNotFound
from apps.hierarchy.models import ENTITY_MODELS, Area, Asset, Plant, Sector
from apps.rbac.audit import AuditService
from apps.rbac.catalog import PermissionCatalog

logger = logging.getLogger(__name__)


# For an entity type, lookups from each descendant model back to it
DESCENDANT_LOOKUPS = {
    'plant': {Area: 'plant_id', Sector: 'area__plant_id', Asset: 'plant_id'},
    'area': {Sector: 'area_id', Asset: 'area_id'},
    'sector': {Asset: 'sector_id'},
    'asset': {},
}

# For a model, lookups from it up to each ancestor type
ANCESTOR_LOOKUPS = {
    Plant: {},
    Area: {'plant': 'plant_id'},
    Sector: {'area': 'area_id', 'plant': 'area__plant_id'},
    Asset: {'sector': 'sector_id', 'area': 'area_id', 'plant': 'plant_id'},
}

MAX_DEPTH = len(ENTITY_MODELS)


class HierarchyService:
    """
    Read-only view of the Plant -> Area -> Sector -> Asset tree.
    """

    @classmethod
    def model_for(cls, entity_type):
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            raise EntityNotFound(f"Unknown entity type '{entity_type}'")
        return model

    @classmethod
    def resolve(cls, entity_type, entity_id):
        """
        Load an entity by scope type and id.

        Raises:
            EntityNotFound: unknown type or id
        """
        model = cls.model_for(entity_type)
        try:
            entity = model.objects.filter(pk=entity_id).first()
        except (ValueError, TypeError):
            entity = None
        if entity is None:
            raise EntityNotFound(
                f"{entity_type} {entity_id} does not exist",
                details={'entity_type': entity_type, 'entity_id': entity_id}
            )
        return entity

    @classmethod
    def parent_of(cls, entity):
        return entity.parent

    @classmethod
    def ancestors_of(cls, entity):
        """Ancestors of ``entity``, nearest first."""
        ancestors = []
        node = entity.parent
        while node is not None and len(ancestors) < MAX_DEPTH:
            ancestors.append(node)
            node = node.parent
        return ancestors

    @classmethod
    def descendant_lookups(cls, entity):
        """
        ``{model: {lookup: entity.pk}}`` filters selecting everything below ``entity``.
        """
        return {
            model: {lookup: entity.pk}
            for model, lookup in DESCENDANT_LOOKUPS[entity.entity_type].items()
        }

    @classmethod
    def ancestor_lookups(cls, model):
        return ANCESTOR_LOOKUPS[model]


class EntityService:
    """
    Mutations of hierarchy entities.

    Every mutation runs in one transaction with the matching permission
    catalog update, so a rolled-back create or delete leaves no orphan
    permissions behind.
    """

    @staticmethod
    def locked_fields(model):
        """Primary key and parent/ancestor fields of ``model``."""
        names = {'id', 'pk'}
        for ancestor_type in ANCESTOR_LOOKUPS[model]:
            names.update((ancestor_type, f'{ancestor_type}_id'))
        return names

    @classmethod
    def _create(cls, model, actor=None, request=None, **fields):
        with transaction.atomic():
            entity = model.objects.create(**fields)
            permissions = PermissionCatalog.create_for_entity(entity)
            AuditService.record(
                actor,
                f'{entity.entity_type}.created',
                entity,
                diff={'new': {'name': entity.name}},
                metadata={'permissions_created': len(permissions)},
                request=request,
            )

        logger.info(
            f"{entity.entity_type} created",
            extra={'entity_type': entity.entity_type, 'entity_id': entity.pk}
        )
        return entity

    @classmethod
    def create_plant(cls, name, actor=None, request=None, **fields):
        return cls._create(Plant, actor=actor, request=request, name=name, **fields)

    @classmethod
    def create_area(cls, plant, name, actor=None, request=None, **fields):
        return cls._create(Area, actor=actor, request=request, plant=plant, name=name, **fields)

    @classmethod
    def create_sector(cls, area, name, actor=None, request=None, **fields):
        return cls._create(Sector, actor=actor, request=request, area=area, name=name, **fields)

    @classmethod
    def create_asset(cls, sector, tag, actor=None, request=None, **fields):
        fields.setdefault('name', tag)
        return cls._create(Asset, actor=actor, request=request, sector=sector, tag=tag, **fields)

    @classmethod
    def update(cls, entity, actor=None, request=None, **fields):
        """
        Update plain fields.

        Raises:
            ValidationError: a primary key, parent or ancestor field is passed
        """
        locked = {name for name in fields if name in cls.locked_fields(type(entity))}
        if locked:
            raise ValidationError(
                f"Cannot change {', '.join(sorted(locked))} of {entity.entity_type} {entity.pk}; "
                f"entities cannot be moved to another parent."
            )

        old = {field: getattr(entity, field) for field in fields}
        for field, value in fields.items():
            setattr(entity, field, value)

        with transaction.atomic():
            entity.save()
            AuditService.record(
                actor,
                f'{entity.entity_type}.updated',
                entity,
                diff={'old': old, 'new': fields},
                request=request,
            )
        return entity

    @classmethod
    def delete(cls, entity, actor=None, request=None):
        """
        Delete an entity and purge its permissions.

        Raises:
            EntityHasDependents: the entity still has children
        """
        entity_type, entity_id, name = entity.entity_type, entity.pk, entity.name

        with transaction.atomic():
            PermissionCatalog.ensure_deletable(entity)
            entity.delete()
            purged = PermissionCatalog.purge_for_entity(entity_type, entity_id)
            AuditService.record(
                actor,
                f'{entity_type}.deleted',
                target_type=entity_type,
                target_id=entity_id,
                diff={'old': {'name': name}},
                metadata={'permissions_deleted': purged},
                request=request,
            )

        logger.info(
            f"{entity_type} deleted",
            extra={'entity_type': entity_type, 'entity_id': entity_id, 'permissions_deleted': purged}
        )

