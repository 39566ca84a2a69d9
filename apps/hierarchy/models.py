"""
Asset hierarchy models.

Plant -> Area -> Sector -> Asset. Each level exposes:
- entity_type: scope type used inside permission names ('plant', 'area', ...)
- resource: resource name used inside permission names ('plants', 'areas', ...)
- parent / child_relation: navigation used by HierarchyService
"""
from django.db import models

from apps.core.models import TimestampedModel


class HierarchyEntity(TimestampedModel):
    """Abstract base for the four hierarchy levels."""

    entity_type = None
    resource = None
    parent_field = None
    child_relation = None

    name = models.CharField(
        max_length=255,
        help_text="Display name"
    )
    description = models.TextField(
        blank=True,
        help_text="Free text description"
    )

    class Meta:
        abstract = True
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def parent(self):
        if self.parent_field is None:
            return None
        return getattr(self, self.parent_field)

    def has_children(self):
        if self.child_relation is None:
            return False
        return getattr(self, self.child_relation).exists()


class Plant(HierarchyEntity):
    """Top level of the hierarchy."""

    entity_type = 'plant'
    resource = 'plants'
    child_relation = 'areas'

    code = models.CharField(
        max_length=50,
        blank=True,
        help_text="Short plant code"
    )

    class Meta:
        db_table = 'plants'
        ordering = ['name']


class Area(HierarchyEntity):
    entity_type = 'area'
    resource = 'areas'
    parent_field = 'plant'
    child_relation = 'sectors'

    plant = models.ForeignKey(
        Plant,
        on_delete=models.PROTECT,
        related_name='areas',
        help_text="Plant this area belongs to"
    )

    class Meta:
        db_table = 'areas'
        ordering = ['name']
        indexes = [
            models.Index(fields=['plant']),
        ]


class Sector(HierarchyEntity):
    entity_type = 'sector'
    resource = 'sectors'
    parent_field = 'area'
    child_relation = 'assets'

    area = models.ForeignKey(
        Area,
        on_delete=models.PROTECT,
        related_name='sectors',
        help_text="Area this sector belongs to"
    )

    class Meta:
        db_table = 'sectors'
        ordering = ['name']
        indexes = [
            models.Index(fields=['area']),
        ]


class Asset(HierarchyEntity):
    """
    Leaf of the hierarchy.

    Ownership flows through the sector; ``area`` and ``plant`` are
    denormalized copies kept in sync on save for cheap filtering.
    """

    entity_type = 'asset'
    resource = 'assets'
    parent_field = 'sector'

    tag = models.CharField(
        max_length=100,
        unique=True,
        help_text="Asset tag (unique)"
    )
    serial_number = models.CharField(
        max_length=100,
        blank=True,
    )
    manufacturing_year = models.PositiveIntegerField(
        null=True,
        blank=True,
    )
    sector = models.ForeignKey(
        Sector,
        on_delete=models.PROTECT,
        related_name='assets',
        help_text="Sector owning this asset"
    )
    area = models.ForeignKey(
        Area,
        on_delete=models.PROTECT,
        related_name='assets',
        editable=False,
    )
    plant = models.ForeignKey(
        Plant,
        on_delete=models.PROTECT,
        related_name='assets',
        editable=False,
    )

    class Meta:
        db_table = 'assets'
        ordering = ['tag']
        indexes = [
            models.Index(fields=['sector']),
            models.Index(fields=['area']),
            models.Index(fields=['plant']),
        ]

    def __str__(self):
        return self.tag

    def save(self, *args, **kwargs):
        """Copy area and plant from the owning sector."""
        sector = self.sector
        self.area_id = sector.area_id
        self.plant_id = sector.area.plant_id
        super().save(*args, **kwargs)


ENTITY_MODELS = {
    model.entity_type: model
    for model in (Plant, Area, Sector, Asset)
}
