"""
Core models for the maintenance platform.
Provides TimestampedModel and SoftDeleteModel base classes.
"""
from django.db import models
from django.utils import timezone


class SoftDeleteManager(models.Manager):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class SoftDeleteQuerySet(models.QuerySet):
    """QuerySet with soft delete support."""

    def delete(self):
        """Soft delete all objects in queryset."""
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Permanently delete all objects in queryset."""
        return super().delete()

    def deleted(self):
        """Only soft-deleted objects."""
        return self.filter(deleted_at__isnull=False)

    def with_deleted(self):
        """Include soft-deleted objects."""
        return self.model.objects_with_deleted.all()


class TimestampedModel(models.Model):
    """
    Abstract base model with an integer primary key and timestamps.

    Entity ids appear inside permission names, so every model that can be
    a permission scope uses a plain auto-incrementing id.
    """
    id = models.BigAutoField(primary_key=True)

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class SoftDeleteModel(TimestampedModel):
    """
    Abstract base model adding soft delete on top of timestamps.

    `delete()` only stamps `deleted_at`; `hard_delete()` removes the row.
    The default manager hides soft-deleted rows, `objects_with_deleted`
    returns everything.
    """
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    # Default manager excludes soft-deleted objects
    objects = SoftDeleteManager.from_queryset(SoftDeleteQuerySet)()

    # Manager that includes soft-deleted objects
    objects_with_deleted = models.Manager.from_queryset(SoftDeleteQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    def hard_delete(self, using=None, keep_parents=False):
        """Permanently delete the object."""
        return super().delete(using=using, keep_parents=keep_parents)

    def restore(self):
        """Restore a soft-deleted object."""
        self.deleted_at = None
        self.save(update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self):
        """Check if the object is soft deleted."""
        return self.deleted_at is not None
