"""
RBAC signals.

After migrate: install the administrator protection triggers (PostgreSQL
only, behind RBAC_INSTALL_DB_TRIGGERS) and make sure the system roles and
system permissions exist.
"""
import logging

from django.conf import settings
from django.db.models.signals import post_migrate
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_migrate)
def setup_rbac_after_migrate(sender, app_config=None, using='default', **kwargs):
    """
    Runs once per migrate, for the rbac app only.
    """
    if app_config is None or app_config.name != 'apps.rbac':
        return

    # Import here to avoid circular imports
    from apps.rbac.catalog import PermissionCatalog
    from apps.rbac.services import RBACService
    from apps.rbac.triggers import install_administrator_triggers

    created_roles = RBACService.seed_default_roles()
    PermissionCatalog.ensure_system_permissions()
    if created_roles:
        logger.info("Default roles seeded", extra={'roles': created_roles})

    if getattr(settings, 'RBAC_INSTALL_DB_TRIGGERS', False):
        install_administrator_triggers(using=using)
