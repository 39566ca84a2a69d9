"""
Management command to seed the default roles and system permissions.

Creates Administrator, Plant Manager, Area Manager, Sector Manager,
Technician and Viewer, plus the system.* permissions. Idempotent and
safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.catalog import PermissionCatalog
from apps.rbac.models import Role
from apps.rbac.services import DEFAULT_ROLES, RBACService


class Command(BaseCommand):
    help = 'Seed default roles and system permissions (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--grant-system-permissions',
            action='store_true',
            help='Also attach every system permission to the Administrator role',
        )

    def handle(self, *args, **options):
        with transaction.atomic():
            created_roles = RBACService.seed_default_roles()
            permissions = PermissionCatalog.ensure_system_permissions()

            if options['grant_system_permissions']:
                administrator = RBACService.get_administrator_role()
                for permission in permissions:
                    RBACService.grant_role_permission(administrator, permission.name)

        for name in DEFAULT_ROLES:
            if name in created_roles:
                self.stdout.write(self.style.SUCCESS(f'  ✓ Created role: {name}'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'    Exists: {name}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {len(created_roles)} roles created, '
                f'{Role.objects.count()} roles total, {len(permissions)} system permissions'
            )
        )
