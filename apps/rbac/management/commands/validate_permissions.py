"""
Management command to validate stored permissions.

Reports malformed names, orphaned permissions (anchored at entities that
no longer exist) and asset ancestry drift. --cleanup removes orphans.
"""
from django.core.management.base import BaseCommand

from apps.rbac.validation import PermissionValidationService


class Command(BaseCommand):
    help = 'Validate permission names and find orphaned permissions'

    def add_arguments(self, parser):
        parser.add_argument(
            '--cleanup',
            action='store_true',
            help='Delete orphaned permissions',
        )

    def handle(self, *args, **options):
        result = PermissionValidationService.validate_all_permissions()
        self.stdout.write(
            f"Permissions: {result['total']} total, {result['valid']} valid, "
            f"{result['invalid']} invalid"
        )
        for error in result['errors']:
            self.stdout.write(self.style.ERROR(f"  ✗ {error['name']}: {error['error']}"))

        orphaned = PermissionValidationService.cleanup_orphaned_permissions(
            dry_run=not options['cleanup']
        )
        if orphaned:
            verb = 'Deleted' if options['cleanup'] else 'Found'
            self.stdout.write(self.style.WARNING(f'{verb} {len(orphaned)} orphaned permission(s)'))
            for name in orphaned:
                self.stdout.write(f'  - {name}')
        else:
            self.stdout.write(self.style.SUCCESS('✓ No orphaned permissions'))

        for error in PermissionValidationService.validate_hierarchy_consistency():
            self.stdout.write(self.style.ERROR(f"  ✗ asset {error['asset_id']}: {error['error']}"))
