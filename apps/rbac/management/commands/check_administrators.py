"""
Management command to report on administrator health.

Exits with an error in critical state (no active administrator) unless
--recover restores the most recently soft-deleted administrator.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import CriticalStateDetected
from apps.rbac.protection import AdministratorProtectionService


class Command(BaseCommand):
    help = 'Check that at least one active administrator exists'

    def add_arguments(self, parser):
        parser.add_argument(
            '--recover',
            action='store_true',
            help='Restore a soft-deleted administrator when none is active',
        )

    def handle(self, *args, **options):
        administrators = list(AdministratorProtectionService.get_all_administrators())
        active = [user for user in administrators if user.deleted_at is None]

        self.stdout.write(
            f'Administrators: {len(active)} active, '
            f'{len(administrators) - len(active)} soft-deleted'
        )
        for user in administrators:
            state = 'deleted' if user.deleted_at else 'active'
            self.stdout.write(f'  - {user.display_label} [{state}]')

        if active:
            self.stdout.write(self.style.SUCCESS('✓ System is healthy'))
            return

        if not options['recover']:
            raise CommandError('Critical state: no active administrator. Re-run with --recover.')

        try:
            recovered = AdministratorProtectionService.assert_healthy()
        except CriticalStateDetected as e:
            raise CommandError(e.message)
        self.stdout.write(self.style.SUCCESS(f'✓ Restored administrator {recovered.display_label}'))
