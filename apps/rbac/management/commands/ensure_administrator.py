"""
Management command to make sure an administrator exists.

With --email the given user receives the Administrator role. Without it,
the earliest active user is promoted when no administrator exists at all.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.rbac.models import User
from apps.rbac.protection import AdministratorProtectionService
from apps.rbac.services import RBACService, UserService


class Command(BaseCommand):
    help = 'Ensure at least one administrator exists'

    def add_arguments(self, parser):
        parser.add_argument(
            '--email',
            type=str,
            help='Promote this user to Administrator',
        )
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create the user if they do not exist (requires --password and --name)',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password for a new user (only used with --create-user)',
        )
        parser.add_argument(
            '--name',
            type=str,
            default='',
            help='Display name for a new user',
        )

    def handle(self, *args, **options):
        email = options.get('email')

        if not email:
            user = AdministratorProtectionService.ensure_administrator_exists()
            if user is None:
                count = AdministratorProtectionService.get_active_administrator_count()
                self.stdout.write(f'No change needed: {count} active administrator(s)')
            else:
                self.stdout.write(self.style.SUCCESS(f'✓ Promoted {user.email} to Administrator'))
            return

        user = User.objects.by_email(email)
        if user is None:
            if not options['create_user']:
                raise CommandError(f'User not found: {email}. Use --create-user to create them.')
            if not options.get('password'):
                raise CommandError('--password is required when using --create-user')
            user = UserService.create_user(
                email=email,
                name=options['name'] or email,
                password=options['password'],
            )
            self.stdout.write(self.style.SUCCESS(f'✓ Created user: {user.email}'))

        RBACService.assign_role(user, RBACService.get_administrator_role())
        self.stdout.write(self.style.SUCCESS(f'✓ {user.email} is an administrator'))
