"""
Tests for the rbac management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.hierarchy.models import Asset
from apps.rbac.models import Permission, User
from apps.rbac.protection import AdministratorProtectionService


def run(*args, **kwargs):
    out = StringIO()
    call_command(*args, stdout=out, **kwargs)
    return out.getvalue()


@pytest.mark.django_db
class TestSeedRolesCommand:

    def test_seed_roles(self):
        output = run('seed_roles')

        assert 'Seeding complete' in output
        assert Permission.objects.by_name('system.manage-users') is not None

    def test_grant_system_permissions(self, admin_role):
        run('seed_roles', '--grant-system-permissions')

        assert admin_role.has_permission('system.view-audit-logs')


@pytest.mark.django_db
class TestEnsureAdministratorCommand:

    def test_promote_existing_user(self, user, admin_role):
        output = run('ensure_administrator', '--email', 'user@example.com')

        assert 'is an administrator' in output
        assert AdministratorProtectionService.is_administrator(user)

    def test_unknown_email(self, admin_role):
        with pytest.raises(CommandError):
            run('ensure_administrator', '--email', 'ghost@example.com')

    def test_create_user_requires_password(self, admin_role):
        with pytest.raises(CommandError):
            run('ensure_administrator', '--email', 'new@example.com', '--create-user')

    def test_create_user(self, admin, admin_role):
        run(
            'ensure_administrator', '--email', 'new@example.com',
            '--create-user', '--password', 'long-enough-pass', '--name', 'New Admin',
        )

        new = User.objects.by_email('new@example.com')
        assert new.name == 'New Admin'
        assert AdministratorProtectionService.is_administrator(new)

    def test_without_email_promotes_earliest(self, make_user, admin_role):
        first = make_user()

        output = run('ensure_administrator')

        assert 'Promoted' in output
        assert AdministratorProtectionService.is_administrator(first)

    def test_without_email_no_change(self, admin):
        output = run('ensure_administrator')

        assert 'No change needed: 1 active administrator(s)' in output


@pytest.mark.django_db
class TestCheckAdministratorsCommand:

    def test_healthy(self, admin):
        output = run('check_administrators')

        assert '1 active, 0 soft-deleted' in output
        assert 'healthy' in output

    def test_critical_without_recover(self, admin):
        User.objects.filter(pk=admin.pk).delete()

        with pytest.raises(CommandError):
            run('check_administrators')

    def test_critical_with_recover(self, admin):
        User.objects.filter(pk=admin.pk).delete()

        output = run('check_administrators', '--recover')

        assert 'Restored administrator' in output
        admin.refresh_from_db()
        assert admin.deleted_at is None


@pytest.mark.django_db
class TestValidatePermissionsCommand:

    def test_clean_catalog(self, hierarchy):
        output = run('validate_permissions')

        assert '0 invalid' in output
        assert 'No orphaned permissions' in output

    def test_reports_and_cleans_orphans(self, hierarchy):
        Asset.objects.filter(pk=hierarchy['asset'].pk).delete()

        report = run('validate_permissions')
        assert 'Found 5 orphaned permission(s)' in report

        cleanup = run('validate_permissions', '--cleanup')
        assert 'Deleted 5 orphaned permission(s)' in cleanup
        assert 'No orphaned permissions' in run('validate_permissions')
