"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.cache import cache
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'tests',
        }
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database without migration files."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached permission sets must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def request_factory():
    from rest_framework.test import APIRequestFactory
    return APIRequestFactory()


@pytest.fixture
def system_roles(db):
    """Default roles and system permissions, keyed by role name."""
    from apps.rbac.catalog import PermissionCatalog
    from apps.rbac.models import Role
    from apps.rbac.services import RBACService

    RBACService.seed_default_roles()
    PermissionCatalog.ensure_system_permissions()
    return {role.name: role for role in Role.objects.system_roles()}


@pytest.fixture
def admin_role(system_roles):
    return system_roles['Administrator']


@pytest.fixture
def make_user(db):
    """Create users directly through the manager (no first-user bootstrap)."""
    from apps.rbac.models import User

    counter = {'n': 0}

    def _make_user(name=None, email=None, password='testpass123'):
        counter['n'] += 1
        n = counter['n']
        return User.objects.create_user(
            email=email or f'user{n}@example.com',
            password=password,
            name=name or f'User {n}',
        )

    return _make_user


@pytest.fixture
def make_admin(make_user, admin_role):
    from apps.rbac.models import UserRole

    def _make_admin(name=None, email=None):
        user = make_user(name=name, email=email)
        UserRole.objects.assign(user, admin_role)
        return user

    return _make_admin


@pytest.fixture
def admin(make_admin):
    return make_admin(name='Admin', email='admin@example.com')


@pytest.fixture
def user(make_user):
    return make_user(name='Regular User', email='user@example.com')


@pytest.fixture
def hierarchy(db):
    """
    Two plants with one branch each:

        plant (P1) -> area (A1) -> sector (S1) -> asset (X1), asset2 (X2)
        other_plant (P2) -> other_area -> other_sector -> other_asset
    """
    from apps.hierarchy.services import EntityService

    plant = EntityService.create_plant('Plant 1')
    area = EntityService.create_area(plant, 'Area 1')
    sector = EntityService.create_sector(area, 'Sector 1')
    asset = EntityService.create_asset(sector, 'X-1')
    asset2 = EntityService.create_asset(sector, 'X-2')

    other_plant = EntityService.create_plant('Plant 2')
    other_area = EntityService.create_area(other_plant, 'Area 2')
    other_sector = EntityService.create_sector(other_area, 'Sector 2')
    other_asset = EntityService.create_asset(other_sector, 'Y-1')

    return {
        'plant': plant,
        'area': area,
        'sector': sector,
        'asset': asset,
        'asset2': asset2,
        'other_plant': other_plant,
        'other_area': other_area,
        'other_sector': other_sector,
        'other_asset': other_asset,
    }


@pytest.fixture
def grant():
    """Grant permission names directly to a user."""
    from apps.rbac.services import RBACService

    def _grant(user, *names):
        for name in names:
            RBACService.grant_permission(user, name)

    return _grant
