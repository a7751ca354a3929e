"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
from django.core.cache import cache
from django.core.management import call_command

TEST_PASSWORD = 'S3cure-passphrase!'


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
            'LOCATION': 'backoffice-tests',
        }
    }
    settings.PASSWORD_HASHERS = [
        'django.contrib.auth.hashers.MD5PasswordHasher',
    ]


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database (apps without migrations are synced)."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Start every test with an empty permission cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def permissions(db):
    """Seed the canonical user-management permissions."""
    from apps.rbac.models import Permission
    from apps.rbac.policy import USER_MANAGEMENT_PERMISSIONS
    return {
        name: Permission.objects.get_or_create_permission(name)[0]
        for name in USER_MANAGEMENT_PERMISSIONS
    }


@pytest.fixture
def roles(db, permissions):
    """Seed the canonical roles."""
    from apps.rbac.models import Role
    from apps.rbac.policy import VIEW_USERS

    super_admin, _ = Role.objects.get_or_create_role('super-admin', 'Unrestricted access')
    super_admin.grant(*permissions.values())

    admin, _ = Role.objects.get_or_create_role('admin', 'Manages accounts and roles')
    admin.grant(*permissions.values())

    manager, _ = Role.objects.get_or_create_role('manager', 'Read-only access to accounts')
    manager.grant(permissions[VIEW_USERS])

    user, _ = Role.objects.get_or_create_role('user', 'Regular user')

    return {
        'super-admin': super_admin,
        'admin': admin,
        'manager': manager,
        'user': user,
    }


@pytest.fixture
def make_account(db):
    """Factory for accounts holding the given role names."""
    from apps.accounts.models import Account, AccountRole
    from apps.rbac.models import Role

    counter = {'n': 0}

    def _make(*role_names, email=None, password=TEST_PASSWORD, **fields):
        counter['n'] += 1
        account = Account.objects.create_user(
            email=email or f"account{counter['n']}@example.com",
            password=password,
            first_name=fields.pop('first_name', 'Test'),
            last_name=fields.pop('last_name', f"Account{counter['n']}"),
            phone=fields.pop('phone', '+254700000000'),
            **fields
        )
        for name in role_names:
            AccountRole.objects.create(account=account, role=Role.objects.get(name=name))
        return account

    return _make


@pytest.fixture
def super_admin(roles, make_account):
    return make_account('super-admin', email='root@example.com', first_name='Root')


@pytest.fixture
def admin_account(roles, make_account):
    return make_account('admin', email='admin@example.com', first_name='Alice')


@pytest.fixture
def manager_account(roles, make_account):
    return make_account('manager', email='manager@example.com', first_name='Mona')


@pytest.fixture
def plain_user(roles, make_account):
    return make_account('user', email='user@example.com', first_name='Paul')


@pytest.fixture
def target_account(roles, make_account):
    return make_account('user', email='target@example.com', first_name='Tara', last_name='Target')
