"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.core.management import call_command


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with syncdb; post_migrate seeds the role catalog."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


class FrozenClock:
    """Callable clock for services; advance() moves it forward."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=dt_timezone.utc))


@pytest.fixture
def registry(db):
    """Default registry with the catalog seeded into the test database."""
    from apps.rbac.registry import get_default_registry
    registry = get_default_registry()
    registry.initialize()
    return registry


@pytest.fixture
def encryption():
    from apps.core.encryption import EncryptionService
    return EncryptionService.from_settings()


@pytest.fixture
def permission_service(registry, clock):
    from apps.rbac.services import PermissionService
    return PermissionService(registry=registry, clock=clock)


@pytest.fixture
def assignment_service(registry, clock):
    from apps.rbac.services import RoleAssignmentService
    return RoleAssignmentService(registry=registry, clock=clock)


@pytest.fixture
def two_factor_service(db, encryption, clock):
    from apps.twofactor.services import TwoFactorService
    return TwoFactorService(encryption=encryption, clock=clock)


@pytest.fixture
def step_up_service(registry, two_factor_service, assignment_service, clock):
    from apps.twofactor.services import StepUpService
    return StepUpService(
        two_factor=two_factor_service,
        assignments=assignment_service,
        registry=registry,
        clock=clock,
        block_unenrolled=False,
    )


@pytest.fixture
def tenant_id():
    return 'tenant-grace'


@pytest.fixture
def other_tenant_id():
    return 'tenant-hope'


@pytest.fixture
def owner_id(assignment_service, tenant_id):
    """A platform owner with a direct assignment in the main tenant."""
    assignment_service.assign_role('bootstrap', 'user-owner', tenant_id, 'owner')
    return 'user-owner'


@pytest.fixture
def enroll(two_factor_service):
    """Enroll a user in authenticator two-factor and return the secret."""
    def _enroll(user_id):
        setup = two_factor_service.setup_totp(user_id)
        two_factor_service.enable_2fa(user_id, 'authenticator')
        return setup
    return _enroll
