"""
Tests for the role registry and catalog seeding.
"""
from dataclasses import FrozenInstanceError

import pytest

from apps.core.exceptions import ConfigurationError
from apps.rbac.catalog import CANONICAL_PERMISSIONS, ROLE_DEFINITIONS, SCOPE_COMMUNITY
from apps.rbac.models import Permission, Role, RolePermission
from apps.rbac.registry import RoleRegistry, get_default_registry


def make_role(name, permissions=(), delegable=(), level=10, scope=SCOPE_COMMUNITY, **extra):
    role = {
        'name': name,
        'display_name': name.title(),
        'level': level,
        'scope': scope,
        'permissions': list(permissions),
        'delegable_roles': list(delegable),
    }
    role.update(extra)
    return role


def make_permission(name):
    return {'name': name, 'display_name': name, 'category': name.split('.')[0]}


class TestCatalogValidation:
    """The registry refuses malformed catalogs."""

    def test_default_catalog_is_valid(self):
        registry = RoleRegistry()

        assert len(registry.all_roles()) == len(ROLE_DEFINITIONS)
        assert len(registry.all_permissions()) == len(CANONICAL_PERMISSIONS)

    def test_roles_ordered_by_level(self):
        names = [role.name for role in get_default_registry().all_roles()]

        assert names[0] == 'owner'
        assert names[-1] == 'member'

    def test_undefined_permission_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RoleRegistry(
                roles=[make_role('reader', permissions=['docs.read'])],
                permissions=[],
                templates=[],
            )
        assert 'docs.read' in str(exc_info.value)

    def test_unknown_delegable_role_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(
                roles=[make_role('lead', delegable=['ghost'])],
                permissions=[],
                templates=[],
            )

    def test_duplicate_role_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(
                roles=[make_role('twin'), make_role('twin')],
                permissions=[],
                templates=[],
            )

    def test_duplicate_permission_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(
                roles=[],
                permissions=[make_permission('docs.read'), make_permission('docs.read')],
                templates=[],
            )

    def test_unknown_scope_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(roles=[make_role('odd', scope='galaxy')], permissions=[], templates=[])

    def test_template_with_unknown_role_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(
                roles=[make_role('member')],
                permissions=[],
                templates=[{'name': 'tiny', 'recommended_roles': ['member', 'bishop']}],
            )

    def test_template_with_unknown_permission_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(
                roles=[make_role('member')],
                permissions=[],
                templates=[{'name': 'tiny', 'auto_assign_permissions': {'member': ['docs.read']}}],
            )

    def test_toggleable_permissions_must_exist(self):
        with pytest.raises(ConfigurationError):
            RoleRegistry(
                roles=[make_role('helper', toggleable_permissions=['docs.toggle'])],
                permissions=[],
                templates=[],
            )


class TestRegistryLookups:

    def test_privileged_roles(self):
        privileged = get_default_registry().privileged_role_names()

        assert privileged == {
            'owner', 'regional_admin', 'super_admin', 'church_admin',
            'lead_pastor', 'pastor', 'minister', 'staff',
        }
        assert 'member' not in privileged
        assert 'social_manager' not in privileged

    def test_privileged_permissions(self):
        registry = get_default_registry()
        privileged = registry.privileged_permission_names()

        assert 'sermons.create' in privileged
        assert 'roles.assign.all' in privileged
        assert not privileged & registry.get_role('member').permissions
        assert not privileged & registry.get_role('social_manager').permissions

    def test_grantable_permissions(self):
        registry = get_default_registry()
        grantable = registry.grantable_permissions('church_admin')

        assert registry.get_role('pastor').permissions <= grantable
        assert registry.get_toggleable_permissions('staff') <= grantable
        assert 'church.manage.single' not in grantable
        assert registry.grantable_permissions('member') == frozenset()
        assert registry.grantable_permissions('bishop') == frozenset()

    def test_role_definitions_are_immutable(self):
        role = get_default_registry().get_role('pastor')

        with pytest.raises(FrozenInstanceError):
            role.name = 'bishop'
        assert isinstance(role.permissions, frozenset)

    def test_staff_toggleable_permissions(self):
        registry = get_default_registry()

        assert registry.get_toggleable_permissions('staff') == {
            'events.create', 'comments.moderate', 'volunteer.coordinate',
        }
        assert registry.get_toggleable_permissions('member') == frozenset()
        assert registry.get_toggleable_permissions('nobody') == frozenset()

    def test_member_directory_access(self):
        access = get_default_registry().get_directory_access('member')

        assert 'staff' in access['can_view']
        assert 'private_profiles' in access['cannot_view']
        assert get_default_registry().get_directory_access('owner') is None

    def test_unknown_lookups_return_none(self):
        registry = get_default_registry()

        assert registry.get_role('bishop') is None
        assert registry.get_permission('docs.read') is None
        assert registry.get_template('mega_church') is None

    def test_unknown_permissions(self):
        unknown = get_default_registry().unknown_permissions(['sermons.create', 'docs.read', 'x.y'])

        assert unknown == ['docs.read', 'x.y']

    def test_can_delegate_uses_allow_list(self):
        lead_pastor = get_default_registry().get_role('lead_pastor')

        assert lead_pastor.can_delegate('pastor')
        # social_manager has a larger level number but is not on the list
        assert not lead_pastor.can_delegate('social_manager')


@pytest.mark.django_db
class TestInitialize:
    """Seeding the catalog into the database."""

    def test_catalog_seeded_after_migrate(self):
        assert Role.objects.count() == len(ROLE_DEFINITIONS)
        assert Permission.objects.count() == len(CANONICAL_PERMISSIONS)

        pastor = Role.objects.by_name('pastor')
        assert pastor.requires_two_factor is True
        assert pastor.get_permission_names() == get_default_registry().get_role('pastor').permissions

    def test_initialize_is_idempotent(self, registry):
        stats = registry.initialize()

        assert all(count == 0 for count in stats.values())

    def test_initialize_creates_new_entries_once(self):
        custom = RoleRegistry(
            roles=[make_role('archivist', permissions=['archive.read', 'archive.write'], level=11)],
            permissions=[make_permission('archive.read'), make_permission('archive.write')],
            templates=[],
        )

        first = custom.initialize()
        second = custom.initialize()

        assert first['permissions_created'] == 2
        assert first['roles_created'] == 1
        assert first['role_permissions_created'] == 2
        assert all(count == 0 for count in second.values())

    def test_initialize_repairs_drift(self, registry):
        pastor = Role.objects.by_name('pastor')
        stray = Permission.objects.by_name('billing.manage')
        RolePermission.objects.create(role=pastor, permission=stray)
        Role.objects.filter(pk=pastor.pk).update(display_name='Reverend')

        stats = registry.initialize()

        assert stats['role_permissions_removed'] == 1
        assert stats['roles_updated'] == 1
        pastor.refresh_from_db()
        assert pastor.display_name == 'Pastor'
        assert 'billing.manage' not in pastor.get_permission_names()
