"""
Tests for the seed_roles management command.
"""
from io import StringIO

import pytest
from django.core.management import call_command

from apps.rbac.models import Role


@pytest.mark.django_db
class TestSeedRolesCommand:

    def test_reports_no_changes_on_seeded_database(self):
        out = StringIO()

        call_command('seed_roles', stdout=out)

        output = out.getvalue()
        assert 'Permissions: 0 created, 0 updated' in output
        assert 'Roles: 0 created, 0 updated' in output

    def test_restores_deleted_role_permissions(self):
        pastor = Role.objects.by_name('pastor')
        pastor.role_permissions.all().hard_delete()
        out = StringIO()

        call_command('seed_roles', stdout=out)

        assert f"Role permissions: {len(pastor.get_permission_names())} added" in out.getvalue()
        assert 'sermons.create' in pastor.get_permission_names()

    def test_summary_lists_roles(self):
        out = StringIO()

        call_command('seed_roles', '--summary', stdout=out)

        output = out.getvalue()
        assert 'Roles Summary:' in output
        assert 'church_admin' in output
        assert '[2FA]' in output
