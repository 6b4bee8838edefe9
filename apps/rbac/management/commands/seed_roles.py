"""
Management command to seed the role and permission catalog.
"""
from django.core.management.base import BaseCommand

from apps.rbac.models import Permission, Role
from apps.rbac.registry import get_default_registry


class Command(BaseCommand):
    help = 'Seed the role and permission catalog (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--summary',
            action='store_true',
            help='Print roles with their permission counts after seeding',
        )

    def handle(self, *args, **options):
        """Create or update all catalog roles and permissions."""
        registry = get_default_registry()

        self.stdout.write('Seeding role catalog...\n')
        stats = registry.initialize()

        self.stdout.write(
            self.style.SUCCESS(
                f"✓ Permissions: {stats['permissions_created']} created, "
                f"{stats['permissions_updated']} updated"
            )
        )
        self.stdout.write(
            self.style.SUCCESS(
                f"✓ Roles: {stats['roles_created']} created, {stats['roles_updated']} updated"
            )
        )
        self.stdout.write(
            self.style.SUCCESS(
                f"✓ Role permissions: {stats['role_permissions_created']} added, "
                f"{stats['role_permissions_removed']} removed"
            )
        )

        if not options['summary']:
            return

        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Roles Summary:')
        self.stdout.write('=' * 70)

        for role in Role.objects.active().order_by('level'):
            definition = registry.get_role(role.name)
            marker = ' [2FA]' if role.requires_two_factor else ''
            self.stdout.write(
                f'  {role.level:>2}. {role.name:<16} {len(definition.permissions):>3} permissions, '
                f'delegates {len(definition.delegable_roles)} roles{marker}'
            )

        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')
