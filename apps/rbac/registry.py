"""
In-memory role and permission registry.

The registry is built once from a catalog, validated at construction and
read-only afterwards, so concurrent readers need no locking.
initialize() mirrors the catalog into the roles/permissions tables.
"""
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple

from django.db import transaction

from apps.core.exceptions import ConfigurationError
from apps.rbac import catalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionDefinition:
    name: str
    display_name: str
    category: str
    description: str = ''


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    display_name: str
    description: str
    level: int
    scope: str
    permissions: FrozenSet[str]
    delegable_roles: FrozenSet[str]
    toggleable_permissions: FrozenSet[str] = frozenset()
    directory_access: Optional[Mapping[str, Tuple[str, ...]]] = field(default=None, compare=False)
    requires_two_factor: bool = False

    def can_delegate(self, role_name: str) -> bool:
        return role_name in self.delegable_roles


@dataclass(frozen=True)
class RoleTemplate:
    name: str
    display_name: str
    description: str
    recommended_roles: Tuple[str, ...]
    auto_assign_permissions: Mapping[str, FrozenSet[str]] = field(compare=False)


class RoleRegistry:
    """
    Validated, immutable view of the role catalog.

    Raises ConfigurationError for a malformed catalog: duplicate names,
    a role referencing a permission that is not defined, a delegable role
    that does not exist, an unknown scope, or a template naming unknown
    roles or permissions.
    """

    def __init__(self, roles: Optional[Iterable[dict]] = None,
                 permissions: Optional[Iterable[dict]] = None,
                 templates: Optional[Iterable[dict]] = None):
        roles = catalog.ROLE_DEFINITIONS if roles is None else list(roles)
        permissions = catalog.CANONICAL_PERMISSIONS if permissions is None else list(permissions)
        templates = catalog.ROLE_TEMPLATES if templates is None else list(templates)

        self._permissions = MappingProxyType(self._build_permissions(permissions))
        self._roles = MappingProxyType(self._build_roles(roles))
        self._templates = MappingProxyType(self._build_templates(templates))

    def _build_permissions(self, entries):
        built = {}
        for entry in entries:
            name = entry['name']
            if name in built:
                raise ConfigurationError(f"Duplicate permission in catalog: {name}")
            built[name] = PermissionDefinition(
                name=name,
                display_name=entry.get('display_name', name),
                category=entry.get('category') or name.split('.', 1)[0],
                description=entry.get('description', ''),
            )
        return built

    def _build_roles(self, entries):
        built = {}
        for entry in entries:
            name = entry['name']
            if name in built:
                raise ConfigurationError(f"Duplicate role in catalog: {name}")
            if entry['scope'] not in catalog.SCOPES:
                raise ConfigurationError(
                    f"Role {name} has unknown scope {entry['scope']!r}",
                    details={'role': name, 'scope': entry['scope']},
                )

            permissions = frozenset(entry.get('permissions', []))
            toggleable = frozenset(entry.get('toggleable_permissions', []))
            missing = (permissions | toggleable) - set(self._permissions)
            if missing:
                raise ConfigurationError(
                    f"Role {name} references undefined permissions: {', '.join(sorted(missing))}",
                    details={'role': name, 'missing': sorted(missing)},
                )

            directory_access = entry.get('directory_access')
            if directory_access is not None:
                directory_access = MappingProxyType(
                    {key: tuple(value) for key, value in directory_access.items()}
                )

            built[name] = RoleDefinition(
                name=name,
                display_name=entry.get('display_name', name),
                description=entry.get('description', ''),
                level=entry['level'],
                scope=entry['scope'],
                permissions=permissions,
                delegable_roles=frozenset(entry.get('delegable_roles', [])),
                toggleable_permissions=toggleable,
                directory_access=directory_access,
                requires_two_factor=bool(entry.get('requires_two_factor', False)),
            )

        # Delegable roles can only be checked once every role is known
        for role in built.values():
            unknown = role.delegable_roles - set(built)
            if unknown:
                raise ConfigurationError(
                    f"Role {role.name} delegates unknown roles: {', '.join(sorted(unknown))}",
                    details={'role': role.name, 'unknown': sorted(unknown)},
                )
        return built

    def _build_templates(self, entries):
        built = {}
        for entry in entries:
            name = entry['name']
            if name in built:
                raise ConfigurationError(f"Duplicate role template in catalog: {name}")

            recommended = tuple(entry.get('recommended_roles', []))
            auto_assign = {
                role_name: frozenset(perms)
                for role_name, perms in entry.get('auto_assign_permissions', {}).items()
            }

            unknown_roles = (set(recommended) | set(auto_assign)) - set(self._roles)
            if unknown_roles:
                raise ConfigurationError(
                    f"Template {name} names unknown roles: {', '.join(sorted(unknown_roles))}"
                )
            unknown_perms = set().union(*auto_assign.values()) - set(self._permissions)
            if unknown_perms:
                raise ConfigurationError(
                    f"Template {name} names undefined permissions: {', '.join(sorted(unknown_perms))}"
                )

            built[name] = RoleTemplate(
                name=name,
                display_name=entry.get('display_name', name),
                description=entry.get('description', ''),
                recommended_roles=recommended,
                auto_assign_permissions=MappingProxyType(auto_assign),
            )
        return built

    # Lookups

    def get_role(self, name: str) -> Optional[RoleDefinition]:
        return self._roles.get(name)

    def get_permission(self, name: str) -> Optional[PermissionDefinition]:
        return self._permissions.get(name)

    def get_template(self, name: str) -> Optional[RoleTemplate]:
        return self._templates.get(name)

    def all_roles(self) -> List[RoleDefinition]:
        """Roles ordered by level, most senior first."""
        return sorted(self._roles.values(), key=lambda role: (role.level, role.name))

    def all_permissions(self) -> List[PermissionDefinition]:
        return sorted(self._permissions.values(), key=lambda perm: (perm.category, perm.name))

    def privileged_role_names(self) -> FrozenSet[str]:
        """Roles whose capability only takes full effect after two-factor enrollment."""
        return frozenset(role.name for role in self._roles.values() if role.requires_two_factor)

    def privileged_permission_names(self) -> FrozenSet[str]:
        """Permissions that no role without two-factor carries, even as a toggle."""
        unprivileged = set()
        for role in self._roles.values():
            if not role.requires_two_factor:
                unprivileged |= role.permissions | role.toggleable_permissions
        return frozenset(self._permissions) - unprivileged

    def grantable_permissions(self, role_name: str) -> FrozenSet[str]:
        """
        Permissions a holder of `role_name` may hand out one at a time:
        those carried, base or toggleable, by a role it may delegate.
        """
        role = self.get_role(role_name)
        if role is None:
            return frozenset()
        granted = set()
        for delegable_name in role.delegable_roles:
            delegable = self.get_role(delegable_name)
            if delegable is not None:
                granted |= delegable.permissions | delegable.toggleable_permissions
        return frozenset(granted)

    def get_toggleable_permissions(self, role_name: str) -> FrozenSet[str]:
        role = self.get_role(role_name)
        return role.toggleable_permissions if role else frozenset()

    def get_directory_access(self, role_name: str):
        role = self.get_role(role_name)
        return role.directory_access if role else None

    def unknown_permissions(self, names: Iterable[str]) -> List[str]:
        return sorted(set(names) - set(self._permissions))

    # Persistence

    def initialize(self):
        """
        Upsert the catalog into the database.

        Idempotent: rows already matching the catalog are left untouched,
        so a second run reports zero changes.

        Returns:
            dict with created/updated counts
        """
        from apps.rbac.models import Permission, Role, RolePermission

        stats = {
            'permissions_created': 0,
            'permissions_updated': 0,
            'roles_created': 0,
            'roles_updated': 0,
            'role_permissions_created': 0,
            'role_permissions_removed': 0,
        }

        with transaction.atomic():
            permission_rows = {}
            for perm in self._permissions.values():
                row, outcome = _upsert(Permission, {'name': perm.name}, {
                    'display_name': perm.display_name,
                    'category': perm.category,
                    'description': perm.description,
                    'is_active': True,
                })
                permission_rows[perm.name] = row
                if outcome:
                    stats[f'permissions_{outcome}'] += 1

            for role in self._roles.values():
                row, outcome = _upsert(Role, {'name': role.name}, {
                    'display_name': role.display_name,
                    'description': role.description,
                    'level': role.level,
                    'scope': role.scope,
                    'delegable_roles': sorted(role.delegable_roles),
                    'toggleable_permissions': sorted(role.toggleable_permissions),
                    'directory_access': (
                        {key: list(value) for key, value in role.directory_access.items()}
                        if role.directory_access is not None else None
                    ),
                    'requires_two_factor': role.requires_two_factor,
                    'is_active': True,
                })
                if outcome:
                    stats[f'roles_{outcome}'] += 1

                existing = set(
                    RolePermission.objects.filter(role=row).values_list('permission__name', flat=True)
                )
                for perm_name in sorted(role.permissions - existing):
                    RolePermission.objects.create(role=row, permission=permission_rows[perm_name])
                    stats['role_permissions_created'] += 1

                stale = existing - role.permissions
                if stale:
                    stats['role_permissions_removed'] += RolePermission.objects.filter(
                        role=row, permission__name__in=stale
                    ).hard_delete()[0]

        logger.info("Role catalog initialized", extra=stats)
        return stats


def _upsert(model, lookup, values):
    """
    Insert or update a row, writing only when something differs.

    Returns (instance, 'created' | 'updated' | None).
    """
    instance = model.objects.filter(**lookup).first()
    if instance is None:
        return model.objects.create(**lookup, **values), 'created'

    changed = [name for name, value in values.items() if getattr(instance, name) != value]
    if not changed:
        return instance, None

    for name in changed:
        setattr(instance, name, values[name])
    instance.save(update_fields=changed + ['updated_at'])
    return instance, 'updated'


@lru_cache(maxsize=1)
def get_default_registry() -> RoleRegistry:
    """Process-wide registry built from the static catalog."""
    return RoleRegistry()
