"""
RBAC services.

Implements:
- PermissionService: permission resolution for (user, tenant)
- RoleAssignmentService: role assignment, overlays, and delegation authority
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import AuthorizationError, ConfigurationError, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac.catalog import BASELINE_ROLE, SCOPE_GLOBAL, SCOPE_MULTI_TENANT
from apps.rbac.models import AuditLog, Role, RoleAssignment
from apps.rbac.registry import PermissionDefinition, RoleDefinition, RoleRegistry, get_default_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRoleView:
    """Joined view of a user's current role inside one tenant."""
    user_id: str
    tenant_id: str
    role_name: str
    display_name: str
    level: int
    scope: str
    permissions: FrozenSet[str]
    additional_permissions: FrozenSet[str]
    restricted_permissions: FrozenSet[str]
    effective_permissions: FrozenSet[str]
    covered_tenant_ids: Tuple[str, ...]
    title: str
    department: str
    assigned_by: str
    assigned_at: datetime
    expires_at: Optional[datetime]


def effective_permissions(role: RoleDefinition, assignment: RoleAssignment) -> FrozenSet[str]:
    """(base ∪ extra) \\ deny. Restriction always wins."""
    base = role.permissions
    extra = frozenset(assignment.additional_permissions or [])
    deny = frozenset(assignment.restricted_permissions or [])
    return (base | extra) - deny


class PermissionService:
    """
    Answers "may this user do X in this tenant?".

    Checks fail closed: any error while resolving is logged and treated as
    a denial. No method here writes to the database.
    """

    def __init__(self, registry: Optional[RoleRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 suppress_pending_step_up: Optional[bool] = None):
        self.registry = registry or get_default_registry()
        self.clock = clock or timezone.now
        if suppress_pending_step_up is None:
            suppress_pending_step_up = getattr(settings, 'STEP_UP_SUPPRESS_PRIVILEGED', False)
        self.suppress_pending_step_up = suppress_pending_step_up

    def _resolve(self, user_id, tenant_id) -> FrozenSet[str]:
        assignment = RoleAssignment.objects.current(user_id, tenant_id, self.clock())
        if assignment is None:
            return frozenset()

        role = self.registry.get_role(assignment.role.name)
        if role is None:
            raise LookupError(f"Assignment {assignment.id} references unknown role {assignment.role.name!r}")

        permissions = effective_permissions(role, assignment)

        if self.suppress_pending_step_up and self._pending_step_up(user_id):
            baseline = self.registry.get_role(BASELINE_ROLE)
            allowed = baseline.permissions if baseline else frozenset()
            if not role.requires_two_factor:
                allowed = allowed | role.permissions
            permissions = permissions & allowed

        return permissions

    def _pending_step_up(self, user_id) -> bool:
        from apps.twofactor.models import StepUpFlag
        return StepUpFlag.objects.pending().filter(user_id=user_id).exists()

    def resolve_permissions(self, user_id, tenant_id) -> FrozenSet[str]:
        """Effective permission set; empty when nothing can be resolved."""
        try:
            return self._resolve(user_id, tenant_id)
        except Exception as e:
            logger.error(
                f"Permission resolution failed: {str(e)}",
                extra={'user_id': user_id, 'tenant_id': tenant_id},
                exc_info=True
            )
            return frozenset()

    def has_permission(self, user_id, tenant_id, permission: str) -> bool:
        return permission in self.resolve_permissions(user_id, tenant_id)

    def has_all_permissions(self, user_id, tenant_id, permissions: Iterable[str]) -> bool:
        return frozenset(permissions) <= self.resolve_permissions(user_id, tenant_id)

    def has_any_permission(self, user_id, tenant_id, permissions: Iterable[str]) -> bool:
        return bool(frozenset(permissions) & self.resolve_permissions(user_id, tenant_id))


class RoleAssignmentService:
    """
    Service for role assignment and delegation checks.

    The delegable-role allow-list of the actor's role is the only source of
    delegation authority; role levels are for display.
    """

    def __init__(self, registry: Optional[RoleRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry or get_default_registry()
        self.clock = clock or timezone.now

    # Lookups

    def get_all_roles(self) -> List[RoleDefinition]:
        return self.registry.all_roles()

    def get_all_permissions(self) -> List[PermissionDefinition]:
        return self.registry.all_permissions()

    def get_user_role(self, user_id, tenant_id) -> Optional[UserRoleView]:
        """
        Current role of a user in a tenant, joined with its definition.

        Returns None when the user has no active, unexpired assignment.
        """
        assignment = RoleAssignment.objects.current(user_id, tenant_id, self.clock())
        if assignment is None:
            return None

        role = self.registry.get_role(assignment.role.name)
        if role is None:
            logger.error(
                "Assignment references a role missing from the registry",
                extra={'assignment_id': str(assignment.id), 'role_name': assignment.role.name}
            )
            return None

        return UserRoleView(
            user_id=assignment.user_id,
            tenant_id=assignment.tenant_id,
            role_name=role.name,
            display_name=role.display_name,
            level=role.level,
            scope=role.scope,
            permissions=role.permissions,
            additional_permissions=frozenset(assignment.additional_permissions or []),
            restricted_permissions=frozenset(assignment.restricted_permissions or []),
            effective_permissions=effective_permissions(role, assignment),
            covered_tenant_ids=tuple(assignment.covered_tenant_ids or []),
            title=assignment.title,
            department=assignment.department,
            assigned_by=assignment.assigned_by,
            assigned_at=assignment.assigned_at,
            expires_at=assignment.expires_at,
        )

    # Delegation

    def _authority_check(self, actor_id, tenant_id, allows) -> Tuple[bool, str]:
        """
        Returns (allowed, reason).

        The actor needs an active, unexpired assignment with authority over
        `tenant_id` whose role satisfies `allows`. Authority is a direct
        assignment in the tenant, a global-scope assignment anywhere, or a
        multi-tenant assignment covering the tenant.
        """
        assignments = RoleAssignment.objects.active(self.clock()).filter(
            user_id=actor_id
        ).select_related('role')

        has_authority = False
        for assignment in assignments:
            role = self.registry.get_role(assignment.role.name)
            if role is None:
                continue
            if not self._has_tenant_authority(assignment, role, tenant_id):
                continue
            has_authority = True
            if allows(role):
                return True, 'allowed'

        return False, 'not_delegable' if has_authority else 'no_tenant_authority'

    def _delegation_check(self, actor_id, tenant_id, role_name) -> Tuple[bool, str]:
        return self._authority_check(actor_id, tenant_id, lambda role: role.can_delegate(role_name))

    def _permission_check(self, actor_id, tenant_id, permission) -> Tuple[bool, str]:
        return self._authority_check(
            actor_id, tenant_id,
            lambda role: permission in self.registry.grantable_permissions(role.name),
        )

    def _user_check(self, actor_id, user_id, tenant_id) -> Tuple[bool, str]:
        # Expired rows still count: the actor may need to clean them up
        target = RoleAssignment.objects.active().filter(
            user_id=user_id, tenant_id=tenant_id
        ).select_related('role').first()
        if target is None:
            return self._authority_check(actor_id, tenant_id, lambda role: True)
        return self._delegation_check(actor_id, tenant_id, target.role.name)

    def _checked(self, check, actor_id, tenant_id, subject) -> Tuple[bool, str]:
        try:
            return check()
        except Exception as e:
            logger.error(
                f"Delegation check failed: {str(e)}",
                extra={'actor_id': actor_id, 'tenant_id': tenant_id, 'subject': subject},
                exc_info=True
            )
            return False, 'lookup_failed'

    def _deny(self, actor_id, tenant_id, subject, reason, message):
        SecurityLogger.log_delegation_denied(actor_id, tenant_id, subject, reason)
        raise AuthorizationError(message, details={'subject': subject, 'tenant_id': tenant_id, 'reason': reason})

    @staticmethod
    def _has_tenant_authority(assignment, role, tenant_id) -> bool:
        if assignment.tenant_id == tenant_id:
            return True
        if role.scope == SCOPE_GLOBAL:
            return True
        if role.scope == SCOPE_MULTI_TENANT:
            return tenant_id in (assignment.covered_tenant_ids or [])
        return False

    def can_manage_role(self, actor_id, tenant_id, role_name: str) -> bool:
        allowed, _ = self._checked(
            lambda: self._delegation_check(actor_id, tenant_id, role_name), actor_id, tenant_id, role_name
        )
        return allowed

    def ensure_can_manage_role(self, actor_id, tenant_id, role_name: str):
        """
        Raises:
            AuthorizationError: If the actor may not grant `role_name` in the tenant
        """
        allowed, reason = self._checked(
            lambda: self._delegation_check(actor_id, tenant_id, role_name), actor_id, tenant_id, role_name
        )
        if not allowed:
            self._deny(actor_id, tenant_id, role_name, reason, f"Not authorized to assign role {role_name}")

    def can_manage_permission(self, actor_id, tenant_id, permission: str) -> bool:
        """
        True iff the actor has authority over the tenant and one of the roles
        it may delegate carries `permission`, as a base or toggleable permission.
        """
        allowed, _ = self._checked(
            lambda: self._permission_check(actor_id, tenant_id, permission), actor_id, tenant_id, permission
        )
        return allowed

    def ensure_can_manage_permission(self, actor_id, tenant_id, permission: str):
        """
        Raises:
            AuthorizationError: If the actor may not hand out `permission` in the tenant
        """
        allowed, reason = self._checked(
            lambda: self._permission_check(actor_id, tenant_id, permission), actor_id, tenant_id, permission
        )
        if not allowed:
            self._deny(actor_id, tenant_id, permission, reason, f"Not authorized to grant permission {permission}")

    def can_manage_user(self, actor_id, user_id, tenant_id) -> bool:
        """
        True iff the actor could delegate the user's current role in the
        tenant; for a user without a role, any authority over the tenant.
        """
        allowed, _ = self._checked(
            lambda: self._user_check(actor_id, user_id, tenant_id), actor_id, tenant_id, user_id
        )
        return allowed

    def ensure_can_manage_user(self, actor_id, user_id, tenant_id):
        """
        Raises:
            AuthorizationError: If the actor may not change the user's role or overlays
        """
        allowed, reason = self._checked(
            lambda: self._user_check(actor_id, user_id, tenant_id), actor_id, tenant_id, user_id
        )
        if not allowed:
            self._deny(actor_id, tenant_id, user_id, reason, "Not authorized to manage this user's role")

    # Assignment

    def _require_role(self, role_name) -> RoleDefinition:
        role = self.registry.get_role(role_name)
        if role is None:
            raise ValidationError(f"Unknown role: {role_name}", details={'role_name': role_name})
        return role

    def _require_permissions(self, names):
        unknown = self.registry.unknown_permissions(names)
        if unknown:
            raise ValidationError(
                f"Unknown permissions: {', '.join(unknown)}",
                details={'permissions': unknown},
            )

    def _role_row(self, role_name) -> Role:
        role = Role.objects.by_name(role_name)
        if role is None:
            raise ConfigurationError(
                f"Role {role_name} is not in the database; run the seed_roles command"
            )
        return role

    def assign_role(self, actor_id, user_id, tenant_id, role_name: str, *,
                    title=None, department=None, additional_permissions=None,
                    restricted_permissions=None, covered_tenant_ids=None,
                    expires_at=None) -> RoleAssignment:
        """
        Give a user a role in a tenant.

        Re-assignment updates the single active row in place (role, metadata,
        overlays, expiry). Delegation authority is checked separately with
        can_manage_role().

        Raises:
            ValidationError: Unknown role or overlay permission name
        """
        self._require_role(role_name)
        additional = sorted(set(additional_permissions or []))
        restricted = sorted(set(restricted_permissions or []))
        self._require_permissions(additional + restricted)
        role_row = self._role_row(role_name)

        values = {
            'role': role_row,
            'title': title or '',
            'department': department or '',
            'additional_permissions': additional,
            'restricted_permissions': restricted,
            'covered_tenant_ids': sorted(set(covered_tenant_ids or [])),
            'assigned_by': actor_id or '',
            'assigned_at': self.clock(),
            'expires_at': expires_at,
        }

        try:
            assignment, previous_role = self._upsert_assignment(user_id, tenant_id, values)
        except IntegrityError:
            # A concurrent insert won the unique constraint; retry as an update
            logger.info(
                "Concurrent role assignment detected, retrying as update",
                extra={'user_id': user_id, 'tenant_id': tenant_id}
            )
            assignment, previous_role = self._upsert_assignment(user_id, tenant_id, values)

        AuditLog.log_action(
            action='role_assigned',
            actor_id=actor_id,
            tenant_id=tenant_id,
            target_type='RoleAssignment',
            target_id=assignment.id,
            diff={'before': {'role': previous_role}, 'after': {'role': role_name}},
            metadata={'user_id': user_id},
        )

        logger.info(
            f"Role {role_name} assigned",
            extra={'actor_id': actor_id, 'user_id': user_id, 'tenant_id': tenant_id,
                   'role_name': role_name, 'previous_role': previous_role}
        )
        return assignment

    def _upsert_assignment(self, user_id, tenant_id, values):
        with transaction.atomic():
            existing = RoleAssignment.objects.select_for_update().filter(
                user_id=user_id, tenant_id=tenant_id, is_active=True
            ).select_related('role').first()

            if existing is None:
                assignment = RoleAssignment.objects.create(
                    user_id=user_id, tenant_id=tenant_id, is_active=True, **values
                )
                return assignment, None

            previous_role = existing.role.name
            for name, value in values.items():
                setattr(existing, name, value)
            existing.save()
            return existing, previous_role

    def revoke_role(self, actor_id, user_id, tenant_id) -> bool:
        """
        Deactivate the user's active assignment in the tenant.

        Returns:
            True if an assignment was deactivated
        """
        with transaction.atomic():
            assignment = RoleAssignment.objects.select_for_update().filter(
                user_id=user_id, tenant_id=tenant_id, is_active=True
            ).select_related('role').first()
            if assignment is None:
                return False
            assignment.is_active = False
            assignment.save(update_fields=['is_active', 'updated_at'])

        AuditLog.log_action(
            action='role_revoked',
            actor_id=actor_id,
            tenant_id=tenant_id,
            target_type='RoleAssignment',
            target_id=assignment.id,
            diff={'before': {'role': assignment.role.name}, 'after': {'role': None}},
            metadata={'user_id': user_id},
        )
        return True

    # Overlays
    #
    # Like assign_role, these only write. Authority is checked with
    # ensure_can_manage_user/ensure_can_manage_permission; StepUpService
    # runs both checks before calling them.

    def _edit_overlays(self, actor_id, user_id, tenant_id, action, edit):
        with transaction.atomic():
            assignment = RoleAssignment.objects.select_for_update().filter(
                user_id=user_id, tenant_id=tenant_id, is_active=True
            ).select_related('role').first()
            if assignment is None:
                raise ValidationError(
                    "User has no active role in this tenant",
                    details={'user_id': user_id, 'tenant_id': tenant_id},
                )

            before = {
                'additional_permissions': list(assignment.additional_permissions),
                'restricted_permissions': list(assignment.restricted_permissions),
            }
            additional = set(assignment.additional_permissions)
            restricted = set(assignment.restricted_permissions)
            edit(assignment, additional, restricted)
            assignment.additional_permissions = sorted(additional)
            assignment.restricted_permissions = sorted(restricted)
            assignment.save(update_fields=['additional_permissions', 'restricted_permissions', 'updated_at'])

        AuditLog.log_action(
            action=action,
            actor_id=actor_id,
            tenant_id=tenant_id,
            target_type='RoleAssignment',
            target_id=assignment.id,
            diff={
                'before': before,
                'after': {
                    'additional_permissions': assignment.additional_permissions,
                    'restricted_permissions': assignment.restricted_permissions,
                },
            },
            metadata={'user_id': user_id},
        )
        return assignment

    def grant_permission(self, actor_id, user_id, tenant_id, permission: str) -> RoleAssignment:
        """Add an explicit grant, lifting any restriction on the same permission."""
        self._require_permissions([permission])

        def edit(assignment, additional, restricted):
            additional.add(permission)
            restricted.discard(permission)

        return self._edit_overlays(actor_id, user_id, tenant_id, 'permission_granted', edit)

    def restrict_permission(self, actor_id, user_id, tenant_id, permission: str) -> RoleAssignment:
        """Add an explicit restriction. Restrictions win over the role and grants."""
        self._require_permissions([permission])

        def edit(assignment, additional, restricted):
            restricted.add(permission)
            additional.discard(permission)

        return self._edit_overlays(actor_id, user_id, tenant_id, 'permission_restricted', edit)

    def toggle_permission(self, actor_id, user_id, tenant_id, permission: str,
                          enabled: bool) -> RoleAssignment:
        """
        Switch one of the role's toggleable permissions on or off.

        Raises:
            ValidationError: If the permission is not toggleable for the user's role
        """
        def edit(assignment, additional, restricted):
            toggleable = self.registry.get_toggleable_permissions(assignment.role.name)
            if permission not in toggleable:
                raise ValidationError(
                    f"Permission {permission} is not toggleable for role {assignment.role.name}",
                    details={'permission': permission, 'role_name': assignment.role.name},
                )
            if enabled:
                additional.add(permission)
            else:
                additional.discard(permission)

        action = 'permission_toggled_on' if enabled else 'permission_toggled_off'
        return self._edit_overlays(actor_id, user_id, tenant_id, action, edit)

    def apply_role_template(self, actor_id, tenant_id, template_name: str) -> int:
        """
        Add a template's auto-assigned permissions to the active assignments
        of the matching roles in a tenant.

        Returns:
            Number of assignments changed
        """
        template = self.registry.get_template(template_name)
        if template is None:
            raise ValidationError(f"Unknown role template: {template_name}")

        changed = 0
        with transaction.atomic():
            for role_name, permissions in template.auto_assign_permissions.items():
                assignments = RoleAssignment.objects.select_for_update().filter(
                    tenant_id=tenant_id, is_active=True, role__name=role_name
                )
                for assignment in assignments:
                    current = set(assignment.additional_permissions)
                    if permissions <= current:
                        continue
                    assignment.additional_permissions = sorted(current | permissions)
                    assignment.save(update_fields=['additional_permissions', 'updated_at'])
                    changed += 1

        AuditLog.log_action(
            action='role_template_applied',
            actor_id=actor_id,
            tenant_id=tenant_id,
            target_type='RoleTemplate',
            target_id=template_name,
            metadata={'assignments_changed': changed},
        )
        return changed
