"""
Step-up enforcement.

When a user is elevated from a role that does not require two-factor into
one that does, and has no enabled credential, the user moves from NORMAL
to PENDING_STEP_UP until enrollment completes. The role itself is granted
immediately; STEP_UP_BLOCK_UNENROLLED and STEP_UP_SUPPRESS_PRIVILEGED turn
on stricter handling. Explicit grants of permissions that only two-factor
roles carry are flagged the same way.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import StepUpRequiredError, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac.models import AuditLog, RoleAssignment
from apps.rbac.registry import RoleRegistry, get_default_registry
from apps.rbac.services import RoleAssignmentService
from apps.twofactor.models import StepUpFlag, StepUpState
from apps.twofactor.services.two_factor_service import TwoFactorService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleUpgradeResult:
    success: bool
    requires_2fa_setup: bool
    message: str = ''


@dataclass(frozen=True)
class RoleValidationResult:
    valid: bool
    requires_2fa_first: bool
    message: str = ''


@dataclass(frozen=True)
class RoleChangeResult:
    assignment: RoleAssignment
    requires_2fa_setup: bool
    message: str = ''


@dataclass(frozen=True)
class PermissionChangeResult:
    assignment: RoleAssignment
    requires_2fa_setup: bool
    message: str = ''


@dataclass(frozen=True)
class OnboardingStatus:
    needs_onboarding: bool
    role_name: Optional[str] = None
    role_display_name: Optional[str] = None
    tenant_id: Optional[str] = None


class StepUpService:
    """
    Coordinates role changes with two-factor enrollment.
    """

    def __init__(self, two_factor: Optional[TwoFactorService] = None,
                 assignments: Optional[RoleAssignmentService] = None,
                 registry: Optional[RoleRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 block_unenrolled: Optional[bool] = None):
        self.registry = registry or get_default_registry()
        self.clock = clock or timezone.now
        self.two_factor = two_factor or TwoFactorService(clock=self.clock)
        self.assignments = assignments or RoleAssignmentService(registry=self.registry, clock=self.clock)
        if block_unenrolled is None:
            block_unenrolled = getattr(settings, 'STEP_UP_BLOCK_UNENROLLED', False)
        self.block_unenrolled = block_unenrolled

    def requires_two_factor(self, role_name: Optional[str]) -> bool:
        return bool(role_name) and role_name in self.registry.privileged_role_names()

    def get_role_display_name(self, role_name: str) -> str:
        role = self.registry.get_role(role_name)
        return role.display_name if role else role_name

    def _require_known_role(self, role_name):
        if self.registry.get_role(role_name) is None:
            raise ValidationError(f"Unknown role: {role_name}", details={'role_name': role_name})

    # State

    def get_state(self, user_id) -> str:
        flag = StepUpFlag.objects.filter(user_id=user_id).first()
        return flag.state if flag else StepUpState.NORMAL

    def has_pending_step_up(self, user_id) -> bool:
        return StepUpFlag.objects.pending().filter(user_id=user_id).exists()

    def require_step_up_complete(self, user_id):
        """
        Raises:
            StepUpRequiredError: While the user still has to enroll in two-factor
        """
        if self.has_pending_step_up(user_id):
            raise StepUpRequiredError(
                "Two-factor authentication setup is required before continuing",
                details={'user_id': user_id},
            )

    def needs_onboarding(self, user_id) -> OnboardingStatus:
        """Whether the user must be sent through two-factor enrollment, and for which role."""
        flag = StepUpFlag.objects.pending().filter(user_id=user_id).first()
        if flag is None:
            return OnboardingStatus(needs_onboarding=False)
        return OnboardingStatus(
            needs_onboarding=True,
            role_name=flag.role_name,
            role_display_name=self.get_role_display_name(flag.role_name),
            tenant_id=flag.tenant_id,
        )

    # Transitions

    def validate_role_assignment(self, user_id, new_role_name: str) -> RoleValidationResult:
        """
        Pre-check before assigning a role. Never writes anything.

        Raises:
            ValidationError: Unknown role
        """
        self._require_known_role(new_role_name)

        if self.requires_two_factor(new_role_name) and not self.two_factor.is_2fa_enabled(user_id):
            return RoleValidationResult(
                valid=False,
                requires_2fa_first=True,
                message=(
                    f"The {self.get_role_display_name(new_role_name)} role requires "
                    f"two-factor authentication"
                ),
            )
        return RoleValidationResult(valid=True, requires_2fa_first=False)

    def handle_role_upgrade(self, user_id, tenant_id, old_role: Optional[str],
                            new_role: str) -> RoleUpgradeResult:
        """
        Flag the user when a role change crosses into a privileged role
        without an enabled two-factor credential. Does not revoke the role.
        """
        self._require_known_role(new_role)

        elevating = not self.requires_two_factor(old_role) and self.requires_two_factor(new_role)
        if not elevating or self.two_factor.is_2fa_enabled(user_id):
            return RoleUpgradeResult(success=True, requires_2fa_setup=False, message='Role updated')

        return self._flag_pending(
            user_id, tenant_id, new_role,
            diff={'before': {'role': old_role}, 'after': {'role': new_role}},
            message=(
                f"Two-factor authentication setup is required for the "
                f"{self.get_role_display_name(new_role)} role"
            ),
        )

    def _flag_pending(self, user_id, tenant_id, role_name, diff, message) -> RoleUpgradeResult:
        flag, _ = StepUpFlag.objects.update_or_create(
            user_id=user_id,
            defaults={
                'state': StepUpState.PENDING_STEP_UP,
                'role_name': role_name,
                'tenant_id': tenant_id or '',
                'flagged_at': self.clock(),
                'cleared_at': None,
            },
        )

        AuditLog.log_action(
            action='step_up_flagged',
            tenant_id=tenant_id,
            target_type='StepUpFlag',
            target_id=flag.id,
            diff=diff,
            metadata={'user_id': user_id},
        )
        SecurityLogger.log_step_up_flagged(user_id, tenant_id, role_name)

        return RoleUpgradeResult(success=True, requires_2fa_setup=True, message=message)

    def complete_two_factor_setup(self, user_id) -> bool:
        """
        Clear a pending step-up once enrollment has finished.

        Returns:
            True if a pending flag was cleared

        Raises:
            StepUpRequiredError: If two-factor is not enabled yet
        """
        if not self.two_factor.is_2fa_enabled(user_id):
            raise StepUpRequiredError(
                "Enable two-factor authentication before completing setup",
                details={'user_id': user_id},
            )

        now = self.clock()
        cleared = StepUpFlag.objects.pending().filter(user_id=user_id).update(
            state=StepUpState.NORMAL,
            cleared_at=now,
            updated_at=now,
        )
        if cleared:
            AuditLog.log_action(
                action='step_up_cleared',
                actor_id=user_id,
                target_type='StepUpFlag',
                metadata={'user_id': user_id},
            )
            logger.info("Step-up cleared", extra={'user_id': user_id})
        return bool(cleared)

    def change_role(self, actor_id, user_id, tenant_id, role_name: str, **options) -> RoleChangeResult:
        """
        Administrative role change with delegation and step-up checks.

        Raises:
            StepUpRequiredError: The actor has a pending step-up, or the stricter
                policy forbids giving a privileged role to an unenrolled user
            AuthorizationError: The actor may not delegate the role in this tenant
            ValidationError: Unknown role or overlay permission
        """
        self.require_step_up_complete(actor_id)
        self.assignments.ensure_can_manage_role(actor_id, tenant_id, role_name)

        if self.block_unenrolled:
            validation = self.validate_role_assignment(user_id, role_name)
            if not validation.valid:
                raise StepUpRequiredError(validation.message, details={'user_id': user_id, 'role_name': role_name})

        with transaction.atomic():
            current = self.assignments.get_user_role(user_id, tenant_id)
            old_role = current.role_name if current else None
            assignment = self.assignments.assign_role(actor_id, user_id, tenant_id, role_name, **options)
            upgrade = self.handle_role_upgrade(user_id, tenant_id, old_role, role_name)

        return RoleChangeResult(
            assignment=assignment,
            requires_2fa_setup=upgrade.requires_2fa_setup,
            message=upgrade.message,
        )

    # Overlays

    def requires_two_factor_for_permission(self, permission: str) -> bool:
        return permission in self.registry.privileged_permission_names()

    def handle_permission_grant(self, user_id, tenant_id, role_name: str,
                                permission: str) -> RoleUpgradeResult:
        """
        Flag the user when an explicit grant adds a permission that only
        two-factor roles carry and the user has no enabled credential.
        """
        if not self.requires_two_factor_for_permission(permission) or self.two_factor.is_2fa_enabled(user_id):
            return RoleUpgradeResult(success=True, requires_2fa_setup=False, message='Permission updated')

        return self._flag_pending(
            user_id, tenant_id, role_name,
            diff={'before': {'permission': None}, 'after': {'permission': permission}},
            message=f"Two-factor authentication setup is required for the {permission} permission",
        )

    def _check_grant(self, actor_id, user_id, tenant_id, permission):
        self.require_step_up_complete(actor_id)
        self.assignments.ensure_can_manage_user(actor_id, user_id, tenant_id)
        self.assignments.ensure_can_manage_permission(actor_id, tenant_id, permission)

        if (self.block_unenrolled and self.requires_two_factor_for_permission(permission)
                and not self.two_factor.is_2fa_enabled(user_id)):
            raise StepUpRequiredError(
                f"The {permission} permission requires two-factor authentication",
                details={'user_id': user_id, 'permission': permission},
            )

    def grant_permission(self, actor_id, user_id, tenant_id, permission: str) -> PermissionChangeResult:
        """
        Administrative explicit grant with delegation and step-up checks.

        The actor must be able to manage the user's role and hand out the
        permission (some role the actor may delegate carries it).

        Raises:
            StepUpRequiredError: The actor has a pending step-up, or the stricter
                policy forbids the grant to an unenrolled user
            AuthorizationError: The actor lacks authority over the user or permission
            ValidationError: Unknown permission, or the user has no role in the tenant
        """
        self._check_grant(actor_id, user_id, tenant_id, permission)

        with transaction.atomic():
            assignment = self.assignments.grant_permission(actor_id, user_id, tenant_id, permission)
            upgrade = self.handle_permission_grant(user_id, tenant_id, assignment.role.name, permission)

        return PermissionChangeResult(
            assignment=assignment,
            requires_2fa_setup=upgrade.requires_2fa_setup,
            message=upgrade.message,
        )

    def toggle_permission(self, actor_id, user_id, tenant_id, permission: str,
                          enabled: bool) -> PermissionChangeResult:
        """Administrative toggle; switching on is checked like grant_permission()."""
        if enabled:
            self._check_grant(actor_id, user_id, tenant_id, permission)
        else:
            self.require_step_up_complete(actor_id)
            self.assignments.ensure_can_manage_user(actor_id, user_id, tenant_id)

        with transaction.atomic():
            assignment = self.assignments.toggle_permission(actor_id, user_id, tenant_id, permission, enabled)
            if enabled:
                upgrade = self.handle_permission_grant(user_id, tenant_id, assignment.role.name, permission)
            else:
                upgrade = RoleUpgradeResult(success=True, requires_2fa_setup=False, message='Permission updated')

        return PermissionChangeResult(
            assignment=assignment,
            requires_2fa_setup=upgrade.requires_2fa_setup,
            message=upgrade.message,
        )

    def restrict_permission(self, actor_id, user_id, tenant_id, permission: str) -> PermissionChangeResult:
        """Administrative restriction; the actor must be able to manage the user's role."""
        self.require_step_up_complete(actor_id)
        self.assignments.ensure_can_manage_user(actor_id, user_id, tenant_id)

        assignment = self.assignments.restrict_permission(actor_id, user_id, tenant_id, permission)
        return PermissionChangeResult(assignment=assignment, requires_2fa_setup=False, message='Permission restricted')

    def revoke_role(self, actor_id, user_id, tenant_id) -> bool:
        """Administrative revocation; the actor must be able to manage the user's role."""
        self.require_step_up_complete(actor_id)
        self.assignments.ensure_can_manage_user(actor_id, user_id, tenant_id)
        return self.assignments.revoke_role(actor_id, user_id, tenant_id)

    def apply_role_template(self, actor_id, tenant_id, template_name: str) -> int:
        """
        Administrative template application. The actor must be able to
        delegate every role the template adds permissions to.

        Template permissions only extend privileged roles, whose holders
        were already flagged when the role was assigned.
        """
        self.require_step_up_complete(actor_id)
        template = self.registry.get_template(template_name)
        if template is None:
            raise ValidationError(f"Unknown role template: {template_name}")

        for role_name in sorted(template.auto_assign_permissions):
            self.assignments.ensure_can_manage_role(actor_id, tenant_id, role_name)

        return self.assignments.apply_role_template(actor_id, tenant_id, template_name)
