"""
RBAC models for multi-tenant church access control.

Implements:
- Permission (global canonical permissions)
- Role (global role definitions mirrored from the catalog)
- RolePermission (maps permissions to roles)
- RoleAssignment (one active role per user per tenant, with overlays)
- AuditLog (audit trail of role and credential changes)

User and tenant identities belong to the surrounding application; they
are stored here as opaque string ids.
"""
import logging

from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet

logger = logging.getLogger(__name__)


class PermissionManager(BaseModelManager):
    """Manager for Permission queries."""

    def by_name(self, name):
        """Find permission by name."""
        return self.filter(name=name).first()


class Permission(BaseModel):
    """
    Global permission definitions, shared across all tenants.

    Seeded from the static catalog; never edited at runtime.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Namespaced permission name (e.g., 'content.approve.church')"
    )
    display_name = models.CharField(
        max_length=255,
        help_text="Human-readable label (e.g., 'Church Content Approval')"
    )
    category = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Permission category (e.g., 'content', 'prayers', 'system')"
    )
    description = models.TextField(
        blank=True,
        help_text="Detailed description of what this permission grants"
    )
    is_active = models.BooleanField(default=True)

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'name']
        indexes = [
            models.Index(fields=['category', 'name']),
        ]

    def __str__(self):
        return f"{self.name} - {self.display_name}"


class RoleManager(BaseModelManager):
    """Manager for Role queries."""

    def by_name(self, name):
        """Find role by name."""
        return self.filter(name=name).first()

    def active(self):
        return self.filter(is_active=True)


class Role(BaseModel):
    """
    Role definitions mirrored from the catalog.

    Roles are global: the same `pastor` role is assigned in every tenant,
    and what it grants is identical everywhere. Per-tenant differences live
    on RoleAssignment overlays.
    """

    name = models.CharField(
        max_length=50,
        unique=True,
        help_text="Role name (e.g., 'church_admin', 'pastor')"
    )
    display_name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    level = models.PositiveSmallIntegerField(
        help_text="Display ordering only; never consulted for delegation"
    )
    scope = models.CharField(
        max_length=20,
        help_text="Scope category (global, multi-tenant, single-tenant, sub-unit, support, community)"
    )
    permissions = models.ManyToManyField(
        Permission,
        through='RolePermission',
        related_name='roles',
    )
    delegable_roles = models.JSONField(
        default=list,
        blank=True,
        help_text="Role names this role may grant to others"
    )
    toggleable_permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Optional permissions that can be switched on per assignment"
    )
    directory_access = models.JSONField(
        null=True,
        blank=True,
        help_text="Member directory visibility policy"
    )
    requires_two_factor = models.BooleanField(
        default=False,
        help_text="Whether holders must complete two-factor enrollment"
    )
    is_active = models.BooleanField(default=True)

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['level', 'name']

    def __str__(self):
        return self.display_name or self.name

    def get_permission_names(self):
        """Names of all permissions granted by this role."""
        return set(self.role_permissions.values_list('permission__name', flat=True))


class RolePermission(BaseModel):
    """
    Maps permissions to roles.

    Defines which permissions are granted by each role.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Permission being granted"
    )

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class RoleAssignmentQuerySet(BaseModelQuerySet):

    def delete(self):
        """Soft delete and deactivate, releasing the active (user, tenant) slot."""
        return self.filter(deleted_at__isnull=True).update(deleted_at=timezone.now(), is_active=False)


class RoleAssignmentManager(BaseModelManager.from_queryset(RoleAssignmentQuerySet)):
    """Manager for RoleAssignment queries with tenant scoping."""

    def active(self, now=None):
        """
        Active assignments; with `now`, also unexpired ones only.
        """
        qs = self.filter(is_active=True)
        if now is not None:
            qs = qs.filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
        return qs

    def for_tenant(self, tenant_id):
        return self.filter(tenant_id=tenant_id)

    def current(self, user_id, tenant_id, now):
        """The single active, unexpired assignment for (user, tenant), or None."""
        return self.active(now).filter(
            user_id=user_id, tenant_id=tenant_id
        ).select_related('role').first()


class RoleAssignment(BaseModel):
    """
    Binds one user to one role inside one tenant.

    At most one active row exists per (user_id, tenant_id). Revocation sets
    is_active=False; rows are never removed so the history is preserved.
    """

    user_id = models.CharField(max_length=64, db_index=True)
    tenant_id = models.CharField(max_length=64, db_index=True)
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='assignments',
    )

    title = models.CharField(max_length=100, blank=True)
    department = models.CharField(max_length=100, blank=True)

    additional_permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Explicit grants beyond the role default"
    )
    restricted_permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Explicit revocations; always win over grants"
    )
    covered_tenant_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="Tenants a multi-tenant role has authority over"
    )

    assigned_by = models.CharField(max_length=64, blank=True)
    assigned_at = models.DateTimeField()
    expires_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)

    objects = RoleAssignmentManager()
    objects_with_deleted = models.Manager.from_queryset(RoleAssignmentQuerySet)()

    class Meta:
        db_table = 'role_assignments'
        ordering = ['tenant_id', 'user_id', '-assigned_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user_id', 'tenant_id'],
                condition=Q(is_active=True),
                name='uniq_active_assignment_per_user_tenant',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant_id', 'is_active']),
            models.Index(fields=['user_id', 'is_active']),
        ]

    def __str__(self):
        return f"{self.user_id}@{self.tenant_id} -> {self.role.name}"

    def delete(self, using=None, keep_parents=False):
        """Soft delete; a deleted assignment is never active."""
        self.is_active = False
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['is_active', 'deleted_at', 'updated_at'])


class AuditLogManager(BaseModelManager):
    """Manager for AuditLog queries with tenant scoping."""

    def for_tenant(self, tenant_id):
        """Get audit logs for a specific tenant."""
        return self.filter(tenant_id=tenant_id)

    def by_action(self, action):
        """Get audit logs for a specific action."""
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        """Get audit logs for a specific target type and optionally target ID."""
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for role assignments, overlay changes, two-factor
    credential changes, and step-up flags.
    """

    tenant_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Tenant this action belongs to (blank for user-level actions)"
    )
    actor_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="User who performed the action (blank for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'role_assigned', 'two_factor_enabled')"
    )
    target_type = models.CharField(max_length=50, blank=True)
    target_id = models.CharField(max_length=64, blank=True)
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes in JSON format"
    )
    metadata = models.JSONField(default=dict, blank=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant_id', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        return f"{self.tenant_id or 'user'} - {self.actor_id or 'system'} - {self.action}"

    @classmethod
    def log_action(cls, action, actor_id=None, tenant_id=None, target_type='',
                   target_id=None, diff=None, metadata=None):
        """
        Convenience method to create an audit log entry.

        Returns:
            AuditLog instance, or None if the entry could not be written
        """
        try:
            with transaction.atomic():
                return cls.objects.create(
                    action=action,
                    actor_id=actor_id or '',
                    tenant_id=tenant_id or '',
                    target_type=target_type,
                    target_id=str(target_id) if target_id else '',
                    diff=diff or {},
                    metadata=metadata or {},
                )
        except Exception as e:
            # Audit logging must not break the main operation
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'tenant_id': tenant_id},
                exc_info=True
            )
            return None
