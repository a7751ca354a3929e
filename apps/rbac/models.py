"""
RBAC models for the role-permission registry.

Implements:
- Permission (named atomic capability, e.g. 'edit users')
- Role (named bundle of permissions)
- RolePermission (maps permissions to roles)

Roles and permissions are seeded at bootstrap and only read by the
account management core.
"""
from django.db import models
from apps.core.models import BaseModel


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_name(self, name):
        """Find permission by name."""
        return self.filter(name=name).first()

    def get_or_create_permission(self, name, description=''):
        """Get or create permission (idempotent)."""
        return self.get_or_create(name=name, defaults={'description': description})


class Permission(BaseModel):
    """
    Global permission definitions.

    Canonical permissions are seeded during deployment and define
    the available user-management capabilities.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique permission name (e.g., 'edit users')"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission grants"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['name']

    def __str__(self):
        return self.name


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def by_name(self, name):
        """Find role by name."""
        return self.filter(name=name).first()

    def get_or_create_role(self, name, description=''):
        """Get or create role (idempotent)."""
        return self.get_or_create(name=name, defaults={'description': description})


class Role(BaseModel):
    """
    Named bundle of permissions assignable to accounts.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Role name (e.g., 'admin', 'manager')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    permissions = models.ManyToManyField(
        Permission,
        through='RolePermission',
        related_name='roles',
        blank=True,
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']

    def __str__(self):
        return self.name

    def permission_names(self):
        """Names of all permissions granted by this role."""
        return set(self.permissions.values_list('name', flat=True))

    def grant(self, *permissions):
        """Grant permissions to this role (idempotent)."""
        for permission in permissions:
            RolePermission.objects.get_or_create(role=self, permission=permission)


class RolePermission(BaseModel):
    """
    Maps permissions to roles.
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
        ordering = ['role', 'permission']
        constraints = [
            models.UniqueConstraint(fields=['role', 'permission'], name='uniq_role_permission'),
        ]

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"
