"""
Role-permission registry.

Read side of the RBAC model: resolves the permission set an account holds
through its roles. Lookups for unknown roles are permissive misses (empty
result or None), never errors.
"""
import logging
from typing import Optional, Set, List

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ValidationError

from apps.rbac.models import Permission, Role

logger = logging.getLogger(__name__)


class RolePermissionRegistry:
    """
    Registry for roles, permissions and their resolution for an account.

    Resolved permission sets are cached per account; the account store
    invalidates the entry on every role mutation so reads after a write
    always see the new set.
    """

    CACHE_KEY = "permissions:account:{account_id}"

    @classmethod
    def _cache_key(cls, account_id) -> str:
        return cls.CACHE_KEY.format(account_id=account_id)

    @classmethod
    def _ttl(cls) -> int:
        return getattr(settings, 'PERMISSION_CACHE_TTL', 300)

    @classmethod
    def resolve_permissions(cls, account) -> Set[str]:
        """
        Resolve the union of permissions granted by all roles of an account.

        Args:
            account: Account instance

        Returns:
            Set of permission names (e.g., {'view users', 'edit users'})
        """
        cache_key = cls._cache_key(account.id)
        cached = cache.get(cache_key)
        if cached is not None:
            return set(cached)

        permissions = set(
            Permission.objects.filter(
                role_permissions__role__account_roles__account_id=account.id
            ).values_list('name', flat=True).distinct()
        )

        cache.set(cache_key, sorted(permissions), cls._ttl())
        return permissions

    @classmethod
    def invalidate(cls, account_id):
        """Drop the cached permission set for an account."""
        cache.delete(cls._cache_key(account_id))

    @classmethod
    def role_exists(cls, name: str) -> bool:
        return Role.objects.filter(name=name).exists()

    @classmethod
    def get_role(cls, name: str) -> Optional[Role]:
        """Find a role by name. Returns None for unknown names."""
        return Role.objects.by_name(name)

    @classmethod
    def get_role_by_id(cls, role_id) -> Optional[Role]:
        try:
            return Role.objects.filter(id=role_id).first()
        except (ValueError, TypeError, ValidationError):
            logger.debug("Malformed role id", extra={'role_id': str(role_id)})
            return None

    @classmethod
    def role_names(cls) -> List[str]:
        return list(Role.objects.order_by('name').values_list('name', flat=True))

    @classmethod
    def permissions_for_role(cls, name: str) -> Set[str]:
        """Permission names granted by a role; empty set for unknown roles."""
        return set(
            Permission.objects.filter(role_permissions__role__name=name)
            .values_list('name', flat=True)
        )
