"""
Authorization policy for account management.

The rule set is a lookup table keyed by Action. Each rule names the
permission the actor must hold and whether the action is refused when the
actor targets their own account. Self-service profile changes go through a
separate path, so self-edit and self-delete are refused here whatever the
actor's permission level.
"""
import enum
import logging
from typing import NamedTuple, Optional, Iterable

from apps.core.exceptions import Forbidden

logger = logging.getLogger(__name__)


# Canonical permission names
VIEW_USERS = 'view users'
CREATE_USERS = 'create users'
EDIT_USERS = 'edit users'
DELETE_USERS = 'delete users'
ASSIGN_ROLES = 'assign roles'

USER_MANAGEMENT_PERMISSIONS = (
    VIEW_USERS,
    CREATE_USERS,
    EDIT_USERS,
    DELETE_USERS,
    ASSIGN_ROLES,
)


class Action(str, enum.Enum):
    VIEW_ANY = 'view_any'
    VIEW = 'view'
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'
    ASSIGN_ROLE = 'assign_role'
    REMOVE_ROLE = 'remove_role'
    RESTORE = 'restore'
    FORCE_DELETE = 'force_delete'


class Rule(NamedTuple):
    permission: str
    forbid_self: bool = False


RULES = {
    Action.VIEW_ANY: Rule(VIEW_USERS),
    Action.VIEW: Rule(VIEW_USERS),
    Action.CREATE: Rule(CREATE_USERS),
    Action.UPDATE: Rule(EDIT_USERS, forbid_self=True),
    Action.DELETE: Rule(DELETE_USERS, forbid_self=True),
    Action.ASSIGN_ROLE: Rule(ASSIGN_ROLES),
    # Removing a role is gated by the same grant as assigning one
    Action.REMOVE_ROLE: Rule(ASSIGN_ROLES),
    Action.RESTORE: Rule(DELETE_USERS),
    Action.FORCE_DELETE: Rule(DELETE_USERS),
}


def authorize(actor_id, permissions: Iterable[str], action, target_id=None) -> bool:
    """
    Decide whether an actor may perform an action.

    Pure function of its arguments; never raises. Unknown actions are denied.

    Args:
        actor_id: Identifier of the acting account
        permissions: The actor's resolved permission names
        action: Action (or its string value)
        target_id: Identifier of the target account, if any

    Returns:
        True if permitted, False otherwise
    """
    try:
        rule = RULES[Action(action)]
    except ValueError:
        return False

    if rule.forbid_self and target_id is not None and str(actor_id) == str(target_id):
        return False

    return rule.permission in set(permissions)


class Gate:
    """
    Authorization bound to one actor.

    Resolves the actor's permissions once through the registry and answers
    checks against the rule table.

    Usage:
        gate = Gate(actor)
        gate.authorize(Action.DELETE, target)   # raises Forbidden
        if gate.allows(Action.VIEW_ANY): ...
    """

    def __init__(self, actor, registry=None):
        from apps.rbac.registry import RolePermissionRegistry

        self.actor = actor
        self.registry = registry or RolePermissionRegistry
        self._permissions = None

    @property
    def permissions(self):
        if self._permissions is None:
            self._permissions = self.registry.resolve_permissions(self.actor)
        return self._permissions

    def allows(self, action, target=None) -> bool:
        return authorize(self.actor.id, self.permissions, action, _target_id(target))

    def authorize(self, action, target=None):
        """
        Raise Forbidden unless the actor may perform the action.

        The raised error never names the missing permission.
        """
        if not self.allows(action, target):
            logger.warning(
                "Authorization denied",
                extra={
                    'actor_id': str(self.actor.id),
                    'action': getattr(action, 'value', action),
                }
            )
            raise Forbidden()


def _target_id(target) -> Optional[str]:
    if target is None:
        return None
    return str(getattr(target, 'id', target))
