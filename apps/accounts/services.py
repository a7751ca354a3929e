"""
Account management service.

Orchestrates administrative operations on accounts: authorizes the actor,
validates preconditions, delegates to the account store, emits audit
events and returns the post-mutation account. The acting account is
passed in explicitly; nothing here reads request or thread state.
"""
import uuid
from typing import NamedTuple, Optional

from django.contrib.auth.hashers import make_password
from django.db import transaction

from apps.accounts.audit import AuditLogger
from apps.accounts.models import Account
from apps.accounts.store import AccountStore, PROFILE_FIELDS
from apps.core.exceptions import NotFound, ValidationFailed
from apps.rbac.models import Role
from apps.rbac.policy import Action, Gate
from apps.rbac.registry import RolePermissionRegistry



class _Missing:
    """Marker for 'roles not supplied', distinct from an empty list."""

    def __repr__(self):
        return 'MISSING'

    def __bool__(self):
        return False


MISSING = _Missing()


class RoleRef(NamedTuple):
    """
    A role given either by name or by its identifier.

    Resolved to a canonical role name at the service boundary.
    """
    name: Optional[str] = None
    role_id: Optional[uuid.UUID] = None

    @classmethod
    def by_name(cls, name):
        return cls(name=name)

    @classmethod
    def by_reference(cls, role_id):
        return cls(role_id=role_id)

    @classmethod
    def parse(cls, value):
        """Treat a UUID-shaped string as a reference, anything else as a name."""
        try:
            return cls.by_reference(uuid.UUID(str(value)))
        except ValueError:
            return cls.by_name(value)

    def resolve(self, registry=RolePermissionRegistry) -> str:
        if self.name is not None:
            return self.name
        role = registry.get_role_by_id(self.role_id)
        if role is None:
            raise NotFound("Role not found", details={'role_id': str(self.role_id)})
        return role.name


class AccountManagementService:
    """
    Administrative account operations on behalf of one actor.

    Every operation is authorized before the store is touched; a denial
    raises Forbidden with no side effects.

    Usage:
        service = AccountManagementService(actor=request.user)
        account = service.create_account(fields, roles=['user'])
    """

    def __init__(self, actor, store=None, registry=None, audit=None, hasher=None):
        self.actor = actor
        self.registry = registry or RolePermissionRegistry
        self.store = store or AccountStore(registry=self.registry)
        self.audit = audit or AuditLogger()
        self.hasher = hasher or make_password
        self.gate = Gate(actor, registry=self.registry)

    # ----- reads -----

    def list_accounts(self, search=None, role=None):
        self.gate.authorize(Action.VIEW_ANY)
        return self.store.search(search=search, role=role)

    def get_account(self, account_id):
        self.gate.authorize(Action.VIEW, account_id)
        return self.store.get(account_id)

    def resolve_permissions(self, account):
        return self.registry.resolve_permissions(account)

    # ----- mutations -----

    def create_account(self, fields, roles=MISSING):
        """
        Create an account from validated fields.

        Args:
            fields: first_name, last_name, phone, email, password (plaintext)
            roles: Optional role names to give the new account

        Returns:
            The stored account
        """
        self.gate.authorize(Action.CREATE)

        password = fields.get('password')
        if not password:
            raise ValidationFailed(fields={'password': ["This field is required."]})

        data = {field: fields.get(field, '') for field in PROFILE_FIELDS}
        data['password'] = self.hasher(password)

        self.audit.emit('info', 'Creating account', {
            'email': data['email'],
            'first_name': data['first_name'],
            'last_name': data['last_name'],
            'created_by': str(self.actor.id),
        }, actor=self.actor, action='account_creating')

        with transaction.atomic():
            account = self.store.create(data)
            self.audit.emit('info', 'Account created', {
                'account_id': str(account.id),
                'email': account.email,
                'name': account.full_name,
            }, actor=self.actor, action='account_created', target=account)

            if roles is not MISSING and roles is not None:
                account = self._sync_roles(account, roles)

        return account

    def update_account(self, account_id, fields, roles=MISSING):
        """
        Update an account with a partial field set.

        The password is re-hashed only when a non-empty value is given.
        Omitting ``roles`` keeps the current roles; an empty list clears them.
        """
        self.gate.authorize(Action.UPDATE, account_id)
        current = self.store.get(account_id)

        incoming = {field: fields[field] for field in PROFILE_FIELDS if field in fields}
        if 'email' in incoming:
            incoming['email'] = Account.objects.normalize_email(incoming['email'])
        changes = {
            field: value != getattr(current, field)
            for field, value in incoming.items()
        }
        changes['password'] = bool(fields.get('password'))

        self.audit.emit('info', 'Updating account', {
            'account_id': str(current.id),
            'email': current.email,
            'updated_by': str(self.actor.id),
            'changes': changes,
        }, actor=self.actor, action='account_updating', target=current)

        data = dict(incoming)
        if fields.get('password'):
            data['password'] = self.hasher(fields['password'])

        with transaction.atomic():
            account = self.store.update(current.id, data)
            if roles is not MISSING and roles is not None:
                account = self._sync_roles(account, roles)

        self.audit.emit('info', 'Account updated', {
            'account_id': str(account.id),
            'email': account.email,
            'name': account.full_name,
        }, actor=self.actor, action='account_updated', target=account)

        return account

    def delete_account(self, account_id) -> bool:
        """
        Permanently delete an account.

        Returns:
            True on success, False if the store refused the delete

        Raises:
            Forbidden: If the actor may not delete (including self-delete)
            NotFound: If the account does not exist
        """
        self.gate.authorize(Action.DELETE, account_id)
        account = self.store.get(account_id)
        snapshot = {
            'account_id': str(account.id),
            'email': account.email,
        }

        self.audit.emit('warning', 'Deleting account', dict(
            snapshot, name=account.full_name, deleted_by=str(self.actor.id),
        ), actor=self.actor, action='account_deleting', target=account)

        result = self.store.delete(account.id)

        if result:
            self.audit.emit('info', 'Account deleted', snapshot,
                            actor=self.actor, action='account_deleted', target=account)
        else:
            self.audit.emit('error', 'Failed to delete account', snapshot,
                            actor=self.actor, action='account_delete_failed', target=account)

        return result

    def assign_role(self, account_id, role):
        """
        Give an account a role. Re-assigning a held role is a no-op.

        Args:
            role: Role name, Role instance or RoleRef
        """
        self.gate.authorize(Action.ASSIGN_ROLE, account_id)
        role_name = self._role_name(role)
        account = self.store.get(account_id)

        self.audit.emit('info', 'Assigning role', {
            'account_id': str(account.id),
            'email': account.email,
            'role': role_name,
            'assigned_by': str(self.actor.id),
        }, actor=self.actor, action='role_assigning', target=account)

        account = self.store.attach_role(account.id, role_name, assigned_by=self.actor)

        self.audit.emit('info', 'Role assigned', {
            'account_id': str(account.id),
            'role': role_name,
        }, actor=self.actor, action='role_assigned', target=account)

        return account

    def remove_role(self, account_id, role):
        """
        Take a role away from an account. Removing a role that is not held
        is a no-op.
        """
        self.gate.authorize(Action.REMOVE_ROLE, account_id)
        role_name = self._role_name(role)
        account = self.store.get(account_id)

        self.audit.emit('info', 'Removing role', {
            'account_id': str(account.id),
            'email': account.email,
            'role': role_name,
            'removed_by': str(self.actor.id),
        }, actor=self.actor, action='role_removing', target=account)

        account = self.store.detach_role(account.id, role_name)

        self.audit.emit('info', 'Role removed', {
            'account_id': str(account.id),
            'role': role_name,
        }, actor=self.actor, action='role_removed', target=account)

        return account

    # ----- helpers -----

    def _sync_roles(self, account, roles):
        names = [self._role_name(role) for role in roles]
        account = self.store.replace_roles(account.id, names, assigned_by=self.actor)
        self.audit.emit('info', 'Roles synchronised', {
            'account_id': str(account.id),
            'roles': sorted(set(names)),
        }, actor=self.actor, action='roles_synced', target=account)
        return account

    def _role_name(self, role) -> str:
        if isinstance(role, Role):
            return role.name
        if isinstance(role, RoleRef):
            return role.resolve(self.registry)
        return str(role)
