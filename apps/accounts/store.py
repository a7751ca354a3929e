"""
Account store.

Owns account records and their role memberships. Every write runs in a
transaction so partial field updates are never observed. The store never
hashes: credentials arrive already hashed from the caller.
"""
import logging
from typing import Iterable, List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q

from apps.accounts.models import Account, AccountRole
from apps.core.exceptions import DuplicateEmail, NotFound
from apps.rbac.models import Role
from apps.rbac.registry import RolePermissionRegistry

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('first_name', 'last_name', 'phone', 'email')


class AccountStore:
    """
    Persistence operations for accounts and role membership edges.

    Role membership writes are idempotent: attaching a held role or
    detaching a role that is not held succeeds without changes. Role-set
    replacement is last-write-wins.
    """

    def __init__(self, registry=None):
        self.registry = registry or RolePermissionRegistry

    def get(self, account_id) -> Account:
        """
        Fetch an account.

        Raises:
            NotFound: If no account matches account_id
        """
        try:
            return Account.objects.get(pk=account_id)
        except (Account.DoesNotExist, ValidationError, ValueError):
            raise NotFound("Account not found", details={'account_id': str(account_id)})

    def search(self, search: Optional[str] = None, role: Optional[str] = None):
        """
        Accounts matching a free-text search and/or role, newest first.

        The search term matches first name, last name or email.
        """
        qs = Account.objects.prefetch_related('roles')

        if search:
            qs = qs.filter(
                Q(first_name__icontains=search)
                | Q(last_name__icontains=search)
                | Q(email__icontains=search)
            )

        if role:
            qs = qs.filter(account_roles__role__name=role).distinct()

        return qs.order_by('-created_at')

    def create(self, data) -> Account:
        """
        Insert a new account.

        Args:
            data: first_name, last_name, phone, email and a pre-hashed password

        Raises:
            DuplicateEmail: If the email is already taken
        """
        email = Account.objects.normalize_email(data['email'])
        if Account.objects.filter(email=email).exists():
            raise DuplicateEmail(email)

        try:
            with transaction.atomic():
                account = Account.objects.create(
                    first_name=data.get('first_name', ''),
                    last_name=data.get('last_name', ''),
                    phone=data.get('phone', ''),
                    email=email,
                    password_hash=data['password'],
                )
        except IntegrityError:
            # Lost a race with a concurrent create on the unique email
            raise DuplicateEmail(email)

        logger.info("Account row inserted", extra={'account_id': str(account.id)})
        return account

    def update(self, account_id, data) -> Account:
        """
        Apply only the supplied fields to an account.

        A 'password' key replaces the stored credential with the given
        (already hashed) value. Fields not supplied are left untouched.

        Raises:
            NotFound: If no account matches account_id
            DuplicateEmail: If the new email is held by another account
        """
        self.get(account_id)

        try:
            with transaction.atomic():
                account = Account.objects.select_for_update().get(pk=account_id)
                changed = []

                for field in PROFILE_FIELDS:
                    if field not in data:
                        continue
                    value = data[field]
                    if field == 'email':
                        value = Account.objects.normalize_email(value)
                        if Account.objects.filter(email=value).exclude(pk=account.pk).exists():
                            raise DuplicateEmail(value)
                    setattr(account, field, value)
                    changed.append(field)

                if data.get('password'):
                    account.password_hash = data['password']
                    changed.append('password_hash')

                if changed:
                    account.save(update_fields=changed + ['updated_at'])
        except IntegrityError:
            raise DuplicateEmail(data.get('email'))

        return account

    def delete(self, account_id) -> bool:
        """
        Remove an account and its role memberships.

        Returns:
            True if the row was removed, False if the storage layer removed
            nothing (e.g., it vanished between lookup and delete)

        Raises:
            NotFound: If no account matches account_id
        """
        account = self.get(account_id)

        with transaction.atomic():
            _, per_model = Account.objects.filter(pk=account.pk).delete()

        self._invalidate(account.pk)
        return per_model.get(Account._meta.label, 0) > 0

    def attach_role(self, account_id, role_name: str, assigned_by=None) -> Account:
        """
        Give an account a role. Attaching a held role is a no-op.

        Raises:
            NotFound: If the account or the role does not exist
        """
        account = self.get(account_id)
        role = self._role(role_name)

        with transaction.atomic():
            AccountRole.objects.get_or_create(
                account=account,
                role=role,
                defaults={'assigned_by': assigned_by},
            )

        self._invalidate(account.pk)
        return account

    def detach_role(self, account_id, role_name: str) -> Account:
        """
        Take a role away from an account. Detaching a role that is not held,
        or that does not exist, is a no-op.

        Raises:
            NotFound: If the account does not exist
        """
        account = self.get(account_id)

        with transaction.atomic():
            AccountRole.objects.filter(account=account, role__name=role_name).delete()

        self._invalidate(account.pk)
        return account

    def replace_roles(self, account_id, role_names: Iterable[str], assigned_by=None) -> Account:
        """
        Set an account's roles to exactly the given set. An empty set clears
        all roles.

        Raises:
            NotFound: If the account or any of the roles does not exist
        """
        names = list(dict.fromkeys(role_names))
        roles = list(Role.objects.filter(name__in=names))
        missing = set(names) - {role.name for role in roles}
        if missing:
            raise NotFound("Role not found", details={'roles': sorted(missing)})

        account = self.get(account_id)

        with transaction.atomic():
            Account.objects.select_for_update().filter(pk=account.pk).first()
            AccountRole.objects.filter(account=account).exclude(role__in=roles).delete()
            held = set(
                AccountRole.objects.filter(account=account).values_list('role_id', flat=True)
            )
            AccountRole.objects.bulk_create([
                AccountRole(account=account, role=role, assigned_by=assigned_by)
                for role in roles
                if role.pk not in held
            ])

        self._invalidate(account.pk)
        return account

    def role_names(self, account_id) -> List[str]:
        return self.get(account_id).role_names()

    def _invalidate(self, account_id):
        # Clear now and again after the outermost transaction commits;
        # a concurrent read before commit still sees the old roles.
        self.registry.invalidate(account_id)
        transaction.on_commit(lambda: self.registry.invalidate(account_id))

    def _role(self, role_name: str) -> Role:
        role = self.registry.get_role(role_name)
        if role is None:
            raise NotFound("Role not found", details={'role': role_name})
        return role
