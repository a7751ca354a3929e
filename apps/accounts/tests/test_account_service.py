"""
Tests for AccountManagementService.

Covers authorization ordering, the create/update/delete flows, role
assignment semantics and audit delivery.
"""
import uuid
from unittest import mock

import pytest
from django.contrib.auth.hashers import check_password
from django.core.cache import cache

from apps.accounts.audit import AuditLogger
from apps.accounts.models import Account, AuditLog
from apps.accounts.services import AccountManagementService, RoleRef, MISSING
from apps.accounts.store import AccountStore
from apps.core.exceptions import DuplicateEmail, Forbidden, NotFound, ValidationFailed
from apps.rbac.registry import RolePermissionRegistry

PASSWORD = 'S3cure-passphrase!'


def new_account_fields(**overrides):
    fields = {
        'first_name': 'Ada',
        'last_name': 'Lovelace',
        'phone': '+254712345678',
        'email': 'ada@example.com',
        'password': PASSWORD,
    }
    fields.update(overrides)
    return fields


def audit_messages(action=None):
    qs = AuditLog.objects.order_by('created_at')
    if action:
        qs = qs.filter(action=action)
    return list(qs.values_list('message', flat=True))


@pytest.mark.django_db
class TestReads:

    def test_list_requires_view_users(self, plain_user):
        with pytest.raises(Forbidden):
            AccountManagementService(plain_user).list_accounts()

    def test_list_filters(self, manager_account, target_account):
        service = AccountManagementService(manager_account)

        assert list(service.list_accounts(search='tara')) == [target_account]

    def test_get_account(self, manager_account, target_account):
        assert AccountManagementService(manager_account).get_account(target_account.id) == target_account

    def test_get_missing(self, manager_account):
        with pytest.raises(NotFound):
            AccountManagementService(manager_account).get_account(uuid.uuid4())

    def test_unauthorized_get_is_forbidden_even_for_unknown_id(self, plain_user):
        store = mock.Mock(spec=AccountStore)

        with pytest.raises(Forbidden):
            AccountManagementService(plain_user, store=store).get_account(uuid.uuid4())

        store.get.assert_not_called()


@pytest.mark.django_db
class TestCreateAccount:

    def test_create_with_roles(self, admin_account):
        service = AccountManagementService(admin_account)

        account = service.create_account(new_account_fields(), roles=['admin', 'user'])

        assert account.role_names() == ['admin', 'user']
        assert account.email == 'ada@example.com'

    def test_password_is_hashed(self, admin_account):
        account = AccountManagementService(admin_account).create_account(new_account_fields())

        account.refresh_from_db()
        assert account.password_hash != PASSWORD
        assert check_password(PASSWORD, account.password_hash)
        assert not check_password('wrong-' + PASSWORD, account.password_hash)

    def test_create_without_roles(self, admin_account):
        account = AccountManagementService(admin_account).create_account(new_account_fields())

        assert account.role_names() == []

    def test_create_requires_password(self, admin_account):
        with pytest.raises(ValidationFailed) as exc_info:
            AccountManagementService(admin_account).create_account(new_account_fields(password=''))

        assert 'password' in exc_info.value.fields
        assert not Account.objects.filter(email='ada@example.com').exists()

    def test_duplicate_email(self, admin_account, target_account):
        with pytest.raises(DuplicateEmail):
            AccountManagementService(admin_account).create_account(
                new_account_fields(email=target_account.email)
            )

    def test_unknown_role_rolls_back_create(self, admin_account):
        with pytest.raises(NotFound):
            AccountManagementService(admin_account).create_account(
                new_account_fields(), roles=['nonexistent-role']
            )

        assert not Account.objects.filter(email='ada@example.com').exists()

    def test_forbidden_leaves_no_record(self, manager_account):
        before = Account.objects.count()

        with pytest.raises(Forbidden):
            AccountManagementService(manager_account).create_account(new_account_fields())

        assert Account.objects.count() == before
        assert AuditLog.objects.count() == 0

    def test_audit_events(self, admin_account):
        AccountManagementService(admin_account).create_account(new_account_fields(), roles=['user'])

        assert audit_messages() == ['Creating account', 'Account created', 'Roles synchronised']

    def test_audit_never_contains_password(self, admin_account):
        account = AccountManagementService(admin_account).create_account(new_account_fields())
        account.refresh_from_db()

        for entry in AuditLog.objects.all():
            assert PASSWORD not in str(entry.fields)
            assert account.password_hash not in str(entry.fields)


@pytest.mark.django_db
class TestUpdateAccount:

    def test_update_profile_fields(self, admin_account, target_account):
        account = AccountManagementService(admin_account).update_account(
            target_account.id, {'first_name': 'Tamsin', 'phone': '+254700111222'}
        )

        assert account.first_name == 'Tamsin'
        assert account.phone == '+254700111222'
        assert account.last_name == 'Target'

    def test_blank_password_keeps_credential(self, admin_account, target_account):
        original = target_account.password_hash

        AccountManagementService(admin_account).update_account(
            target_account.id, {'first_name': 'Tamsin', 'password': ''}
        )

        target_account.refresh_from_db()
        assert target_account.password_hash == original

    def test_new_password_is_hashed(self, admin_account, target_account):
        AccountManagementService(admin_account).update_account(
            target_account.id, {'password': 'An0ther-passphrase'}
        )

        target_account.refresh_from_db()
        assert target_account.check_password('An0ther-passphrase')
        assert target_account.password_hash != 'An0ther-passphrase'
        assert not target_account.check_password(PASSWORD)
        assert not target_account.check_password('wrong-An0ther-passphrase')

    def test_absent_roles_keep_current_roles(self, admin_account, target_account):
        account = AccountManagementService(admin_account).update_account(
            target_account.id, {'last_name': 'Changed'}
        )

        assert account.role_names() == ['user']

    def test_none_roles_keep_current_roles(self, admin_account, target_account):
        account = AccountManagementService(admin_account).update_account(
            target_account.id, {'last_name': 'Changed'}, roles=None
        )

        assert account.role_names() == ['user']

    def test_empty_roles_clear_all(self, admin_account, target_account):
        account = AccountManagementService(admin_account).update_account(
            target_account.id, {}, roles=[]
        )

        assert account.role_names() == []

    def test_roles_are_replaced(self, admin_account, target_account):
        account = AccountManagementService(admin_account).update_account(
            target_account.id, {}, roles=['manager', RoleRef.by_name('admin')]
        )

        assert account.role_names() == ['admin', 'manager']

    def test_self_update_is_forbidden(self, admin_account):
        with pytest.raises(Forbidden):
            AccountManagementService(admin_account).update_account(
                admin_account.id, {'first_name': 'Me'}
            )

    def test_super_admin_cannot_update_self(self, super_admin):
        with pytest.raises(Forbidden):
            AccountManagementService(super_admin).update_account(super_admin.id, {})

    def test_update_requires_edit_users(self, manager_account, target_account):
        with pytest.raises(Forbidden):
            AccountManagementService(manager_account).update_account(
                target_account.id, {'first_name': 'Nope'}
            )

        target_account.refresh_from_db()
        assert target_account.first_name == 'Tara'

    def test_update_missing(self, admin_account):
        with pytest.raises(NotFound):
            AccountManagementService(admin_account).update_account(uuid.uuid4(), {})

    def test_email_taken_by_other(self, admin_account, target_account, plain_user):
        with pytest.raises(DuplicateEmail):
            AccountManagementService(admin_account).update_account(
                target_account.id, {'email': plain_user.email}
            )

    def test_unknown_role_rolls_back_profile_change(self, admin_account, target_account):
        with pytest.raises(NotFound):
            AccountManagementService(admin_account).update_account(
                target_account.id, {'first_name': 'Tamsin'}, roles=['nonexistent-role']
            )

        target_account.refresh_from_db()
        assert target_account.first_name == 'Tara'
        assert target_account.role_names() == ['user']

    def test_change_diff_is_audited(self, admin_account, target_account):
        AccountManagementService(admin_account).update_account(
            target_account.id, {'first_name': 'Tamsin', 'last_name': 'Target', 'password': 'An0ther-passphrase'}
        )

        entry = AuditLog.objects.get(action='account_updating')
        assert entry.fields['changes'] == {'first_name': True, 'last_name': False, 'password': True}
        assert audit_messages() == ['Updating account', 'Account updated']

    def test_email_differing_only_in_domain_case_is_unchanged(self, admin_account, target_account):
        AccountManagementService(admin_account).update_account(
            target_account.id, {'email': 'target@EXAMPLE.com'}
        )

        entry = AuditLog.objects.get(action='account_updating')
        assert entry.fields['changes'] == {'email': False, 'password': False}
        target_account.refresh_from_db()
        assert target_account.email == 'target@example.com'


@pytest.mark.django_db
class TestDeleteAccount:

    def test_delete(self, admin_account, target_account):
        assert AccountManagementService(admin_account).delete_account(target_account.id) is True
        assert not Account.objects.filter(id=target_account.id).exists()

    def test_delete_audit_trail_survives(self, admin_account, target_account):
        AccountManagementService(admin_account).delete_account(target_account.id)

        entries = AuditLog.objects.by_target('Account', target_account.id).order_by('created_at')
        assert [(e.level, e.message) for e in entries] == [
            ('warning', 'Deleting account'),
            ('info', 'Account deleted'),
        ]

    def test_self_delete_is_forbidden(self, admin_account):
        with pytest.raises(Forbidden):
            AccountManagementService(admin_account).delete_account(admin_account.id)

        assert Account.objects.filter(id=admin_account.id).exists()

    def test_delete_requires_delete_users(self, manager_account, target_account):
        with pytest.raises(Forbidden):
            AccountManagementService(manager_account).delete_account(target_account.id)

    def test_delete_missing(self, admin_account):
        with pytest.raises(NotFound):
            AccountManagementService(admin_account).delete_account(uuid.uuid4())

    def test_store_refusal_returns_false_and_logs_error(self, admin_account, target_account):
        store = AccountStore()
        with mock.patch.object(store, 'delete', return_value=False):
            result = AccountManagementService(admin_account, store=store).delete_account(target_account.id)

        assert result is False
        failed = AuditLog.objects.get(action='account_delete_failed')
        assert failed.level == 'error'
        assert failed.message == 'Failed to delete account'


@pytest.mark.django_db
class TestRoleAssignment:

    def test_assign_role_by_name(self, admin_account, target_account):
        account = AccountManagementService(admin_account).assign_role(target_account.id, 'manager')

        assert account.role_names() == ['manager', 'user']

    def test_assign_role_by_reference(self, admin_account, target_account, roles):
        account = AccountManagementService(admin_account).assign_role(
            target_account.id, RoleRef.by_reference(roles['manager'].id)
        )

        assert 'manager' in account.role_names()

    def test_assign_role_instance(self, admin_account, target_account, roles):
        account = AccountManagementService(admin_account).assign_role(target_account.id, roles['admin'])

        assert 'admin' in account.role_names()

    def test_assign_is_idempotent(self, admin_account, target_account):
        service = AccountManagementService(admin_account)

        service.assign_role(target_account.id, 'manager')
        account = service.assign_role(target_account.id, 'manager')

        assert account.role_names() == ['manager', 'user']

    def test_assign_unknown_role(self, admin_account, target_account):
        with pytest.raises(NotFound):
            AccountManagementService(admin_account).assign_role(target_account.id, 'nonexistent-role')

    def test_assign_unknown_reference(self, admin_account, target_account):
        with pytest.raises(NotFound):
            AccountManagementService(admin_account).assign_role(
                target_account.id, RoleRef.by_reference(uuid.uuid4())
            )

    def test_assign_to_self_is_allowed(self, admin_account):
        account = AccountManagementService(admin_account).assign_role(admin_account.id, 'manager')

        assert account.role_names() == ['admin', 'manager']

    def test_assign_requires_assign_roles(self, manager_account, target_account):
        with pytest.raises(Forbidden):
            AccountManagementService(manager_account).assign_role(target_account.id, 'admin')

        assert target_account.role_names() == ['user']

    def test_assign_takes_effect_immediately(self, admin_account, target_account):
        from apps.rbac.registry import RolePermissionRegistry
        assert RolePermissionRegistry.resolve_permissions(target_account) == set()

        AccountManagementService(admin_account).assign_role(target_account.id, 'manager')

        assert RolePermissionRegistry.resolve_permissions(target_account) == {'view users'}

    def test_remove_role(self, admin_account, target_account):
        account = AccountManagementService(admin_account).remove_role(target_account.id, 'user')

        assert account.role_names() == []

    def test_remove_is_idempotent(self, admin_account, target_account):
        service = AccountManagementService(admin_account)

        service.remove_role(target_account.id, 'manager')
        account = service.remove_role(target_account.id, 'manager')

        assert account.role_names() == ['user']

    def test_remove_requires_assign_roles(self, manager_account, target_account):
        with pytest.raises(Forbidden):
            AccountManagementService(manager_account).remove_role(target_account.id, 'user')

    def test_assign_audit_events(self, admin_account, target_account):
        AccountManagementService(admin_account).assign_role(target_account.id, 'manager')

        assert audit_messages() == ['Assigning role', 'Role assigned']
        assert AuditLog.objects.get(action='role_assigned').fields['role'] == 'manager'


class TestRoleRef:

    def test_parse_name(self):
        assert RoleRef.parse('admin') == RoleRef.by_name('admin')

    def test_parse_uuid(self):
        role_id = uuid.uuid4()

        assert RoleRef.parse(str(role_id)) == RoleRef.by_reference(role_id)

    def test_missing_is_not_empty_list(self):
        assert MISSING is not None
        assert MISSING != []
        assert not MISSING


@pytest.mark.django_db
class TestAuditFailure:

    def test_failing_audit_sink_does_not_break_operation(self, admin_account, target_account):
        sink = mock.Mock()
        sink.log.side_effect = RuntimeError('log sink down')
        audit = AuditLogger(sink_logger=sink)

        with mock.patch.object(AuditLog.objects, 'create', side_effect=RuntimeError('db sink down')):
            account = AccountManagementService(admin_account, audit=audit).assign_role(
                target_account.id, 'manager'
            )

        assert account.role_names() == ['manager', 'user']
        assert sink.log.call_count == 2


class StaleReadAudit(AuditLogger):
    """
    Caches an account's old permission set while its role sync is still
    uncommitted, the way a concurrent request reading committed rows would.
    """

    def __init__(self, account, stale_permissions):
        super().__init__()
        self.account = account
        self.stale_permissions = stale_permissions

    def emit(self, level, message, fields=None, actor=None, action='', target=None):
        if action == 'roles_synced':
            cache.set(
                RolePermissionRegistry.CACHE_KEY.format(account_id=self.account.id),
                sorted(self.stale_permissions),
                300,
            )
        return super().emit(level, message, fields, actor=actor, action=action, target=target)


@pytest.mark.django_db(transaction=True)
class TestPermissionCacheAfterCommit:

    def test_revoked_roles_are_not_served_from_cache(self, super_admin, admin_account):
        granted = RolePermissionRegistry.resolve_permissions(admin_account)
        assert 'delete users' in granted
        audit = StaleReadAudit(admin_account, granted)

        AccountManagementService(super_admin, audit=audit).update_account(
            admin_account.id, {}, roles=[]
        )

        assert AccountStore().role_names(admin_account.id) == []
        assert RolePermissionRegistry.resolve_permissions(admin_account) == set()

    def test_granted_roles_are_not_hidden_by_cache(self, super_admin, target_account):
        audit = StaleReadAudit(target_account, set())

        AccountManagementService(super_admin, audit=audit).update_account(
            target_account.id, {'last_name': 'Promoted'}, roles=['manager']
        )

        assert RolePermissionRegistry.resolve_permissions(target_account) == {'view users'}
