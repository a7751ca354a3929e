"""
Account management REST API views.

Implements endpoints for:
- Account listing, creation, retrieval, update and deletion
- Role assignment and removal on an account
- Role listing

Views only translate HTTP to service calls; authorization, auditing and
persistence happen in AccountManagementService.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.accounts.serializers import (
    AccountSerializer, AccountDetailSerializer,
    AccountCreateSerializer, AccountUpdateSerializer, RoleSerializer
)
from apps.accounts.services import AccountManagementService, RoleRef, MISSING
from apps.core.exceptions import StoreFailure
from apps.rbac.models import Role
from apps.rbac.policy import Action


class AccountPagination(PageNumberPagination):
    """Pagination for the account listing."""
    page_size = 15


ERROR_RESPONSES = {
    401: OpenApiTypes.OBJECT,
    403: OpenApiTypes.OBJECT,
}


@extend_schema_view(
    get=extend_schema(
        tags=['Accounts'],
        summary='List accounts',
        description='''
List accounts, newest first, 15 per page.

**Required permission:** `view users`

Filter with `search` (first name, last name or email) and `role`.
        ''',
        parameters=[
            OpenApiParameter('search', OpenApiTypes.STR, description='Free-text filter'),
            OpenApiParameter('role', OpenApiTypes.STR, description='Only accounts holding this role'),
            OpenApiParameter('page', OpenApiTypes.INT, description='Page number'),
        ],
        responses={200: AccountSerializer(many=True), **ERROR_RESPONSES},
    ),
    post=extend_schema(
        tags=['Accounts'],
        summary='Create account',
        description='''
Create an account and optionally give it roles.

**Required permission:** `create users`
        ''',
        request=AccountCreateSerializer,
        responses={201: AccountDetailSerializer, 400: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
        examples=[
            OpenApiExample(
                'Create Request',
                value={
                    'first_name': 'Ada',
                    'last_name': 'Lovelace',
                    'phone': '+254712345678',
                    'email': 'ada@example.com',
                    'password': 'S3cure-passphrase!',
                    'password_confirmation': 'S3cure-passphrase!',
                    'roles': ['manager'],
                },
                request_only=True
            )
        ]
    )
)
class AccountListView(APIView):
    """
    GET /v1/accounts
    POST /v1/accounts
    """

    def get(self, request):
        """List accounts."""
        service = AccountManagementService(actor=request.user)
        accounts = service.list_accounts(
            search=request.query_params.get('search') or None,
            role=request.query_params.get('role') or None,
        )

        paginator = AccountPagination()
        page = paginator.paginate_queryset(accounts, request, view=self)
        serializer = AccountSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        """Create an account."""
        service = AccountManagementService(actor=request.user)
        # Authorization precedes payload validation
        service.gate.authorize(Action.CREATE)

        serializer = AccountCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        fields = dict(serializer.validated_data)
        roles = fields.pop('roles', MISSING)
        account = service.create_account(fields, roles=roles)

        return Response(AccountDetailSerializer(account).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['Accounts'],
        summary='Get account',
        description='''
Get an account with its roles and resolved permissions.

**Required permission:** `view users`
        ''',
        responses={200: AccountDetailSerializer, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
    ),
    put=extend_schema(
        tags=['Accounts'],
        summary='Update account',
        description='''
Update an account. A blank or missing password keeps the current one.
Omitting `roles` keeps the current roles; an empty list removes them all.

**Required permission:** `edit users` (not allowed on your own account)
        ''',
        request=AccountUpdateSerializer,
        responses={200: AccountDetailSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
    ),
    patch=extend_schema(
        tags=['Accounts'],
        summary='Partially update account',
        request=AccountUpdateSerializer,
        responses={200: AccountDetailSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
    ),
    delete=extend_schema(
        tags=['Accounts'],
        summary='Delete account',
        description='''
Permanently delete an account.

**Required permission:** `delete users` (not allowed on your own account)
        ''',
        responses={204: None, 404: OpenApiTypes.OBJECT, 500: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
    )
)
class AccountDetailView(APIView):
    """
    GET /v1/accounts/{account_id}
    PUT/PATCH /v1/accounts/{account_id}
    DELETE /v1/accounts/{account_id}
    """

    def get(self, request, account_id):
        """Get account details."""
        service = AccountManagementService(actor=request.user)
        account = service.get_account(account_id)
        return Response(AccountDetailSerializer(account).data)

    def put(self, request, account_id):
        """Update an account."""
        return self._update(request, account_id)

    def patch(self, request, account_id):
        """Partially update an account."""
        return self._update(request, account_id)

    def delete(self, request, account_id):
        """Delete an account."""
        service = AccountManagementService(actor=request.user)
        if not service.delete_account(account_id):
            raise StoreFailure("Failed to delete account", details={'account_id': str(account_id)})
        return Response(status=status.HTTP_204_NO_CONTENT)

    def _update(self, request, account_id):
        service = AccountManagementService(actor=request.user)
        service.gate.authorize(Action.UPDATE, account_id)

        serializer = AccountUpdateSerializer(
            data=request.data,
            context={'account_id': account_id}
        )
        serializer.is_valid(raise_exception=True)

        fields = dict(serializer.validated_data)
        roles = fields.pop('roles', MISSING)
        account = service.update_account(account_id, fields, roles=roles)

        return Response(AccountDetailSerializer(account).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Accounts - Roles'],
        summary='Assign role to account',
        description='''
Give an account a role, by name or by role id. Assigning a role the
account already holds changes nothing.

**Required permission:** `assign roles`
        ''',
        request=None,
        responses={200: AccountDetailSerializer, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
    ),
    delete=extend_schema(
        tags=['Accounts - Roles'],
        summary='Remove role from account',
        description='''
Take a role away from an account. Removing a role the account does not
hold changes nothing.

**Required permission:** `assign roles`
        ''',
        responses={200: AccountDetailSerializer, 404: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
    )
)
class AccountRoleView(APIView):
    """
    POST /v1/accounts/{account_id}/roles/{role}
    DELETE /v1/accounts/{account_id}/roles/{role}
    """

    def post(self, request, account_id, role):
        """Assign a role."""
        service = AccountManagementService(actor=request.user)
        account = service.assign_role(account_id, RoleRef.parse(role))
        return Response(AccountDetailSerializer(account).data)

    def delete(self, request, account_id, role):
        """Remove a role."""
        service = AccountManagementService(actor=request.user)
        account = service.remove_role(account_id, RoleRef.parse(role))
        return Response(AccountDetailSerializer(account).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Accounts - Roles'],
        summary='List roles',
        description='''
List every defined role with the permissions it grants.

**Required permission:** `view users`
        ''',
        responses={200: RoleSerializer(many=True), **ERROR_RESPONSES},
    )
)
class RoleListView(APIView):
    """
    GET /v1/roles
    """

    def get(self, request):
        """List roles."""
        service = AccountManagementService(actor=request.user)
        service.gate.authorize(Action.VIEW_ANY)

        roles = Role.objects.order_by('name')
        serializer = RoleSerializer(roles, many=True)
        return Response({
            'count': len(serializer.data),
            'roles': serializer.data
        })
