"""
Account management API URLs.
"""
from django.urls import path
from apps.accounts.views import (
    AccountListView,
    AccountDetailView,
    AccountRoleView,
    RoleListView,
)

app_name = 'accounts'

urlpatterns = [
    # Account endpoints
    path('accounts', AccountListView.as_view(), name='account-list'),
    path('accounts/<uuid:account_id>', AccountDetailView.as_view(), name='account-detail'),

    # Role membership endpoints (role by name or id)
    path('accounts/<uuid:account_id>/roles/<str:role>', AccountRoleView.as_view(), name='account-role'),

    # Role listing
    path('roles', RoleListView.as_view(), name='role-list'),
]
