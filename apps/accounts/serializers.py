"""
Account serializers for REST API endpoints.

Provides serialization for:
- Accounts (list, detail with resolved permissions)
- Account create and update payloads
- Roles
"""
from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password

from apps.accounts.models import Account
from apps.rbac.models import Role
from apps.rbac.registry import RolePermissionRegistry


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role with its permission names."""

    permissions = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = ['id', 'name', 'description', 'permissions']
        read_only_fields = fields

    def get_permissions(self, obj):
        return sorted(obj.permission_names())


class AccountSerializer(serializers.ModelSerializer):
    """Serializer for Account list rows."""

    full_name = serializers.CharField(read_only=True)
    roles = serializers.SerializerMethodField()

    class Meta:
        model = Account
        fields = [
            'id', 'email', 'first_name', 'last_name', 'full_name',
            'phone', 'is_active', 'roles', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_roles(self, obj):
        # Uses the prefetched roles when the queryset provides them
        return sorted(role.name for role in obj.roles.all())


class AccountDetailSerializer(AccountSerializer):
    """Account detail including the permissions resolved through its roles."""

    permissions = serializers.SerializerMethodField()

    class Meta(AccountSerializer.Meta):
        fields = AccountSerializer.Meta.fields + ['permissions', 'last_login_at']
        read_only_fields = fields

    def get_permissions(self, obj):
        return sorted(RolePermissionRegistry.resolve_permissions(obj))


class _AccountPayloadSerializer(serializers.Serializer):
    """Shared fields and checks for account create/update payloads."""

    first_name = serializers.CharField(max_length=255)
    last_name = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=255)
    email = serializers.EmailField(max_length=255)
    roles = serializers.ListField(
        child=serializers.CharField(max_length=100),
        required=False,
    )

    def validate_email(self, value):
        """Normalize and check uniqueness, ignoring the account being edited."""
        value = Account.objects.normalize_email(value)
        qs = Account.objects.filter(email=value)
        account_id = self.context.get('account_id')
        if account_id is not None:
            qs = qs.exclude(pk=account_id)
        if qs.exists():
            raise serializers.ValidationError(
                "An account with this email already exists."
            )
        return value

    def validate_roles(self, value):
        known = set(Role.objects.filter(name__in=value).values_list('name', flat=True))
        unknown = [name for name in value if name not in known]
        if unknown:
            raise serializers.ValidationError(
                f"Unknown role(s): {', '.join(sorted(set(unknown)))}"
            )
        return value

    def validate(self, attrs):
        password = attrs.get('password')
        if password and attrs.get('password_confirmation') != password:
            raise serializers.ValidationError({
                'password_confirmation': "Password confirmation does not match."
            })
        attrs.pop('password_confirmation', None)
        return attrs


class AccountCreateSerializer(_AccountPayloadSerializer):
    """Serializer for creating an account."""

    password = serializers.CharField(
        min_length=8,
        write_only=True,
        style={'input_type': 'password'}
    )
    password_confirmation = serializers.CharField(
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_password(self, value):
        """Validate password strength."""
        validate_password(value)
        return value


class AccountUpdateSerializer(_AccountPayloadSerializer):
    """
    Serializer for updating an account.

    Every field is optional. A blank password keeps the current credential.
    """

    password = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    password_confirmation = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        for field in self.fields.values():
            field.required = False

    def validate_password(self, value):
        if not value:
            return value
        if len(value) < 8:
            raise serializers.ValidationError(
                "Ensure this field has at least 8 characters."
            )
        validate_password(value)
        return value
