"""
Account models.

Implements:
- Account (the AUTH_USER_MODEL; administrative user identity)
- AccountRole (role membership edge, owned by the account store)
- AuditLog (persisted audit trail of administrative actions)
"""
from django.db import models
from django.contrib.auth.hashers import make_password, check_password
from django.core.serializers.json import DjangoJSONEncoder
from apps.core.models import BaseModel



class AccountManager(models.Manager):
    """
    Manager for Account queries.

    Compatible with Django's authentication system.
    """

    def active(self):
        """Return only active accounts."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find account by email."""
        return self.filter(email=self.normalize_email(email)).first()

    @classmethod
    def normalize_email(cls, email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new account with hashed password.

        Used by Django's auth tooling; administrative creation goes through
        the account management service.
        """
        if not email:
            raise ValueError('Email address is required')

        account = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            account.set_password(password)
        account.save(using=self._db)
        return account

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class Account(BaseModel):
    """
    Administrative user account.

    Email is unique across all accounts. The password credential is only
    ever stored hashed.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="Account email address (unique)"
    )
    first_name = models.CharField(
        max_length=255,
        help_text="First name"
    )
    last_name = models.CharField(
        max_length=255,
        help_text="Last name"
    )
    phone = models.CharField(
        max_length=255,
        blank=True,
        help_text="Contact phone number"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the account may authenticate"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )
    roles = models.ManyToManyField(
        'rbac.Role',
        through='AccountRole',
        through_fields=('account', 'role'),
        related_name='accounts',
        blank=True,
    )

    # Django auth compatibility
    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = AccountManager()

    class Meta:
        db_table = 'accounts'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash, for Django auth compatibility."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def set_password(self, raw_password):
        """Set account password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    @property
    def full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_username(self):
        return self.email

    def role_names(self):
        return sorted(self.roles.values_list('name', flat=True))

    @property
    def is_authenticated(self):
        """Always True for Account instances (Django auth compatibility)."""
        return True

    @property
    def is_anonymous(self):
        """Always False for Account instances (Django auth compatibility)."""
        return False


class AccountRole(BaseModel):
    """
    Maps roles to accounts.

    An account can hold multiple roles; permissions are aggregated.
    """

    account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        related_name='account_roles',
        help_text="Account holding the role"
    )
    role = models.ForeignKey(
        'rbac.Role',
        on_delete=models.CASCADE,
        related_name='account_roles',
        help_text="Role assigned to the account"
    )
    assigned_by = models.ForeignKey(
        Account,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="Account that assigned this role"
    )

    class Meta:
        db_table = 'account_roles'
        ordering = ['account', 'role']
        constraints = [
            models.UniqueConstraint(fields=['account', 'role'], name='uniq_account_role'),
        ]

    def __str__(self):
        return f"{self.account.email} -> {self.role.name}"


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_actor(self, actor):
        return self.filter(actor=actor)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        """Get audit logs for a target type and optionally target ID."""
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for administrative account operations.
    """

    LEVEL_CHOICES = [
        ('info', 'Info'),
        ('warning', 'Warning'),
        ('error', 'Error'),
    ]

    level = models.CharField(
        max_length=10,
        choices=LEVEL_CHOICES,
        default='info',
        db_index=True,
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'account_created', 'role_assigned')"
    )
    message = models.CharField(max_length=255)
    actor = models.ForeignKey(
        Account,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Account that performed the action"
    )
    target_type = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
    )
    target_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of target entity (kept after the target is deleted)"
    )
    fields = models.JSONField(
        default=dict,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Structured event payload"
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        actor = self.actor.email if self.actor else 'System'
        return f"{actor} - {self.action}"
