"""
Actor resolution for the REST surface.

Requests carry a JWT in the Authorization header; the authentication
class below turns it into the acting Account that every management
operation receives explicitly.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework import exceptions


def generate_jwt(account) -> str:
    """
    Generate JWT token for an account.

    Args:
        account: Account instance

    Returns:
        JWT token string
    """
    now = datetime.now(timezone.utc)
    payload = {
        'user_id': str(account.id),
        'email': account.email,
        'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
        'iat': now,
    }

    return jwt.encode(
        payload,
        settings.JWT_SECRET_KEY,
        algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
    )


def validate_jwt(token: str) -> Optional[Dict[str, Any]]:
    """
    Validate JWT token and return payload.

    Returns:
        Decoded payload dict or None if invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


class JWTAuthentication(BaseAuthentication):
    """
    DRF authentication class for `Authorization: Bearer <token>`.

    Returns None when no bearer token is present so that DRF answers
    401 through the IsAuthenticated permission.
    """

    keyword = b'bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()

        if not auth or auth[0].lower() != self.keyword:
            return None

        if len(auth) != 2:
            raise exceptions.AuthenticationFailed('Invalid authorization header.')

        payload = validate_jwt(auth[1].decode('utf-8', errors='replace'))
        if not payload or not payload.get('user_id'):
            raise exceptions.AuthenticationFailed('Invalid or expired token.')

        Account = get_user_model()
        try:
            account = Account.objects.get(id=payload['user_id'], is_active=True)
        except (Account.DoesNotExist, ValueError, ValidationError):
            raise exceptions.AuthenticationFailed('Account not found or inactive.')

        return (account, None)

    def authenticate_header(self, request):
        return 'Bearer'
