"""
Bearer-token authentication and the tenant gate.

``BearerJWTAuthentication`` resolves ``Authorization: Bearer <access>``
to a :class:`records.models.User` using simplejwt, then applies the
checks every downstream endpoint relies on:

* inactive users are rejected with 401;
* members of a hospital that is not usable (not approved, or without an
  active subscription) and users still awaiting approval may only read
  their own profile; everything else is refused with 403.

Keeping the gate here means one check protects every hospital-scoped
resource instead of each view repeating it.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from rest_framework.permissions import SAFE_METHODS
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings as jwt_settings
from rest_framework_simplejwt.tokens import AccessToken

from records.exceptions import AuthenticationError, AuthorizationError, ExpiredCredential, InvalidCredential
from records.models import Role, User

logger = logging.getLogger(__name__)

LAST_SEEN_RESOLUTION = timedelta(minutes=1)
# Reachable by gated users regardless of method
SESSION_PATHS = ('/api/auth/logout',)


def classify_token_error(raw_token) -> AuthenticationError:
    """Tell an expired access token apart from a malformed or forged one."""
    try:
        unverified = AccessToken(raw_token, verify=False)
    except TokenError:
        return InvalidCredential()
    exp = unverified.payload.get('exp')
    if exp is not None and exp <= timezone.now().timestamp():
        return ExpiredCredential()
    return InvalidCredential()


def touch_last_seen(user: User) -> None:
    now = timezone.now()
    if user.last_seen_at and now - user.last_seen_at < LAST_SEEN_RESOLUTION:
        return
    try:
        User.objects.filter(pk=user.pk).update(last_seen_at=now)
        user.last_seen_at = now
    except DatabaseError:
        logger.warning('could not update last_seen_at for user %s', user.pk, exc_info=True)


def is_self_profile_read(request) -> bool:
    return request.method in SAFE_METHODS and request.path in settings.TENANT_GATE_EXEMPT_PATHS


def enforce_tenant_gate(request, user: User) -> None:
    if user.role == Role.SUPER_ADMIN or is_self_profile_read(request) or request.path in SESSION_PATHS:
        return
    if user.role == Role.PENDING_APPROVAL:
        raise AuthorizationError('account is awaiting approval', kind='approval_pending')
    hospital = user.hospital
    if hospital is not None and not hospital.is_usable():
        raise AuthorizationError('hospital is not approved or its subscription is not active',
                                 kind='hospital_not_usable')


class BearerJWTAuthentication(JWTAuthentication):
    """simplejwt authentication with our error kinds and the tenant gate."""

    def get_validated_token(self, raw_token):
        try:
            return AccessToken(raw_token)
        except TokenError:
            raise classify_token_error(raw_token)

    def get_user(self, validated_token):
        try:
            user_id = validated_token[jwt_settings.USER_ID_CLAIM]
        except KeyError:
            raise InvalidCredential('token carries no user id')
        user = (
            User.objects.select_related('hospital', 'department')
            .filter(**{jwt_settings.USER_ID_FIELD: user_id})
            .first()
        )
        if user is None:
            raise InvalidCredential('user not found', kind='user_not_found')
        if not user.is_active:
            raise AuthenticationError('user is inactive', kind='user_inactive')
        return user

    def authenticate(self, request):
        result = super().authenticate(request)
        if result is None:
            return None
        user, token = result
        touch_last_seen(user)
        enforce_tenant_gate(request, user)
        return user, token

    def authenticate_header(self, request):
        return 'Bearer realm="api"'
