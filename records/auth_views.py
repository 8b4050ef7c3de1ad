"""
Authentication views: login, token refresh, registration, logout and the
password flows.

Tokens are simplejwt access/refresh pairs.  Refresh rotates: the
presented refresh token is blacklisted and a new pair is returned.
"""
from __future__ import annotations

import logging

from django.conf import settings
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from records.serializers.auth import (
    ChangePasswordSerializer, ForgotPasswordSerializer, LoginSerializer, LogoutSerializer,
    RefreshSerializer, RegisterSerializer, ResetPasswordSerializer, user_payload,
)
from records.services import identity
from records.services.audit import log_action

logger = logging.getLogger(__name__)


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    """Email/password login. Returns an access/refresh pair and the user."""
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = identity.login(s.validated_data['email'], s.validated_data['password'], request=request)
    return Response({'ok': True, **identity.issue_tokens(user), 'user': user_payload(user)})


@api_view(['POST'])
@permission_classes([AllowAny])
def refresh_view(request):
    s = RefreshSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response({'ok': True, **identity.rotate(s.validated_data['refreshToken'])})


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def register_view(request):
    """Patients are active at once; staff applicants wait for approval."""
    s = RegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = identity.register(s.validated_data, request=request)
    payload = {'ok': True, 'user': user_payload(user)}
    if user.approval_status == user.APPROVAL_APPROVED:
        payload.update(identity.issue_tokens(user))
    else:
        payload['message'] = 'registration received; an administrator will review your application'
    return Response(payload, status=201)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'ok': True, 'user': user_payload(request.user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_view(request):
    """Blacklist the given refresh token, or every session when none is given."""
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    revoked = identity.revoke_sessions(request.user, s.validated_data.get('refreshToken') or None)
    log_action(user=request.user, action='logout', resource_type='user', resource_id=request.user.id,
               detail={'revoked': revoked}, request=request)
    return Response({'ok': True})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def change_password_view(request):
    s = ChangePasswordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    identity.change_password(request.user, s.validated_data['currentPassword'],
                             s.validated_data['newPassword'], request=request)
    return Response({'ok': True, **identity.issue_tokens(request.user)})


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def forgot_password_view(request):
    s = ForgotPasswordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    raw = identity.start_password_reset(s.validated_data['email'], request=request)
    payload = {'ok': True, 'message': 'if the email is registered, a reset link has been issued'}
    # no mail delivery; expose the token only to local development
    if raw and settings.DEBUG:
        payload['resetToken'] = raw
    return Response(payload)


@api_view(['POST'])
@permission_classes([AllowAny])
def reset_password_view(request, token):
    s = ResetPasswordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    identity.finish_password_reset(token, s.validated_data['password'], request=request)
    return Response({'ok': True})
