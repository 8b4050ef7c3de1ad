"""
Identity & session: credential hashing, registration, token issue and
rotation, password change and reset.

Passwords are hashed only through :func:`hash_credential`, called at the
three identity-mutation points (registration, change, reset).
"""
from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.contrib.auth import authenticate
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.settings import api_settings as jwt_settings
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from records.exceptions import (
    AuthenticationError, DuplicateError, InvalidCredential, NotFoundError, ValidationError,
)
from records.models import APPLICABLE_ROLES, Department, Hospital, Role, User
from records.services.audit import log_action

logger = logging.getLogger(__name__)


def hash_credential(user: User, plaintext: str, *, validate: bool = True) -> None:
    if validate:
        try:
            validate_password(plaintext, user)
        except DjangoValidationError as e:
            raise ValidationError({'password': e.messages}, kind='weak_password')
    user.set_password(plaintext)


def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def issue_tokens(user: User) -> dict:
    refresh = RefreshToken.for_user(user)
    return {'accessToken': str(refresh.access_token), 'refreshToken': str(refresh)}


def login(email: str, password: str, request=None) -> User:
    user = authenticate(request, username=email, password=password)
    if user is None:
        # inactive users also land here; don't reveal which
        log_action(user=None, action='login', resource_type='user', outcome='failure',
                   detail={'email': email}, request=request)
        raise InvalidCredential('invalid email or password')
    log_action(user=user, action='login', resource_type='user', resource_id=user.id, request=request)
    return user


def rotate(raw_refresh: str) -> dict:
    """Exchange a refresh token for a new pair; the old one is blacklisted."""
    try:
        current = RefreshToken(raw_refresh)
    except TokenError:
        raise InvalidCredential('refresh token is invalid, expired or revoked')
    user = User.objects.filter(**{jwt_settings.USER_ID_FIELD: current.get(jwt_settings.USER_ID_CLAIM)}).first()
    if user is None or not user.is_active:
        raise AuthenticationError('user is inactive', kind='user_inactive')

    s = TokenRefreshSerializer(data={'refresh': raw_refresh})
    try:
        s.is_valid(raise_exception=True)
    except TokenError:
        raise InvalidCredential('refresh token is invalid, expired or revoked')
    data = s.validated_data
    return {'accessToken': data['access'], 'refreshToken': data.get('refresh', raw_refresh)}


def revoke_sessions(user: User, raw_refresh: Optional[str] = None) -> int:
    if raw_refresh:
        try:
            RefreshToken(raw_refresh).blacklist()
            return 1
        except TokenError:
            return 0
    count = 0
    for token in OutstandingToken.objects.filter(user=user):
        _, created = BlacklistedToken.objects.get_or_create(token=token)
        count += int(created)
    return count


@transaction.atomic
def register(data: dict, request=None) -> User:
    """Self-registration.  Staff applicants start as pending_approval."""
    email = data['email']
    if User.objects.filter(email=email).exists():
        raise DuplicateError('a user with this email already exists', kind='duplicate_email')

    requested = data.get('role') or Role.PATIENT
    if requested != Role.PATIENT and requested not in APPLICABLE_ROLES:
        raise ValidationError({'role': 'cannot register with this role'}, kind='role_not_allowed')

    hospital = None
    if data.get('hospitalId'):
        hospital = Hospital.objects.filter(pk=data['hospitalId'], is_active=True).first()
        if hospital is None:
            raise NotFoundError('hospital not found')
    department = None
    if data.get('departmentId'):
        department = Department.objects.filter(pk=data['departmentId'], is_active=True).first()
        if department is None or hospital is None or department.hospital_id != hospital.id:
            raise ValidationError({'departmentId': 'department does not belong to the hospital'})

    user = User(
        email=email,
        first_name=data.get('firstName', ''),
        last_name=data.get('lastName', ''),
        hospital=hospital,
        department=department,
        phone=data.get('phone', ''),
        address=data.get('address', ''),
    )
    if requested == Role.PATIENT:
        user.role = Role.PATIENT
        user.approval_status = User.APPROVAL_APPROVED
        user.date_of_birth = data.get('dateOfBirth')
        user.gender = data.get('gender', '')
        user.blood_type = data.get('bloodType', '')
    else:
        user.role = Role.PENDING_APPROVAL
        user.applied_role = requested
        user.applied_at = timezone.now()
        user.approval_status = User.APPROVAL_PENDING
        user.department_role = data.get('departmentRole', '')
        user.license_number = data.get('licenseNumber', '')
        user.specialization = data.get('specialization', '')
    hash_credential(user, data['password'])
    user.save()
    log_action(user=user, action='register', resource_type='user', resource_id=user.id,
               hospital_id=user.hospital_id, detail={'requestedRole': requested}, request=request)
    logger.info('user %s registered as %s', user.id, user.role)
    return user


def change_password(user: User, current: str, new: str, request=None) -> None:
    if not user.check_password(current):
        raise ValidationError({'currentPassword': 'current password is incorrect'}, kind='wrong_password')
    hash_credential(user, new)
    user.save(update_fields=['password'])
    revoke_sessions(user)
    log_action(user=user, action='password_change', resource_type='user', resource_id=user.id, request=request)


def start_password_reset(email: str, request=None) -> Optional[str]:
    """Return the raw reset token, or None when the email is unknown."""
    user = User.objects.filter(email=email.lower(), is_active=True).first()
    if user is None:
        return None
    raw = secrets.token_hex(32)
    user.password_reset_token = _digest(raw)
    user.password_reset_expires = timezone.now() + timedelta(minutes=settings.PASSWORD_RESET_MINUTES)
    user.save(update_fields=['password_reset_token', 'password_reset_expires'])
    log_action(user=user, action='password_reset_requested', resource_type='user', resource_id=user.id,
               request=request)
    return raw


def finish_password_reset(raw_token: str, new_password: str, request=None) -> User:
    user = User.objects.filter(
        password_reset_token=_digest(raw_token),
        password_reset_expires__gt=timezone.now(),
        is_active=True,
    ).first()
    if user is None:
        raise ValidationError('reset token is invalid or has expired', kind='invalid_reset_token')
    hash_credential(user, new_password)
    user.password_reset_token = ''
    user.password_reset_expires = None
    user.save(update_fields=['password', 'password_reset_token', 'password_reset_expires'])
    revoke_sessions(user)
    log_action(user=user, action='password_reset', resource_type='user', resource_id=user.id, request=request)
    return user


def update_profile(user: User, data: dict, request=None) -> User:
    fields = []
    for key, attr in (('phone', 'phone'), ('address', 'address'), ('emergencyContact', 'emergency_contact')):
        if key in data:
            setattr(user, attr, data[key])
            fields.append(attr)
    if 'bloodType' in data and user.role == Role.PATIENT:
        user.blood_type = data['bloodType']
        fields.append('blood_type')
    if fields:
        user.save(update_fields=fields)
        log_action(user=user, action='profile_update', resource_type='user', resource_id=user.id,
                   detail={'fields': fields}, request=request)
    return user
