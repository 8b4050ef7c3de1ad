"""
Staff applications and account status.

A staff registrant sits in ``pending_approval`` with the role they applied
for.  A hospital admin (own hospital only) or the super admin approves or
rejects; each decision is one conditional UPDATE on
``approval_status='pending'`` so two admins cannot both decide.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.utils import timezone

from records.exceptions import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from records.models import APPLICABLE_ROLES, Role, User
from records.services.audit import log_action
from records.services.identity import revoke_sessions

logger = logging.getLogger(__name__)


def _require_admin_over(actor: User, user: Optional[User] = None) -> None:
    if actor.role == Role.SUPER_ADMIN:
        return
    if actor.role != Role.HOSPITAL_ADMIN or not actor.hospital_id:
        raise AuthorizationError('only administrators can manage users', kind='not_admin')
    if user is not None and user.hospital_id != actor.hospital_id:
        raise AuthorizationError('this user belongs to another hospital', kind='wrong_hospital')


def _managed_users(actor: User):
    _require_admin_over(actor)
    qs = User.objects.select_related('hospital', 'department')
    if actor.role == Role.HOSPITAL_ADMIN:
        qs = qs.filter(hospital_id=actor.hospital_id)
    return qs


def get_managed_user(actor: User, pk) -> User:
    user = _managed_users(actor).filter(pk=pk).first()
    if user is None:
        raise NotFoundError('user not found')
    return user


def pending_applications(actor: User):
    return _managed_users(actor).filter(
        role=Role.PENDING_APPROVAL, approval_status=User.APPROVAL_PENDING
    ).order_by('applied_at')


def list_users(actor: User, *, role: Optional[str] = None, is_active: Optional[bool] = None):
    qs = _managed_users(actor)
    if role:
        qs = qs.filter(role=role)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    return qs.order_by('-date_joined')


def _not_pending(user_id) -> StateConflictError:
    current = User.objects.filter(pk=user_id).values_list('approval_status', flat=True).first()
    return StateConflictError(f'application is {current}, expected pending', kind='not_pending')


def approve_user(actor: User, user: User, role: Optional[str] = None, notes: str = '', request=None) -> User:
    _require_admin_over(actor, user)
    role = str(role or user.applied_role)
    if role not in APPLICABLE_ROLES:
        raise ValidationError({'role': 'role must be doctor, nurse or department_staff'}, kind='role_not_allowed')
    if role == Role.DEPARTMENT_STAFF and not user.department_id:
        raise ValidationError('department staff must be assigned to a department', kind='department_required')

    now = timezone.now()
    changed = User.objects.filter(
        pk=user.pk, role=Role.PENDING_APPROVAL, approval_status=User.APPROVAL_PENDING
    ).update(
        role=role,
        approval_status=User.APPROVAL_APPROVED,
        approved_by=actor,
        approved_at=now,
        verification_notes=notes or '',
    )
    if not changed:
        raise _not_pending(user.pk)
    user.refresh_from_db()
    log_action(user=actor, action='user_approve', resource_type='user', resource_id=user.id,
               hospital_id=user.hospital_id, detail={'role': role}, request=request)
    logger.info('user %s approved as %s by %s', user.id, role, actor.id)
    return user


def reject_user(actor: User, user: User, reason: str, request=None) -> User:
    _require_admin_over(actor, user)
    if not (reason or '').strip():
        raise ValidationError({'reason': 'rejection reason is required'})
    changed = User.objects.filter(
        pk=user.pk, role=Role.PENDING_APPROVAL, approval_status=User.APPROVAL_PENDING
    ).update(
        approval_status=User.APPROVAL_REJECTED,
        approved_by=actor,
        approved_at=timezone.now(),
        rejection_reason=reason.strip(),
        is_active=False,
    )
    if not changed:
        raise _not_pending(user.pk)
    user.refresh_from_db()
    log_action(user=actor, action='user_reject', resource_type='user', resource_id=user.id,
               hospital_id=user.hospital_id, detail={'reason': reason}, request=request)
    return user


def set_user_active(actor: User, user: User, is_active: bool, request=None) -> User:
    _require_admin_over(actor, user)
    if user.pk == actor.pk:
        raise ValidationError('you cannot change your own account status', kind='cannot_change_self')
    if user.role == Role.SUPER_ADMIN and actor.role != Role.SUPER_ADMIN:
        raise AuthorizationError('platform administrators cannot be modified', kind='not_admin')
    User.objects.filter(pk=user.pk).update(is_active=is_active)
    user.is_active = is_active
    if not is_active:
        revoke_sessions(user)
    log_action(user=actor, action='user_activate' if is_active else 'user_deactivate', resource_type='user',
               resource_id=user.id, hospital_id=user.hospital_id, request=request)
    return user
