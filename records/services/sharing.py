"""
Sharing ledger: directed, time-bounded, admin-approved read grants
between hospitals.

A record for (A, B) lets A's clinicians read B's data; it says nothing
about B reading A.  Each status change is one conditional UPDATE guarded
on the expected prior status, so two racing approvals cannot both win.
:func:`can_access` is recomputed on every call and never cached.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from records.exceptions import (
    AuthorizationError, DuplicateError, HealthVaultError, NotFoundError, StateConflictError, ValidationError,
)
from records.models import Hospital, HospitalSharing, Role, User
from records.services.audit import log_action

logger = logging.getLogger(__name__)

PERMISSION_FIELDS = {
    'canViewMedicalRecords': 'can_view_medical_records',
    'canViewTestResults': 'can_view_test_results',
    'canViewPrescriptions': 'can_view_prescriptions',
    'canViewDiagnosis': 'can_view_diagnosis',
}


def _conflict_for(record_id: int, expected: str) -> HealthVaultError:
    current = HospitalSharing.objects.filter(pk=record_id).values_list('status', flat=True).first()
    if current is None:
        return NotFoundError('sharing record not found')
    return StateConflictError(f'sharing record is {current}, expected {expected}', kind=f'not_{expected}')


def request_sharing(requesting: Hospital, target: Hospital, reason: str, *, actor: User,
                    scope: str = HospitalSharing.SCOPE_FULL, patient_ids=None,
                    permissions: Optional[dict] = None, request=None) -> HospitalSharing:
    if requesting.pk == target.pk:
        raise ValidationError('a hospital cannot request sharing with itself', kind='self_sharing')
    if not (reason or '').strip():
        raise ValidationError({'reason': 'a reason for the request is required'})
    if HospitalSharing.objects.filter(requesting_hospital=requesting, target_hospital=target).exists():
        raise DuplicateError('a sharing record already exists for this hospital pair', kind='duplicate_request')
    if not target.is_usable():
        raise ValidationError('target hospital is not approved or not active', kind='target_not_usable')

    patients = []
    if scope == HospitalSharing.SCOPE_LIMITED:
        patients = list(User.objects.filter(pk__in=patient_ids or [], role=Role.PATIENT, hospital=target))
        if not patients:
            raise ValidationError({'patientIds': 'limited scope needs at least one patient of the target hospital'})

    fields = {attr: bool(permissions[key]) for key, attr in PERMISSION_FIELDS.items()
              if permissions and key in permissions}
    try:
        with transaction.atomic():
            record = HospitalSharing.objects.create(
                requesting_hospital=requesting,
                target_hospital=target,
                request_reason=reason.strip(),
                requested_by=actor,
                scope=scope,
                **fields,
            )
            if patients:
                record.specific_patients.set(patients)
    except IntegrityError:
        raise DuplicateError('a sharing record already exists for this hospital pair', kind='duplicate_request')

    log_action(user=actor, action='sharing_request', resource_type='hospital_sharing', resource_id=record.id,
               hospital_id=requesting.id, detail={'target': target.id, 'scope': scope}, request=request)
    return record


def approve(record: HospitalSharing, approver: User, *, expires_at=None, notes: str = '',
            request=None) -> HospitalSharing:
    if record.status != HospitalSharing.STATUS_PENDING:
        raise StateConflictError(f'sharing record is {record.status}, expected pending', kind='not_pending')
    requesting = Hospital.objects.get(pk=record.requesting_hospital_id)
    target = Hospital.objects.get(pk=record.target_hospital_id)
    if not (requesting.can_share_records() and target.can_share_records()):
        raise StateConflictError(
            'both hospitals must be approved, active and have cross-hospital sharing enabled',
            kind='hospitals_not_eligible',
        )
    now = timezone.now()
    if expires_at and expires_at <= now:
        raise ValidationError({'expiresAt': 'must be in the future'})
    changed = HospitalSharing.objects.filter(pk=record.pk, status=HospitalSharing.STATUS_PENDING).update(
        status=HospitalSharing.STATUS_APPROVED,
        approved_by=approver,
        approved_at=now,
        expires_at=expires_at,
        is_active=True,
        admin_notes=notes or F('admin_notes'),
        updated_at=now,
    )
    if not changed:
        raise _conflict_for(record.pk, HospitalSharing.STATUS_PENDING)
    record.refresh_from_db()
    log_action(user=approver, action='sharing_approve', resource_type='hospital_sharing', resource_id=record.id,
               hospital_id=record.target_hospital_id,
               detail={'expiresAt': expires_at.isoformat() if expires_at else None}, request=request)
    return record


def reject(record: HospitalSharing, approver: User, reason: str, request=None) -> HospitalSharing:
    if not (reason or '').strip():
        raise ValidationError({'reason': 'rejection reason is required'})
    now = timezone.now()
    changed = HospitalSharing.objects.filter(pk=record.pk, status=HospitalSharing.STATUS_PENDING).update(
        status=HospitalSharing.STATUS_REJECTED,
        rejected_at=now,
        rejection_reason=reason.strip(),
        approved_by=approver,
        is_active=False,
        updated_at=now,
    )
    if not changed:
        raise _conflict_for(record.pk, HospitalSharing.STATUS_PENDING)
    record.refresh_from_db()
    log_action(user=approver, action='sharing_reject', resource_type='hospital_sharing', resource_id=record.id,
               hospital_id=record.target_hospital_id, detail={'reason': reason}, request=request)
    return record


def revoke(record: HospitalSharing, approver: User, reason: str, request=None) -> HospitalSharing:
    """Terminal: a revoked grant is never reactivated."""
    if not (reason or '').strip():
        raise ValidationError({'reason': 'revocation reason is required'})
    now = timezone.now()
    changed = HospitalSharing.objects.filter(pk=record.pk, status=HospitalSharing.STATUS_APPROVED).update(
        status=HospitalSharing.STATUS_REVOKED,
        revoked_at=now,
        revocation_reason=reason.strip(),
        is_active=False,
        updated_at=now,
    )
    if not changed:
        raise _conflict_for(record.pk, HospitalSharing.STATUS_APPROVED)
    record.refresh_from_db()
    log_action(user=approver, action='sharing_revoke', resource_type='hospital_sharing', resource_id=record.id,
               hospital_id=record.target_hospital_id, detail={'reason': reason}, request=request)
    return record


def cancel(record: HospitalSharing, actor: User, request=None) -> None:
    """The requesting hospital withdraws its own request while still pending."""
    if actor.role != Role.SUPER_ADMIN and actor.hospital_id != record.requesting_hospital_id:
        raise AuthorizationError('only the requesting hospital can cancel this request', kind='not_requester')
    deleted, _ = HospitalSharing.objects.filter(pk=record.pk, status=HospitalSharing.STATUS_PENDING).delete()
    if not deleted:
        raise _conflict_for(record.pk, HospitalSharing.STATUS_PENDING)
    log_action(user=actor, action='sharing_cancel', resource_type='hospital_sharing', resource_id=record.pk,
               hospital_id=record.requesting_hospital_id, request=request)


def _deactivate_if_expired(record: HospitalSharing) -> None:
    if record.is_active and record.is_expired:
        HospitalSharing.objects.filter(pk=record.pk, is_active=True).update(is_active=False)
        record.is_active = False
        logger.info('sharing grant %s expired and was deactivated', record.pk)


def active_grant(requesting_id: Optional[int], target_id: Optional[int]) -> Optional[HospitalSharing]:
    """The approved, active, unexpired grant for the ordered pair, if any."""
    if not requesting_id or not target_id or requesting_id == target_id:
        return None
    record = HospitalSharing.objects.filter(
        requesting_hospital_id=requesting_id, target_hospital_id=target_id
    ).first()
    if record is None:
        return None
    _deactivate_if_expired(record)
    return record if record.grants_access else None


def can_access(requesting_id: Optional[int], target_id: Optional[int]) -> bool:
    return active_grant(requesting_id, target_id) is not None


def record_access(grant: HospitalSharing) -> None:
    HospitalSharing.objects.filter(pk=grant.pk).update(
        access_count=F('access_count') + 1, last_accessed_at=timezone.now()
    )


def accessible_hospitals(hospital_id: int):
    now = timezone.now()
    return (
        HospitalSharing.objects.filter(
            requesting_hospital_id=hospital_id,
            status=HospitalSharing.STATUS_APPROVED,
            is_active=True,
        )
        .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
        .select_related('target_hospital')
    )


def requests_by(hospital_id: int):
    return HospitalSharing.objects.filter(requesting_hospital_id=hospital_id).select_related(
        'requesting_hospital', 'target_hospital'
    ).order_by('-requested_at')


def requests_for(hospital_id: int):
    return HospitalSharing.objects.filter(target_hospital_id=hospital_id).select_related(
        'requesting_hospital', 'target_hospital'
    ).order_by('-requested_at')


def list_records(*, status: Optional[str] = None, hospital_id: Optional[int] = None):
    qs = HospitalSharing.objects.select_related('requesting_hospital', 'target_hospital')
    if status:
        qs = qs.filter(status=status)
    if hospital_id:
        qs = qs.filter(Q(requesting_hospital_id=hospital_id) | Q(target_hospital_id=hospital_id))
    return qs.order_by('-requested_at')


def deactivate_expired() -> int:
    return HospitalSharing.objects.filter(
        is_active=True, expires_at__isnull=False, expires_at__lte=timezone.now()
    ).update(is_active=False)
