from datetime import timedelta

import pytest
from django.utils import timezone

from records.exceptions import (
    AuthorizationError, DuplicateError, StateConflictError, ValidationError,
)
from records.models import Hospital, HospitalSharing
from records.services import sharing

pytestmark = pytest.mark.django_db


def test_request_creates_pending_record(h1, h2, admin1):
    rec = sharing.request_sharing(h1, h2, 'joint referrals', actor=admin1)
    assert rec.status == HospitalSharing.STATUS_PENDING
    assert rec.requested_by == admin1
    assert not sharing.can_access(h1.id, h2.id)


def test_request_with_self_is_rejected(h1, admin1):
    with pytest.raises(ValidationError) as exc:
        sharing.request_sharing(h1, h1, 'why not', actor=admin1)
    assert exc.value.kind == 'self_sharing'


def test_duplicate_request_for_same_pair(h1, h2, admin1):
    sharing.request_sharing(h1, h2, 'first', actor=admin1)
    with pytest.raises(DuplicateError):
        sharing.request_sharing(h1, h2, 'second', actor=admin1)


def test_reverse_direction_is_a_separate_pair(h1, h2, admin1, admin2):
    sharing.request_sharing(h1, h2, 'first', actor=admin1)
    rec = sharing.request_sharing(h2, h1, 'other way', actor=admin2)
    assert rec.requesting_hospital_id == h2.id


def test_target_must_be_usable(h1, make_hospital, admin1):
    pending = make_hospital('Pending Clinic', usable=False)
    with pytest.raises(ValidationError) as exc:
        sharing.request_sharing(h1, pending, 'referrals', actor=admin1)
    assert exc.value.kind == 'target_not_usable'


def test_limited_scope_needs_target_patients(h1, h2, admin1, patient1, patient2):
    with pytest.raises(ValidationError):
        sharing.request_sharing(h1, h2, 'one patient', actor=admin1, scope=HospitalSharing.SCOPE_LIMITED,
                                patient_ids=[patient1.id])
    rec = sharing.request_sharing(h1, h2, 'one patient', actor=admin1, scope=HospitalSharing.SCOPE_LIMITED,
                                  patient_ids=[patient2.id])
    assert list(rec.specific_patients.all()) == [patient2]


def test_approve_grants_one_direction_only(h1, h2, admin1, super_admin):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    sharing.approve(rec, super_admin)
    assert rec.status == HospitalSharing.STATUS_APPROVED
    assert rec.approved_by == super_admin
    assert sharing.can_access(h1.id, h2.id)
    assert not sharing.can_access(h2.id, h1.id)


def test_approve_requires_both_hospitals_to_allow_sharing(h1, make_hospital, admin1, super_admin):
    closed = make_hospital('Closed Clinic', sharing=False)
    rec = sharing.request_sharing(h1, closed, 'referrals', actor=admin1)
    with pytest.raises(StateConflictError) as exc:
        sharing.approve(rec, super_admin)
    assert exc.value.kind == 'hospitals_not_eligible'
    rec.refresh_from_db()
    assert rec.status == HospitalSharing.STATUS_PENDING


def test_approve_rejects_past_expiry(h1, h2, admin1, super_admin):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    with pytest.raises(ValidationError):
        sharing.approve(rec, super_admin, expires_at=timezone.now() - timedelta(days=1))


def test_second_approval_conflicts(h1, h2, admin1, super_admin):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    stale = HospitalSharing.objects.get(pk=rec.pk)
    sharing.approve(rec, super_admin)
    with pytest.raises(StateConflictError):
        sharing.approve(stale, super_admin)


def test_reject_needs_reason_and_is_final(h1, h2, admin1, super_admin):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    with pytest.raises(ValidationError):
        sharing.reject(rec, super_admin, '  ')
    sharing.reject(rec, super_admin, 'not justified')
    assert rec.status == HospitalSharing.STATUS_REJECTED
    assert rec.is_active is False
    with pytest.raises(StateConflictError):
        sharing.approve(rec, super_admin)


def test_revoke_is_terminal(grant_h1_h2, super_admin, h1, h2):
    sharing.revoke(grant_h1_h2, super_admin, 'agreement ended')
    assert grant_h1_h2.status == HospitalSharing.STATUS_REVOKED
    assert not sharing.can_access(h1.id, h2.id)
    with pytest.raises(StateConflictError):
        sharing.revoke(grant_h1_h2, super_admin, 'again')
    with pytest.raises(StateConflictError):
        sharing.approve(grant_h1_h2, super_admin)


def test_cancel_only_by_requesting_hospital(h1, h2, admin1, admin2):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    with pytest.raises(AuthorizationError) as exc:
        sharing.cancel(rec, admin2)
    assert exc.value.kind == 'not_requester'
    sharing.cancel(rec, admin1)
    assert not HospitalSharing.objects.filter(pk=rec.pk).exists()


def test_cancel_after_approval_conflicts(grant_h1_h2, admin1):
    with pytest.raises(StateConflictError):
        sharing.cancel(grant_h1_h2, admin1)


def test_expiry_is_checked_on_every_call(grant_h1_h2, h1, h2):
    assert sharing.can_access(h1.id, h2.id)
    HospitalSharing.objects.filter(pk=grant_h1_h2.pk).update(expires_at=timezone.now() - timedelta(minutes=1))
    assert not sharing.can_access(h1.id, h2.id)


def test_deactivate_expired_sweeps_lapsed_grants(grant_h1_h2):
    HospitalSharing.objects.filter(pk=grant_h1_h2.pk).update(expires_at=timezone.now() - timedelta(minutes=1))
    assert sharing.deactivate_expired() == 1
    grant_h1_h2.refresh_from_db()
    assert grant_h1_h2.is_active is False


def test_accessible_hospitals_lists_live_grants(grant_h1_h2, h1, h2):
    assert [g.target_hospital_id for g in sharing.accessible_hospitals(h1.id)] == [h2.id]
    assert list(sharing.accessible_hospitals(h2.id)) == []


def test_suspended_target_stops_new_approvals(h1, h2, admin1, super_admin):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    Hospital.objects.filter(pk=h2.pk).update(subscription_status=Hospital.SUB_SUSPENDED)
    with pytest.raises(StateConflictError):
        sharing.approve(rec, super_admin)


# -- HTTP ---------------------------------------------------------------

def test_request_endpoint_uses_callers_hospital(client_for, admin1, h2):
    r = client_for(admin1).post('/api/hospital-sharing/request',
                                {'targetHospitalId': h2.id, 'reason': 'referrals'}, format='json')
    assert r.status_code == 201, r.data
    assert HospitalSharing.objects.filter(requesting_hospital=admin1.hospital, target_hospital=h2).exists()


def test_only_super_admin_approves(client_for, admin1, admin2, super_admin, h1, h2):
    rec = sharing.request_sharing(h1, h2, 'referrals', actor=admin1)
    r = client_for(admin2).post(f'/api/hospital-sharing/{rec.id}/approve', {}, format='json')
    assert r.status_code == 403
    r = client_for(super_admin).post(f'/api/hospital-sharing/{rec.id}/approve', {}, format='json')
    assert r.status_code == 200, r.data
    assert r.data['ok'] is True
