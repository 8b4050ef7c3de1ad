import pytest
from rest_framework.test import APIClient

from records.exceptions import AuthorizationError, StateConflictError, ValidationError
from records.models import AuditEvent, Role, User
from records.services import approvals

from conftest import PASSWORD

pytestmark = pytest.mark.django_db


@pytest.fixture
def applicant(make_user, h1):
    return make_user(Role.PENDING_APPROVAL, h1, approval_status=User.APPROVAL_PENDING, applied_role=Role.DOCTOR,
                     license_number='MD-77')


def test_pending_applications_are_scoped_to_hospital(applicant, admin1, admin2, super_admin):
    assert list(approvals.pending_applications(admin1)) == [applicant]
    assert list(approvals.pending_applications(admin2)) == []
    assert list(approvals.pending_applications(super_admin)) == [applicant]


def test_approve_applies_requested_role(applicant, admin1):
    user = approvals.approve_user(admin1, applicant, notes='license checked')
    assert user.role == Role.DOCTOR
    assert user.approval_status == User.APPROVAL_APPROVED
    assert user.approved_by == admin1
    assert user.verification_notes == 'license checked'


def test_admin_of_another_hospital_cannot_approve(applicant, admin2):
    with pytest.raises(AuthorizationError) as exc:
        approvals.approve_user(admin2, applicant)
    assert exc.value.kind == 'wrong_hospital'


def test_doctors_cannot_approve(applicant, doctor1):
    with pytest.raises(AuthorizationError) as exc:
        approvals.approve_user(doctor1, applicant)
    assert exc.value.kind == 'not_admin'


def test_admin_roles_cannot_be_granted(applicant, admin1):
    with pytest.raises(ValidationError) as exc:
        approvals.approve_user(admin1, applicant, role='hospital_admin')
    assert exc.value.kind == 'role_not_allowed'


def test_department_staff_need_a_department(applicant, admin1):
    with pytest.raises(ValidationError) as exc:
        approvals.approve_user(admin1, applicant, role='department_staff')
    assert exc.value.kind == 'department_required'


def test_second_decision_conflicts(applicant, admin1, super_admin):
    stale = User.objects.get(pk=applicant.pk)
    approvals.approve_user(admin1, applicant)
    with pytest.raises(StateConflictError) as exc:
        approvals.reject_user(super_admin, stale, 'too late')
    assert exc.value.kind == 'not_pending'
    assert User.objects.get(pk=applicant.pk).role == Role.DOCTOR


def test_reject_deactivates_applicant(applicant, admin1):
    user = approvals.reject_user(admin1, applicant, 'license not verifiable')
    assert user.approval_status == User.APPROVAL_REJECTED
    assert user.is_active is False
    assert user.rejection_reason == 'license not verifiable'


def test_deactivation_revokes_sessions(admin1, doctor1):
    refresh = APIClient().post('/api/auth/login', {'email': doctor1.email, 'password': PASSWORD},
                               format='json').data['refreshToken']
    approvals.set_user_active(admin1, doctor1, False)
    r = APIClient().post('/api/auth/refresh', {'refreshToken': refresh}, format='json')
    assert r.status_code == 401


def test_admin_cannot_deactivate_self(admin1):
    with pytest.raises(ValidationError):
        approvals.set_user_active(admin1, admin1, False)


def test_hospital_admin_cannot_touch_super_admin(admin1, super_admin):
    with pytest.raises(AuthorizationError):
        approvals.set_user_active(admin1, super_admin, False)


def test_approval_over_http_then_login_works(client_for, applicant, admin1):
    r = client_for(admin1).get('/api/admin/pending-approvals')
    assert [a['id'] for a in r.data['applications']] == [applicant.id]
    r = client_for(admin1).post(f'/api/admin/approve/{applicant.id}', {}, format='json')
    assert r.status_code == 200, r.data
    assert r.data['user']['role'] == Role.DOCTOR
    login = APIClient().post('/api/auth/login', {'email': applicant.email, 'password': PASSWORD}, format='json')
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['accessToken']}")
    assert client.get('/api/patients').status_code == 200


def test_user_list_filters(client_for, admin1, doctor1, nurse1, patient2):
    r = client_for(admin1).get('/api/admin/users', {'role': 'doctor'})
    assert [u['id'] for u in r.data['users']] == [doctor1.id]
    r = client_for(admin1).get('/api/admin/users')
    ids = {u['id'] for u in r.data['users']}
    assert patient2.id not in ids
    assert {doctor1.id, nurse1.id} <= ids


def test_status_endpoint(client_for, admin1, nurse1):
    r = client_for(admin1).put(f'/api/admin/users/{nurse1.id}/status', {'isActive': False}, format='json')
    assert r.status_code == 200
    nurse1.refresh_from_db()
    assert nurse1.is_active is False


# -- patients ---------------------------------------------------------------

def test_search_within_own_hospital(client_for, doctor1, patient1, patient2):
    r = client_for(doctor1).get('/api/patients/search', {'q': 'love'})
    assert [p['id'] for p in r.data['patients']] == [patient1.id]
    r = client_for(doctor1).get('/api/patients/search', {'q': 'hopper'})
    assert r.data['patients'] == []


def test_search_by_phone(client_for, nurse1, patient1):
    r = client_for(nurse1).get('/api/patients/search', {'q': '555-12'})
    assert [p['id'] for p in r.data['patients']] == [patient1.id]


def test_short_search_rejected(client_for, doctor1):
    r = client_for(doctor1).get('/api/patients/search', {'q': 'a'})
    assert r.status_code == 400
    assert r.data['error']['code'] == 'query_too_short'


def test_patients_cannot_list_patients(client_for, patient1):
    r = client_for(patient1).get('/api/patients')
    assert r.status_code == 403


def test_patient_list_paginates(client_for, doctor1, make_user, h1):
    for _ in range(3):
        make_user('patient', h1)
    r = client_for(doctor1).get('/api/patients', {'pageSize': 2})
    assert r.data['total'] == 3
    assert len(r.data['patients']) == 2


def test_patient_detail_goes_through_authorizer(client_for, doctor1, patient2, grant_h1_h2):
    assert client_for(doctor1).get(f'/api/patients/{patient2.id}').status_code == 200
    grant_h1_h2.is_active = False
    grant_h1_h2.save()
    assert client_for(doctor1).get(f'/api/patients/{patient2.id}').status_code == 403


def test_staff_registration_returns_temporary_password(client_for, nurse1, h1):
    r = client_for(nurse1).post('/api/patients/register', {
        'email': 'walkin@example.test', 'firstName': 'Walk', 'lastName': 'In',
    }, format='json')
    assert r.status_code == 201, r.data
    temp = r.data['temporaryPassword']
    patient = User.objects.get(email='walkin@example.test')
    assert patient.hospital_id == h1.id
    assert patient.check_password(temp)


def test_staff_registration_rejects_existing_email(client_for, nurse1, patient1):
    r = client_for(nurse1).post('/api/patients/register', {
        'email': patient1.email, 'firstName': 'Dup', 'lastName': 'Licate',
    }, format='json')
    assert r.status_code == 409


# -- audit trail ------------------------------------------------------------

def test_audit_visibility(client_for, doctor1, doctor2, admin1, admin2, patient2, record2, grant_h1_h2, super_admin):
    client_for(doctor1).get(f'/api/medical-records/patient/{patient2.id}')
    assert AuditEvent.objects.filter(action='authorize_read', outcome='allow').exists()

    r = client_for(patient2).get('/api/audit-logs')
    assert r.status_code == 200
    assert r.data['events']
    assert all(e['patientId'] == patient2.id for e in r.data['events'])

    r = client_for(admin2).get('/api/audit-logs', {'action': 'authorize_read'})
    assert r.data['events']
    assert client_for(admin1).get('/api/audit-logs', {'action': 'authorize_read'}).data['events'] == []

    assert client_for(doctor2).get('/api/audit-logs').status_code == 403
    assert client_for(super_admin).get('/api/audit-logs').status_code == 200
