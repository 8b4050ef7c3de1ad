import os
import subprocess
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from django.core.management import call_command
from django.utils import timezone
from rest_framework.test import APIClient

from records.exceptions import AuthorizationError, StateConflictError, ValidationError
from records.models import Department, Hospital, Role, User
from records.services import tenants

from conftest import PASSWORD

pytestmark = pytest.mark.django_db


def _registration(**extra):
    data = {
        'name': 'St. Elsewhere',
        'registrationNumber': 'SE-001',
        'email': 'contact@elsewhere.test',
        'phone': '555-0199',
        'address': {'city': 'Boston', 'country': 'US'},
        'admin': {'email': 'chief@elsewhere.test', 'password': PASSWORD, 'firstName': 'Donald',
                  'lastName': 'Westphall'},
    }
    data.update(extra)
    return data


def test_register_creates_pending_hospital_and_admin():
    r = APIClient().post('/api/hospitals/register', _registration(), format='json')
    assert r.status_code == 201, r.data
    hospital = Hospital.objects.get(pk=r.data['hospital']['id'])
    assert hospital.approval_status == Hospital.APPROVAL_PENDING
    assert hospital.subscription_status == Hospital.SUB_PENDING
    assert not hospital.is_usable()
    admin = User.objects.get(email='chief@elsewhere.test')
    assert admin.role == Role.HOSPITAL_ADMIN
    assert admin.hospital_id == hospital.id
    assert hospital.admin_user_id == admin.id
    assert hospital.city == 'Boston'


def test_register_refuses_duplicates(h1):
    r = APIClient().post('/api/hospitals/register', _registration(name=h1.name), format='json')
    assert r.status_code == 409
    assert r.data['error']['code'] == 'duplicate_hospital'


def test_approve_makes_hospital_usable(super_admin, client_for):
    hospital = tenants.register_hospital(_registration())
    r = client_for(super_admin).post(f'/api/hospitals/{hospital.id}/approve',
                                     {'subscriptionPlan': 'premium'}, format='json')
    assert r.status_code == 200, r.data
    hospital.refresh_from_db()
    assert hospital.is_usable()
    assert hospital.subscription_plan == 'premium'
    assert hospital.approved_by == super_admin
    assert hospital.subscription_start_date is not None


def test_approving_twice_conflicts(super_admin, h1):
    with pytest.raises(StateConflictError) as exc:
        tenants.approve_hospital(h1, super_admin)
    assert exc.value.kind == 'already_approved'


def test_approve_rejects_past_expiry(super_admin):
    hospital = tenants.register_hospital(_registration())
    with pytest.raises(ValidationError):
        tenants.approve_hospital(hospital, super_admin, expiry=timezone.now() - timedelta(days=1))


def test_reject_deactivates(super_admin, client_for):
    hospital = tenants.register_hospital(_registration())
    r = client_for(super_admin).post(f'/api/hospitals/{hospital.id}/reject', {'reason': 'unlicensed'},
                                     format='json')
    assert r.status_code == 200
    hospital.refresh_from_db()
    assert hospital.approval_status == Hospital.APPROVAL_REJECTED
    assert hospital.is_active is False
    assert hospital.rejection_reason == 'unlicensed'


def test_hospital_admin_cannot_approve_hospitals(admin1, client_for):
    hospital = tenants.register_hospital(_registration())
    r = client_for(admin1).post(f'/api/hospitals/{hospital.id}/approve', {}, format='json')
    assert r.status_code == 403


def test_subscription_expiry_flips_status(h1):
    Hospital.objects.filter(pk=h1.pk).update(subscription_expiry=timezone.now() - timedelta(minutes=1))
    h1.refresh_from_db()
    assert not h1.is_usable()
    assert Hospital.objects.get(pk=h1.pk).subscription_status == Hospital.SUB_EXPIRED


def test_settings_update_by_super_admin(super_admin, client_for, h1):
    r = client_for(super_admin).put(f'/api/hospitals/{h1.id}/settings',
                                    {'allowCrossHospitalSharing': False, 'allowTelemedicine': True}, format='json')
    assert r.status_code == 200
    h1.refresh_from_db()
    assert h1.allow_cross_hospital_sharing is False
    assert h1.allow_telemedicine is True


def test_my_hospital_edit_is_admin_only(client_for, admin1, doctor1):
    assert client_for(doctor1).get('/api/hospitals/my-hospital').status_code == 200
    r = client_for(doctor1).put('/api/hospitals/my-hospital', {'phone': '555-9999'}, format='json')
    assert r.status_code == 403
    r = client_for(admin1).put('/api/hospitals/my-hospital', {'phone': '555-9999'}, format='json')
    assert r.status_code == 200
    assert r.data['hospital']['phone'] == '555-9999'


def test_stats_count_active_members(client_for, admin1, doctor1, nurse1, patient1, lab1):
    r = client_for(admin1).get('/api/hospitals/my-hospital/stats')
    assert r.status_code == 200
    stats = r.data['stats']
    assert stats['totalDoctors'] == 1
    assert stats['totalNurses'] == 1
    assert stats['totalPatients'] == 1
    assert stats['totalDepartments'] == 1


# -- departments ----------------------------------------------------------

def test_admin_creates_department_in_own_hospital(client_for, admin1, h1):
    r = client_for(admin1).post('/api/departments', {'name': 'Cardiology', 'code': 'card', 'type': 'cardiology'},
                                format='json')
    assert r.status_code == 201, r.data
    dept = Department.objects.get(pk=r.data['department']['id'])
    assert dept.hospital_id == h1.id
    assert dept.code == 'CARD'


def test_department_code_is_unique_per_hospital(client_for, admin1, lab1, lab2):
    r = client_for(admin1).post('/api/departments', {'name': 'Lab B', 'code': 'LAB', 'type': 'laboratory'},
                                format='json')
    assert r.status_code == 409
    # the same code in another hospital is fine
    assert lab2.code == lab1.code


def test_doctor_cannot_create_departments(client_for, doctor1):
    r = client_for(doctor1).post('/api/departments', {'name': 'X', 'code': 'x', 'type': 'other'}, format='json')
    assert r.status_code == 403


def test_departments_list_only_own_hospital(client_for, doctor1, lab1, radiology1, lab2):
    r = client_for(doctor1).get('/api/departments')
    ids = {d['id'] for d in r.data['departments']}
    assert ids == {lab1.id, radiology1.id}
    assert client_for(doctor1).get(f'/api/departments/{lab2.id}').status_code == 404


def test_admin_of_other_hospital_cannot_edit(admin2, lab1):
    with pytest.raises(AuthorizationError):
        tenants.update_department(admin2, lab1, {'name': 'Hijacked'})


def test_delete_refused_while_staff_assigned(client_for, admin1, staff1, lab1):
    r = client_for(admin1).delete(f'/api/departments/{lab1.id}')
    assert r.status_code == 409
    assert r.data['error']['code'] == 'department_has_staff'
    User.objects.filter(pk=staff1.pk).update(is_active=False)
    assert client_for(admin1).delete(f'/api/departments/{lab1.id}').status_code == 200
    lab1.refresh_from_db()
    assert lab1.is_active is False


def test_department_login_needs_credentials(admin1, h1):
    with pytest.raises(ValidationError):
        tenants.create_department(admin1, h1, {'name': 'Pharmacy', 'code': 'ph', 'type': 'pharmacy',
                                               'loginEnabled': True})


def test_assign_head_must_be_doctor_in_department(client_for, admin1, doctor1, nurse1, radiology1):
    User.objects.filter(pk__in=[doctor1.pk, nurse1.pk]).update(department=radiology1)
    r = client_for(admin1).post(f'/api/departments/{radiology1.id}/assign-head', {'headId': nurse1.id},
                                format='json')
    assert r.status_code == 400
    r = client_for(admin1).post(f'/api/departments/{radiology1.id}/assign-head', {'headId': doctor1.id},
                                format='json')
    assert r.status_code == 200
    assert r.data['department']['headId'] == doctor1.id


def test_department_not_operational_when_hospital_suspended(lab1, h1):
    assert tenants.is_operational(lab1)
    Hospital.objects.filter(pk=h1.pk).update(subscription_status=Hospital.SUB_SUSPENDED)
    lab1 = Department.objects.select_related('hospital').get(pk=lab1.pk)
    assert not tenants.is_operational(lab1)


# -- management commands --------------------------------------------------

def test_system_check_loads_urls_and_api_settings():
    # resolves every route, view module and the DRF auth/exception settings
    call_command('check')


@pytest.mark.parametrize('first', ['records.exceptions', 'records.authentication', 'records.services.identity'])
def test_modules_import_in_any_order(first):
    root = Path(__file__).resolve().parents[2]
    code = f'import django; django.setup(); import {first}; import rest_framework.views; import healthvault.urls'
    env = {**os.environ, 'DJANGO_SETTINGS_MODULE': 'healthvault.settings',
           'PYTHONPATH': os.pathsep.join(filter(None, [str(root), os.environ.get('PYTHONPATH')]))}
    proc = subprocess.run([sys.executable, '-c', code], cwd=root, env=env, capture_output=True, text=True)
    assert proc.returncode == 0, proc.stderr


def test_ensure_super_admin_is_idempotent():
    call_command('ensure_super_admin', email='ops@platform.test', password=PASSWORD)
    call_command('ensure_super_admin', email='ops@platform.test', password=PASSWORD)
    admins = User.objects.filter(email='ops@platform.test')
    assert admins.count() == 1
    assert admins.get().role == Role.SUPER_ADMIN


def test_refresh_hospital_stats_expires_lapsed_state(h1, grant_h1_h2, doctor1):
    Hospital.objects.filter(pk=h1.pk).update(subscription_expiry=timezone.now() - timedelta(days=1))
    grant_h1_h2.expires_at = timezone.now() - timedelta(days=1)
    grant_h1_h2.save()
    call_command('refresh_hospital_stats')
    h1.refresh_from_db()
    grant_h1_h2.refresh_from_db()
    assert h1.subscription_status == Hospital.SUB_EXPIRED
    assert grant_h1_h2.is_active is False
