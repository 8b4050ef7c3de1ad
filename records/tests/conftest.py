"""
Shared fixtures: two usable, sharing-enabled hospitals (H1, H2) with a
department each, users of every role, and API clients.
"""
import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from records.models import Department, Hospital, HospitalSharing, MedicalRecord, Role, User
from records.services.identity import issue_tokens

PASSWORD = 'Str0ng-Passw0rd!'


@pytest.fixture(autouse=True)
def _isolated(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path / 'media')
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def make_hospital(db):
    def _make(name, *, usable=True, sharing=True, **extra):
        now = timezone.now()
        fields = {
            'name': name,
            'registration_number': f'REG-{name}',
            'email': f'{name.lower().replace(" ", "")}@hospital.test',
            'phone': '555-0100',
            'allow_cross_hospital_sharing': sharing,
        }
        if usable:
            fields.update(
                approval_status=Hospital.APPROVAL_APPROVED,
                subscription_status=Hospital.SUB_ACTIVE,
                approved_at=now,
                subscription_start_date=now,
            )
        fields.update(extra)
        return Hospital.objects.create(**fields)
    return _make


@pytest.fixture
def make_user(db):
    counter = {'n': 0}

    def _make(role, hospital=None, department=None, **extra):
        role = str(role)
        counter['n'] += 1
        extra.setdefault('email', f'{role}{counter["n"]}@example.test')
        extra.setdefault('first_name', role.title())
        extra.setdefault('last_name', f'N{counter["n"]}')
        return User.objects.create_user(password=PASSWORD, role=role, hospital=hospital,
                                        department=department, **extra)
    return _make


@pytest.fixture
def h1(make_hospital):
    return make_hospital('General One')


@pytest.fixture
def h2(make_hospital):
    return make_hospital('General Two')


@pytest.fixture
def lab1(h1):
    return Department.objects.create(hospital=h1, name='Laboratory', code='lab', type='laboratory')


@pytest.fixture
def radiology1(h1):
    return Department.objects.create(hospital=h1, name='Radiology', code='rad', type='radiology')


@pytest.fixture
def lab2(h2):
    return Department.objects.create(hospital=h2, name='Laboratory', code='lab', type='laboratory')


@pytest.fixture
def super_admin(db):
    return User.objects.create_superuser(email='root@platform.test', password=PASSWORD)


@pytest.fixture
def admin1(make_user, h1):
    return make_user(Role.HOSPITAL_ADMIN, h1)


@pytest.fixture
def admin2(make_user, h2):
    return make_user(Role.HOSPITAL_ADMIN, h2)


@pytest.fixture
def doctor1(make_user, h1):
    return make_user(Role.DOCTOR, h1)


@pytest.fixture
def doctor2(make_user, h2):
    return make_user(Role.DOCTOR, h2)


@pytest.fixture
def nurse1(make_user, h1):
    return make_user(Role.NURSE, h1)


@pytest.fixture
def staff1(make_user, h1, lab1):
    return make_user(Role.DEPARTMENT_STAFF, h1, lab1, department_role='lab_technician')


@pytest.fixture
def patient1(make_user, h1):
    return make_user(Role.PATIENT, h1, first_name='Ada', last_name='Lovelace', phone='555-1234')


@pytest.fixture
def patient2(make_user, h2):
    return make_user(Role.PATIENT, h2, first_name='Grace', last_name='Hopper')


@pytest.fixture
def record2(patient2, doctor2, h2):
    """A medical record owned by H2."""
    return MedicalRecord.objects.create(patient=patient2, doctor=doctor2, hospital=h2,
                                        diagnosis='Hypertension', treatment='Lisinopril')


@pytest.fixture
def grant_h1_h2(h1, h2, admin1, super_admin):
    """An approved, unexpired H1 -> H2 grant."""
    return HospitalSharing.objects.create(
        requesting_hospital=h1, target_hospital=h2, request_reason='referrals',
        requested_by=admin1, status=HospitalSharing.STATUS_APPROVED, approved_by=super_admin,
        approved_at=timezone.now(), is_active=True,
    )


@pytest.fixture
def client_for():
    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _client


@pytest.fixture
def bearer():
    """Client that authenticates through the real bearer-token path."""
    def _client(user):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {issue_tokens(user)['accessToken']}")
        return client
    return _client
