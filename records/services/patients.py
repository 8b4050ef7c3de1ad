"""Patient lookup and staff-side patient registration."""
from __future__ import annotations

import logging
import secrets
from typing import Optional, Tuple

from django.db import transaction
from django.db.models import Q

from records.exceptions import AuthorizationError, DuplicateError, NotFoundError, ValidationError
from records.models import CLINICAL_ROLES, Role, User
from records.services import authorizer
from records.services.audit import log_action
from records.services.identity import hash_credential

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 20


def _patients_visible_to(actor: User):
    qs = User.objects.filter(role=Role.PATIENT, is_active=True)
    if actor.role == Role.SUPER_ADMIN:
        return qs
    if actor.role not in CLINICAL_ROLES or not actor.hospital_id:
        raise AuthorizationError('only healthcare workers can look up patients', kind='not_healthcare_worker')
    return qs.filter(hospital_id=actor.hospital_id)


def search_patients(actor: User, q: str):
    q = (q or '').strip()
    if len(q) < SEARCH_MIN_LENGTH:
        raise ValidationError({'q': f'search needs at least {SEARCH_MIN_LENGTH} characters'},
                              kind='query_too_short')
    return _patients_visible_to(actor).filter(
        Q(first_name__icontains=q) | Q(last_name__icontains=q)
        | Q(email__icontains=q) | Q(phone__icontains=q)
    ).order_by('last_name', 'first_name')[:SEARCH_LIMIT]


def list_patients(actor: User):
    return _patients_visible_to(actor).order_by('-date_joined')


def get_patient(actor: User, pk, request=None) -> User:
    patient = User.objects.select_related('hospital').filter(pk=pk, role=Role.PATIENT).first()
    if patient is None:
        raise NotFoundError('patient not found')
    authorizer.authorize_read(actor, authorizer.PatientResource.for_patient(patient), request=request)
    return patient


@transaction.atomic
def register_patient(actor: User, data: dict, request=None) -> Tuple[User, Optional[str]]:
    """Register a patient into the actor's hospital.

    Returns the user and, when no password was supplied, the generated
    one so staff can hand it over.
    """
    if actor.role not in CLINICAL_ROLES or not actor.hospital_id:
        raise AuthorizationError('only hospital staff can register patients', kind='not_hospital_staff')
    email = data['email']
    if User.objects.filter(email=email).exists():
        raise DuplicateError('a user with this email already exists', kind='duplicate_email')

    patient = User(
        email=email,
        first_name=data.get('firstName', ''),
        last_name=data.get('lastName', ''),
        role=Role.PATIENT,
        approval_status=User.APPROVAL_APPROVED,
        hospital_id=actor.hospital_id,
        phone=data.get('phone', ''),
        address=data.get('address', ''),
        date_of_birth=data.get('dateOfBirth'),
        gender=data.get('gender', ''),
        blood_type=data.get('bloodType', ''),
        emergency_contact=data.get('emergencyContact', ''),
    )
    generated = None
    password = data.get('password')
    if not password:
        generated = password = secrets.token_urlsafe(12)
    hash_credential(patient, password, validate=generated is None)
    patient.save()
    log_action(user=actor, action='patient_register', resource_type='user', resource_id=patient.id,
               patient_id=patient.id, hospital_id=actor.hospital_id, request=request)
    logger.info('patient %s registered by %s', patient.id, actor.id)
    return patient, generated
