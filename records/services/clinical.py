"""
Clinical artifacts: medical records, prescriptions and test results.

All three share one shape (patient, author, owning hospital), so they are
described by an :class:`Artifact` entry and handled by the same create /
update / list functions.  Every path goes through the authorizer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import models, transaction

from records.exceptions import NotFoundError, ValidationError
from records.models import Department, MedicalRecord, Prescription, Role, TestResult, User
from records.services import authorizer
from records.services.audit import log_action
from records.services.storage import blob_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Artifact:
    model: type[models.Model]
    kind: str
    author_field: str
    date_field: str
    creator_roles: frozenset
    fields: dict


MEDICAL_RECORDS = Artifact(
    model=MedicalRecord,
    kind=authorizer.MEDICAL_RECORD,
    author_field='doctor',
    date_field='visit_date',
    creator_roles=frozenset({Role.DOCTOR.value, Role.HOSPITAL_ADMIN.value}),
    fields={
        'visitDate': 'visit_date',
        'visitType': 'visit_type',
        'diagnosis': 'diagnosis',
        'symptoms': 'symptoms',
        'treatment': 'treatment',
        'notes': 'notes',
        'vitalSigns': 'vital_signs',
    },
)

PRESCRIPTIONS = Artifact(
    model=Prescription,
    kind=authorizer.PRESCRIPTION,
    author_field='doctor',
    date_field='prescribed_date',
    creator_roles=frozenset({Role.DOCTOR.value}),
    fields={
        'medicationName': 'medication_name',
        'dosage': 'dosage',
        'frequency': 'frequency',
        'duration': 'duration',
        'instructions': 'instructions',
        'prescribedDate': 'prescribed_date',
        'isActive': 'is_active',
    },
)

TEST_RESULTS = Artifact(
    model=TestResult,
    kind=authorizer.TEST_RESULT,
    author_field='ordered_by',
    date_field='test_date',
    creator_roles=frozenset({Role.DOCTOR.value, Role.NURSE.value, Role.HOSPITAL_ADMIN.value}),
    fields={
        'testName': 'test_name',
        'testType': 'test_type',
        'testDate': 'test_date',
        'result': 'result',
        'normalRange': 'normal_range',
        'abnormalFlag': 'abnormal_flag',
        'notes': 'notes',
    },
)


def _patient(patient_id) -> User:
    patient = User.objects.filter(pk=patient_id, role=Role.PATIENT).first()
    if patient is None:
        raise NotFoundError('patient not found')
    return patient


def _department(department_id, hospital_id) -> Optional[Department]:
    if not department_id:
        return None
    dept = Department.objects.filter(pk=department_id, hospital_id=hospital_id, is_active=True).first()
    if dept is None:
        raise ValidationError({'departmentId': 'department does not belong to this hospital'})
    return dept


def _resource(artifact: Artifact, obj) -> authorizer.PatientResource:
    return authorizer.PatientResource.of(artifact.kind, obj, author_field=artifact.author_field)


def get_artifact(artifact: Artifact, pk):
    obj = artifact.model.objects.select_related('patient', 'hospital').filter(pk=pk).first()
    if obj is None:
        raise NotFoundError(f"{artifact.kind.replace('_', ' ')} not found")
    return obj


def create(artifact: Artifact, actor: User, data: dict, request=None):
    patient = _patient(data['patientId'])
    # walk-in patients without a home hospital are charted at the author's hospital
    hospital_id = patient.hospital_id or actor.hospital_id
    resource = authorizer.PatientResource.for_patient(patient, artifact.kind, hospital_id=hospital_id)
    authorizer.authorize_write(actor, resource, creating=True, creator_roles=artifact.creator_roles,
                               request=request)

    obj = artifact.model(patient=patient, hospital_id=hospital_id,
                         department=_department(data.get('departmentId'), hospital_id))
    setattr(obj, artifact.author_field, actor)
    for key, attr in artifact.fields.items():
        if key in data and data[key] is not None:
            setattr(obj, attr, data[key])
    obj.save()
    log_action(user=actor, action=f'{artifact.kind}_create', resource_type=artifact.kind, resource_id=obj.pk,
               patient_id=patient.id, hospital_id=hospital_id, request=request)
    return obj


def update(artifact: Artifact, actor: User, obj, data: dict, request=None):
    authorizer.authorize_write(actor, _resource(artifact, obj), request=request)
    changed = []
    for key, attr in artifact.fields.items():
        if key in data:
            setattr(obj, attr, data[key])
            changed.append(attr)
    if 'departmentId' in data:
        obj.department = _department(data['departmentId'], obj.hospital_id)
        changed.append('department')
    if changed:
        obj.save(update_fields=changed + ['updated_at'])
        log_action(user=actor, action=f'{artifact.kind}_update', resource_type=artifact.kind,
                   resource_id=obj.pk, patient_id=obj.patient_id, hospital_id=obj.hospital_id,
                   detail={'fields': changed}, request=request)
    return obj


def list_for_patient(artifact: Artifact, actor: User, patient: User, request=None) -> list:
    """The patient's artifacts of one kind that ``actor`` may read.

    Medical records read through a grant without ``can_view_diagnosis``
    come back with ``diagnosis_hidden`` set.
    """
    qs = (
        artifact.model.objects.filter(patient=patient)
        .select_related(artifact.author_field, 'hospital', 'department')
        .order_by(f'-{artifact.date_field}')
    )
    qs, decisions = authorizer.filter_readable(actor, patient, artifact.kind, qs, request=request)
    hidden = {
        hid for hid, d in decisions.items()
        if d.grant is not None and not d.grant.can_view_diagnosis
    } if artifact is MEDICAL_RECORDS else set()
    items = list(qs)
    for obj in items:
        obj.diagnosis_hidden = obj.hospital_id in hidden
    return items


def attach_result_file(actor: User, result: TestResult, f, request=None) -> TestResult:
    """Store a report file for a test result, replacing any previous one."""
    authorizer.authorize_write(actor, _resource(TEST_RESULTS, result), request=request)
    stored = blob_store.put(f, owner_id=result.patient_id, folder='test-results')
    previous = result.file_url
    try:
        with transaction.atomic():
            result.file_url = stored['url']
            result.save(update_fields=['file_url', 'updated_at'])
    except Exception:
        blob_store.delete(stored['url'])
        raise
    if previous and previous != stored['url']:
        blob_store.delete(previous)
    log_action(user=actor, action='test_result_upload', resource_type=TEST_RESULTS.kind, resource_id=result.pk,
               patient_id=result.patient_id, hospital_id=result.hospital_id,
               detail={'contentType': stored['contentType'], 'size': stored['size']}, request=request)
    logger.info('file attached to test result %s', result.pk)
    return result
