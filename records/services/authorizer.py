"""
Access authorizer: the single decision point for patient-scoped data.

Reads follow a strict priority chain, first match wins:

1. platform super admin                     -> allow
2. patient reading their own data           -> allow (any hospital)
3. hospital admin/doctor/nurse, same tenant -> allow
4. hospital admin/doctor/nurse, other tenant
   with an approved, active, unexpired grant
   that covers the resource                 -> allow
5. department staff                         -> deny (test orders only)
6. anything else                            -> deny

Writes are separate: a sharing grant never confers write access, and
patients never write clinical records.  Every decision, allow or deny,
is sent to the audit sink.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from records.exceptions import AuthorizationError
from records.models import CLINICAL_ROLES, HospitalSharing, Role, User
from records.services import sharing
from records.services.audit import log_action

# Resource kinds
PATIENT = 'patient'
MEDICAL_RECORD = 'medical_record'
PRESCRIPTION = 'prescription'
TEST_RESULT = 'test_result'
TEST_ORDER = 'test_order'

# Grant flag that must be set for a cross-tenant read of each kind
GRANT_FLAGS = {
    MEDICAL_RECORD: 'can_view_medical_records',
    PRESCRIPTION: 'can_view_prescriptions',
    TEST_RESULT: 'can_view_test_results',
    TEST_ORDER: 'can_view_test_results',
}


@dataclass(frozen=True)
class PatientResource:
    kind: str
    patient_id: int
    hospital_id: Optional[int]
    department_id: Optional[int] = None
    author_id: Optional[int] = None
    resource_id: Optional[int] = None

    @classmethod
    def for_patient(cls, patient: User, kind: str = PATIENT, hospital_id: Optional[int] = None) -> 'PatientResource':
        """A patient's data of ``kind`` held by ``hospital_id`` (defaults to the patient's hospital)."""
        return cls(kind=kind, patient_id=patient.id,
                   hospital_id=hospital_id if hospital_id is not None else patient.hospital_id)

    @classmethod
    def of(cls, kind: str, obj, *, author_field: str) -> 'PatientResource':
        return cls(
            kind=kind,
            patient_id=obj.patient_id,
            hospital_id=obj.hospital_id,
            department_id=getattr(obj, 'department_id', None),
            author_id=getattr(obj, f'{author_field}_id', None),
            resource_id=obj.pk,
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    rule: str
    reason: str
    grant: Optional[HospitalSharing] = None


def _role(actor) -> str:
    return str(getattr(actor, 'role', '') or '')


def _grant_covers(grant: HospitalSharing, resource: PatientResource) -> bool:
    flag = GRANT_FLAGS.get(resource.kind)
    if flag and not getattr(grant, flag):
        return False
    if grant.scope == HospitalSharing.SCOPE_LIMITED:
        return grant.specific_patients.filter(pk=resource.patient_id).exists()
    return True


def decide_read(actor: User, resource: PatientResource) -> Decision:
    role = _role(actor)
    hospital_id = getattr(actor, 'hospital_id', None)

    if role == Role.SUPER_ADMIN:
        return Decision(True, 'super_admin', 'super_admin')
    if role == Role.PATIENT and actor.id == resource.patient_id:
        return Decision(True, 'own_data', 'own_data')
    if role in CLINICAL_ROLES and hospital_id and hospital_id == resource.hospital_id:
        return Decision(True, 'same_tenant', 'same_tenant')
    if role in CLINICAL_ROLES and hospital_id and resource.hospital_id:
        grant = sharing.active_grant(hospital_id, resource.hospital_id)
        if grant is not None:
            if _grant_covers(grant, resource):
                return Decision(True, 'sharing_grant', 'sharing_grant', grant)
            return Decision(False, 'sharing_grant', 'outside_grant_scope', grant)
    if role == Role.DEPARTMENT_STAFF:
        return Decision(False, 'department_staff', 'department_staff_no_patient_access')
    return Decision(False, 'default', 'no_access')


def decide_write(actor: User, resource: PatientResource, *, creating: bool = False,
                 creator_roles: Optional[Iterable[str]] = None) -> Decision:
    """Create/update of clinical artifacts.

    ``creating`` checks the actor may author a new artifact in the owning
    hospital; otherwise the actor must be the author or a hospital admin
    of the owning hospital.
    """
    role = _role(actor)
    hospital_id = getattr(actor, 'hospital_id', None)

    if role == Role.SUPER_ADMIN:
        return Decision(True, 'super_admin', 'super_admin')
    if role == Role.PATIENT:
        return Decision(False, 'patient', 'patients_cannot_write')
    if role not in CLINICAL_ROLES:
        return Decision(False, 'role', 'role_cannot_write')
    if not hospital_id or hospital_id != resource.hospital_id:
        return Decision(False, 'tenant', 'cross_tenant_write')
    if creating:
        allowed = set(creator_roles) if creator_roles else CLINICAL_ROLES
        if role in allowed:
            return Decision(True, 'same_tenant_author', 'same_tenant_author')
        return Decision(False, 'role', 'role_cannot_create')
    if resource.author_id == actor.id:
        return Decision(True, 'author', 'author')
    if role == Role.HOSPITAL_ADMIN:
        return Decision(True, 'hospital_admin', 'hospital_admin')
    return Decision(False, 'author', 'not_author')


def _emit(actor: User, mode: str, resource: PatientResource, decision: Decision, request=None) -> None:
    log_action(
        user=actor,
        action=f'authorize_{mode}',
        resource_type=resource.kind,
        resource_id=resource.resource_id,
        outcome='allow' if decision.allowed else 'deny',
        patient_id=resource.patient_id,
        hospital_id=resource.hospital_id,
        detail={'rule': decision.rule, 'reason': decision.reason,
                'grantId': decision.grant.pk if decision.grant else None},
        request=request,
    )


_DENY_MESSAGES = {
    'department_staff_no_patient_access': 'department staff cannot access patient records directly',
    'outside_grant_scope': 'the sharing agreement does not cover this data',
    'patients_cannot_write': 'patients cannot modify clinical records',
    'cross_tenant_write': 'records of another hospital are read-only',
    'not_author': 'only the author or a hospital admin may modify this record',
    'role_cannot_create': 'your role cannot create this record',
}


def authorize_read(actor: User, resource: PatientResource, request=None) -> Decision:
    decision = decide_read(actor, resource)
    _emit(actor, 'read', resource, decision, request)
    if not decision.allowed:
        raise AuthorizationError(_DENY_MESSAGES.get(decision.reason, 'access denied'), kind=decision.reason)
    if decision.grant is not None:
        sharing.record_access(decision.grant)
    return decision


def filter_readable(actor: User, patient: User, kind: str, queryset, request=None):
    """Narrow a patient-scoped queryset to the hospitals ``actor`` may read.

    Each owning hospital is decided once.  Returns the filtered queryset
    and the allowing decisions keyed by hospital id; raises when nothing
    is readable.
    """
    hospital_ids = set(queryset.exclude(hospital__isnull=True).values_list('hospital_id', flat=True).distinct())
    if not hospital_ids:
        authorize_read(actor, PatientResource.for_patient(patient, kind), request)
        return queryset, {}

    allowed = {}
    last_denied = None
    for hid in sorted(hospital_ids):
        resource = PatientResource.for_patient(patient, kind, hospital_id=hid)
        decision = decide_read(actor, resource)
        _emit(actor, 'read', resource, decision, request)
        if decision.allowed:
            allowed[hid] = decision
            if decision.grant is not None:
                sharing.record_access(decision.grant)
        else:
            last_denied = decision
    if not allowed:
        reason = last_denied.reason if last_denied else 'no_access'
        raise AuthorizationError(_DENY_MESSAGES.get(reason, 'access denied'), kind=reason)
    return queryset.filter(hospital_id__in=list(allowed)), allowed


def authorize_write(actor: User, resource: PatientResource, *, creating: bool = False,
                    creator_roles: Optional[Iterable[str]] = None, request=None) -> Decision:
    decision = decide_write(actor, resource, creating=creating, creator_roles=creator_roles)
    _emit(actor, 'create' if creating else 'update', resource, decision, request)
    if not decision.allowed:
        raise AuthorizationError(_DENY_MESSAGES.get(decision.reason, 'access denied'), kind=decision.reason)
    return decision
