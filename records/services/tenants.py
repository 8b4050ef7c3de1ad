"""
Tenant directory: hospital registration and approval, subscription
settings, departments and their staff.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from django.contrib.auth.hashers import make_password
from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from records.exceptions import (
    AuthorizationError, DuplicateError, NotFoundError, StateConflictError, ValidationError,
)
from records.models import Department, Hospital, Role, TestOrder, User
from records.services.audit import log_action
from records.services.identity import hash_credential

logger = logging.getLogger(__name__)


def is_usable(hospital: Optional[Hospital]) -> bool:
    return bool(hospital and hospital.is_usable())


def is_operational(department: Optional[Department]) -> bool:
    return bool(department and department.is_operational())


# ---------------------------------------------------------------------------
# Hospitals
# ---------------------------------------------------------------------------
@transaction.atomic
def register_hospital(data: dict, request=None) -> Hospital:
    """Create a pending hospital together with its hospital-admin user."""
    clashes = Hospital.objects.filter(
        Q(name__iexact=data['name'])
        | Q(email__iexact=data['email'])
        | Q(registration_number__iexact=data['registrationNumber'])
    )
    if clashes.exists():
        raise DuplicateError('a hospital with this name, email or registration number already exists',
                             kind='duplicate_hospital')
    admin_data = data['admin']
    if User.objects.filter(email=admin_data['email']).exists():
        raise DuplicateError('admin email is already registered', kind='duplicate_email')

    address = data.get('address') or {}
    hospital = Hospital.objects.create(
        name=data['name'],
        registration_number=data['registrationNumber'],
        email=data['email'].lower(),
        phone=data['phone'],
        street=address.get('street', ''),
        city=address.get('city', ''),
        state=address.get('state', ''),
        zip_code=address.get('zipCode', ''),
        country=address.get('country', ''),
        website=data.get('website', ''),
        description=data.get('description', ''),
        subscription_plan=data.get('subscriptionPlan') or Hospital.PLAN_FREE,
    )
    admin = User(
        email=admin_data['email'],
        first_name=admin_data.get('firstName', ''),
        last_name=admin_data.get('lastName', ''),
        phone=admin_data.get('phone', ''),
        role=Role.HOSPITAL_ADMIN,
        hospital=hospital,
        approval_status=User.APPROVAL_APPROVED,
    )
    hash_credential(admin, admin_data['password'])
    admin.save()
    hospital.admin_user = admin
    hospital.save(update_fields=['admin_user'])
    log_action(user=admin, action='hospital_register', resource_type='hospital', resource_id=hospital.id,
               hospital_id=hospital.id, request=request)
    logger.info('hospital %s registered (pending approval)', hospital.id)
    return hospital


def approve_hospital(hospital: Hospital, approver: User, *, plan: Optional[str] = None,
                     expiry=None, notes: str = '', request=None) -> Hospital:
    now = timezone.now()
    updates = {
        'approval_status': Hospital.APPROVAL_APPROVED,
        'approved_by': approver,
        'approved_at': now,
        'subscription_status': Hospital.SUB_ACTIVE,
        'subscription_start_date': now,
        'is_active': True,
        'rejection_reason': '',
        'updated_at': now,
    }
    if plan:
        updates['subscription_plan'] = plan
    if expiry:
        if expiry <= now:
            raise ValidationError({'subscriptionExpiry': 'must be in the future'})
        updates['subscription_expiry'] = expiry
    if notes:
        updates['notes'] = notes
    changed = Hospital.objects.filter(pk=hospital.pk).exclude(
        approval_status=Hospital.APPROVAL_APPROVED
    ).update(**updates)
    if not changed:
        raise StateConflictError('hospital is already approved', kind='already_approved')
    hospital.refresh_from_db()
    log_action(user=approver, action='hospital_approve', resource_type='hospital', resource_id=hospital.id,
               hospital_id=hospital.id, detail={'plan': hospital.subscription_plan}, request=request)
    return hospital


def reject_hospital(hospital: Hospital, approver: User, reason: str, request=None) -> Hospital:
    if not reason:
        raise ValidationError({'reason': 'rejection reason is required'})
    changed = Hospital.objects.filter(pk=hospital.pk, approval_status=Hospital.APPROVAL_PENDING).update(
        approval_status=Hospital.APPROVAL_REJECTED,
        rejection_reason=reason,
        approved_by=approver,
        is_active=False,
        updated_at=timezone.now(),
    )
    if not changed:
        raise StateConflictError('only pending hospitals can be rejected', kind='not_pending')
    hospital.refresh_from_db()
    log_action(user=approver, action='hospital_reject', resource_type='hospital', resource_id=hospital.id,
               hospital_id=hospital.id, detail={'reason': reason}, request=request)
    return hospital


SETTINGS_FIELDS = {
    'subscriptionPlan': 'subscription_plan',
    'subscriptionStatus': 'subscription_status',
    'subscriptionExpiry': 'subscription_expiry',
    'allowCrossHospitalSharing': 'allow_cross_hospital_sharing',
    'allowTelemedicine': 'allow_telemedicine',
    'allowOnlinePayments': 'allow_online_payments',
    'allowPatientPortal': 'allow_patient_portal',
    'isActive': 'is_active',
    'notes': 'notes',
}

PROFILE_FIELDS = {
    'phone': 'phone',
    'website': 'website',
    'description': 'description',
}

ADDRESS_FIELDS = {
    'street': 'street',
    'city': 'city',
    'state': 'state',
    'zipCode': 'zip_code',
    'country': 'country',
}


def _apply(obj, data: dict, mapping: dict) -> list[str]:
    changed = []
    for key, attr in mapping.items():
        if key in data:
            setattr(obj, attr, data[key])
            changed.append(attr)
    return changed


def update_hospital_settings(hospital: Hospital, actor: User, data: dict, request=None) -> Hospital:
    """Super-admin controls: subscription, feature flags, activation."""
    changed = _apply(hospital, data, SETTINGS_FIELDS)
    if changed:
        hospital.save()
        log_action(user=actor, action='hospital_settings', resource_type='hospital', resource_id=hospital.id,
                   hospital_id=hospital.id, detail={'fields': changed}, request=request)
    return hospital


def update_my_hospital(hospital: Hospital, actor: User, data: dict, request=None) -> Hospital:
    """Contact details a hospital admin may edit for their own tenant."""
    changed = _apply(hospital, data, PROFILE_FIELDS)
    changed += _apply(hospital, data.get('address') or {}, ADDRESS_FIELDS)
    if changed:
        hospital.save()
        log_action(user=actor, action='hospital_update', resource_type='hospital', resource_id=hospital.id,
                   hospital_id=hospital.id, detail={'fields': changed}, request=request)
    return hospital


def refresh_hospital_stats(hospital: Hospital) -> Hospital:
    counts = User.objects.filter(hospital=hospital, is_active=True).aggregate(
        doctors=Count('id', filter=Q(role=Role.DOCTOR)),
        nurses=Count('id', filter=Q(role=Role.NURSE)),
        patients=Count('id', filter=Q(role=Role.PATIENT)),
    )
    hospital.total_doctors = counts['doctors']
    hospital.total_nurses = counts['nurses']
    hospital.total_patients = counts['patients']
    hospital.total_departments = Department.objects.filter(hospital=hospital, is_active=True).count()
    hospital.save(update_fields=['total_doctors', 'total_nurses', 'total_patients', 'total_departments',
                                 'updated_at'])
    return hospital


def hospital_stats(hospital: Hospital) -> dict:
    refresh_hospital_stats(hospital)
    orders = TestOrder.objects.filter(hospital=hospital)
    return {
        'totalDoctors': hospital.total_doctors,
        'totalNurses': hospital.total_nurses,
        'totalPatients': hospital.total_patients,
        'totalDepartments': hospital.total_departments,
        'pendingApprovals': User.objects.filter(hospital=hospital, role=Role.PENDING_APPROVAL,
                                                approval_status=User.APPROVAL_PENDING).count(),
        'testOrders': {
            'pending': orders.filter(status__in=[TestOrder.STATUS_ORDERED, TestOrder.STATUS_PAYMENT_PENDING,
                                                 TestOrder.STATUS_READY]).count(),
            'inProgress': orders.filter(status=TestOrder.STATUS_IN_PROGRESS).count(),
            'completed': orders.filter(status=TestOrder.STATUS_COMPLETED).count(),
        },
    }


def expire_lapsed_subscriptions() -> int:
    return Hospital.objects.filter(
        subscription_status=Hospital.SUB_ACTIVE, subscription_expiry__lte=timezone.now()
    ).update(subscription_status=Hospital.SUB_EXPIRED, updated_at=timezone.now())


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------
def _require_hospital_admin(actor: User, hospital: Hospital) -> None:
    if actor.role == Role.SUPER_ADMIN:
        return
    if actor.role != Role.HOSPITAL_ADMIN or actor.hospital_id != hospital.id:
        raise AuthorizationError('only the hospital admin may manage departments', kind='not_hospital_admin')


def visible_departments(actor: User):
    qs = Department.objects.filter(is_active=True).select_related('hospital', 'head')
    if actor.role == Role.SUPER_ADMIN:
        return qs
    if not actor.hospital_id:
        return qs.none()
    return qs.filter(hospital_id=actor.hospital_id)


def get_department(actor: User, pk: int) -> Department:
    dept = visible_departments(actor).filter(pk=pk).first()
    if dept is None:
        raise NotFoundError('department not found')
    return dept


DEPARTMENT_FIELDS = {
    'name': 'name',
    'code': 'code',
    'type': 'type',
    'description': 'description',
    'phone': 'phone',
    'email': 'email',
    'location': 'location',
    'services': 'services',
    'operatingHours': 'operating_hours',
    'requirePaymentBeforeUpload': 'require_payment_before_upload',
    'autoNotifyDoctor': 'auto_notify_doctor',
    'allowUrgentTests': 'allow_urgent_tests',
    'loginEnabled': 'login_enabled',
    'loginEmail': 'login_email',
    'isActive': 'is_active',
}


def _save_department(dept: Department, data: dict) -> Department:
    changed = _apply(dept, data, DEPARTMENT_FIELDS)
    if data.get('loginPassword'):
        dept.login_password = make_password(data['loginPassword'])
    if dept.login_enabled and not (dept.login_email and dept.login_password):
        raise ValidationError({'loginEmail': 'department login needs an email and password'})
    clash = Department.objects.filter(hospital_id=dept.hospital_id, code=(dept.code or '').strip().upper())
    if dept.pk:
        clash = clash.exclude(pk=dept.pk)
    if 'code' in changed and clash.exists():
        raise DuplicateError('department code already used in this hospital', kind='duplicate_code')
    try:
        with transaction.atomic():
            dept.save()
    except IntegrityError:
        raise DuplicateError('department code or login email already in use', kind='duplicate_department')
    return dept


def create_department(actor: User, hospital: Hospital, data: dict, request=None) -> Department:
    _require_hospital_admin(actor, hospital)
    dept = _save_department(Department(hospital=hospital), data)
    log_action(user=actor, action='department_create', resource_type='department', resource_id=dept.id,
               hospital_id=hospital.id, request=request)
    return dept


def update_department(actor: User, dept: Department, data: dict, request=None) -> Department:
    _require_hospital_admin(actor, dept.hospital)
    dept = _save_department(dept, data)
    log_action(user=actor, action='department_update', resource_type='department', resource_id=dept.id,
               hospital_id=dept.hospital_id, request=request)
    return dept


def department_staff(dept: Department) -> Iterable[User]:
    return User.objects.filter(
        department=dept, is_active=True,
        role__in=[Role.DOCTOR, Role.NURSE, Role.DEPARTMENT_STAFF],
    ).order_by('last_name', 'first_name')


def delete_department(actor: User, dept: Department, request=None) -> Department:
    """Soft delete.  Refused while any active staff are still assigned."""
    _require_hospital_admin(actor, dept.hospital)
    staff = User.objects.filter(department=dept, is_active=True).count()
    if staff:
        raise StateConflictError(
            f'department still has {staff} staff member(s) assigned; reassign them first',
            kind='department_has_staff',
        )
    Department.objects.filter(pk=dept.pk).update(is_active=False, updated_at=timezone.now())
    dept.is_active = False
    log_action(user=actor, action='department_delete', resource_type='department', resource_id=dept.id,
               hospital_id=dept.hospital_id, request=request)
    return dept


def assign_head(actor: User, dept: Department, head_id: int, request=None) -> Department:
    _require_hospital_admin(actor, dept.hospital)
    head = User.objects.filter(pk=head_id, is_active=True).first()
    if head is None:
        raise NotFoundError('user not found')
    if head.role != Role.DOCTOR or head.department_id != dept.id:
        raise ValidationError('department head must be a doctor assigned to this department',
                              kind='invalid_department_head')
    dept.head = head
    dept.save(update_fields=['head', 'updated_at'])
    log_action(user=actor, action='department_assign_head', resource_type='department', resource_id=dept.id,
               hospital_id=dept.hospital_id, detail={'headId': head.id}, request=request)
    return dept


def refresh_department_stats(dept: Department) -> Department:
    dept.total_staff = department_staff(dept).count()
    orders = TestOrder.objects.filter(department=dept)
    dept.total_tests_completed = orders.filter(status=TestOrder.STATUS_COMPLETED).count()
    dept.total_tests_pending = orders.exclude(status__in=TestOrder.TERMINAL_STATUSES).count()
    dept.save(update_fields=['total_staff', 'total_tests_completed', 'total_tests_pending', 'updated_at'])
    return dept
