"""
TestOrder lifecycle.

    ordered -> payment_pending -> {payment_failed | ready_for_test} -> in_progress -> completed
    ready_for_test directly when no payment is required
    cancelled from any state before completed
    payment never moves an order that is past payment_pending

Each transition is a single ``UPDATE ... WHERE <guard>``.  When no row
matches, the order is re-read to report which precondition failed
(payment vs state), and the order is left untouched.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Case, F, Value, When
from django.utils import timezone

from records.exceptions import (
    AuthorizationError, InvalidState, NotFoundError, PaymentRequired, ValidationError,
)
from records.models import Department, Role, TestOrder, TestResult, User
from records.services import authorizer
from records.services.audit import log_action
from records.services.storage import blob_store

logger = logging.getLogger(__name__)

COMPLETED_QUEUE_LIMIT = 50
# Statuses that advance to ready_for_test once payment is recorded
AWAITING_PAYMENT = (TestOrder.STATUS_ORDERED, TestOrder.STATUS_PAYMENT_PENDING)


def _fresh(order_id: int) -> TestOrder:
    order = TestOrder.objects.filter(pk=order_id).first()
    if order is None:
        raise NotFoundError('test order not found')
    return order


def _audit(actor: User, action: str, order: TestOrder, request=None, **detail) -> None:
    log_action(user=actor, action=action, resource_type='test_order', resource_id=order.id,
               patient_id=order.patient_id, hospital_id=order.hospital_id, detail=detail, request=request)


def _require_department_staff(actor: User, order: TestOrder) -> None:
    if actor.role != Role.DEPARTMENT_STAFF:
        raise AuthorizationError('only department staff can perform this action', kind='not_department_staff')
    if not actor.department_id or actor.department_id != order.department_id:
        raise AuthorizationError('this order belongs to another department', kind='wrong_department')


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def create_order(actor: User, data: dict, request=None) -> TestOrder:
    if actor.role != Role.DOCTOR:
        raise AuthorizationError('only doctors can order tests', kind='not_doctor')
    patient = User.objects.filter(pk=data['patientId'], role=Role.PATIENT, is_active=True).first()
    if patient is None:
        raise NotFoundError('patient not found')
    department = Department.objects.select_related('hospital').filter(pk=data['departmentId']).first()
    if department is None:
        raise NotFoundError('department not found')
    if not actor.hospital_id or department.hospital_id != actor.hospital_id:
        raise AuthorizationError('tests can only be ordered from departments of your own hospital',
                                 kind='cross_hospital_order')
    if not department.is_operational():
        raise ValidationError('department is not accepting orders', kind='department_not_operational')

    urgency = data.get('urgency') or 'routine'
    if urgency != 'routine' and not department.allow_urgent_tests:
        raise ValidationError({'urgency': 'this department does not accept urgent tests'},
                              kind='urgent_not_allowed')

    payment_required = data.get('paymentRequired', True)
    order = TestOrder.objects.create(
        patient=patient,
        ordered_by=actor,
        hospital_id=actor.hospital_id,
        department=department,
        test_name=data['testName'],
        test_type=data['testType'],
        test_description=data.get('testDescription', ''),
        test_instructions=data.get('testInstructions', ''),
        urgency=urgency,
        payment_required=payment_required,
        payment_amount=data.get('paymentAmount') or Decimal('0'),
        payment_status=TestOrder.PAYMENT_PENDING if payment_required else TestOrder.PAYMENT_WAIVED,
        status=TestOrder.STATUS_PAYMENT_PENDING if payment_required else TestOrder.STATUS_READY,
        scheduled_date=data.get('scheduledDate'),
        notes=data.get('notes', ''),
    )
    _audit(actor, 'test_order_create', order, request, status=order.status)
    logger.info('test order %s created by %s for patient %s', order.id, actor.id, patient.id)
    return order


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def mark_paid(order: TestOrder, actor: User, *, method: str, reference: Optional[str] = None,
              request=None) -> TestOrder:
    """Record payment.  Status only advances from the pre-payment states."""
    is_owner = actor.role == Role.PATIENT and actor.id == order.patient_id
    is_admin = actor.role == Role.SUPER_ADMIN or (
        actor.role == Role.HOSPITAL_ADMIN and actor.hospital_id == order.hospital_id
    )
    if not (is_owner or is_admin):
        raise AuthorizationError('you can only pay for your own tests', kind='not_order_owner')

    now = timezone.now()
    changed = (
        TestOrder.objects.filter(pk=order.pk)
        .exclude(payment_status=TestOrder.PAYMENT_PAID)
        .exclude(status=TestOrder.STATUS_CANCELLED)
        .update(
            payment_status=TestOrder.PAYMENT_PAID,
            payment_date=now,
            payment_method=method,
            payment_reference=reference or f"PAY-{int(now.timestamp() * 1000)}",
            paid_by=actor,
            status=Case(
                When(status__in=AWAITING_PAYMENT, then=Value(TestOrder.STATUS_READY)),
                default=F('status'),
            ),
            updated_at=now,
        )
    )
    if not changed:
        current = _fresh(order.pk)
        if current.payment_status == TestOrder.PAYMENT_PAID:
            raise InvalidState('this test has already been paid for', kind='already_paid')
        raise InvalidState(f'cannot pay for a {current.status} order')
    order.refresh_from_db()
    _audit(actor, 'test_order_mark_paid', order, request, method=method, status=order.status)
    return order


def start(order: TestOrder, actor: User, request=None) -> TestOrder:
    _require_department_staff(actor, order)
    now = timezone.now()
    changed = TestOrder.objects.filter(
        pk=order.pk,
        status=TestOrder.STATUS_READY,
        payment_status__in=TestOrder.SETTLED_PAYMENTS,
    ).update(status=TestOrder.STATUS_IN_PROGRESS, started_at=now, started_by=actor, updated_at=now)
    if not changed:
        current = _fresh(order.pk)
        if not current.payment_settled:
            raise PaymentRequired('payment must be completed before the test can start')
        raise InvalidState(f'cannot start a test that is {current.status}')
    order.refresh_from_db()
    _audit(actor, 'test_order_start', order, request)
    return order


def upload_result(order: TestOrder, actor: User, data: dict, f=None, request=None) -> TestOrder:
    _require_department_staff(actor, order)

    current = _fresh(order.pk)
    if not current.payment_settled:
        raise PaymentRequired('payment must be completed before uploading results')
    if current.status not in TestOrder.UPLOADABLE_STATUSES:
        raise InvalidState(f'cannot upload results for a test that is {current.status}')

    stored = blob_store.put(f, owner_id=order.patient_id, folder='test-results') if f is not None else None

    now = timezone.now()
    try:
        with transaction.atomic():
            changed = TestOrder.objects.filter(
                pk=order.pk,
                status__in=TestOrder.UPLOADABLE_STATUSES,
                payment_status__in=TestOrder.SETTLED_PAYMENTS,
            ).update(
                status=TestOrder.STATUS_COMPLETED,
                result=data.get('result', ''),
                result_notes=data.get('resultNotes', ''),
                normal_range=data.get('normalRange', ''),
                abnormal_flag=bool(data.get('abnormalFlag', False)),
                result_file_url=stored['url'] if stored else '',
                result_file_type=stored['contentType'] if stored else '',
                result_uploaded_by=actor,
                result_uploaded_at=now,
                completed_date=now,
                updated_at=now,
            )
            if not changed:
                latest = _fresh(order.pk)
                if not latest.payment_settled:
                    raise PaymentRequired('payment must be completed before uploading results')
                raise InvalidState(f'cannot upload results for a test that is {latest.status}')
            order.refresh_from_db()
            TestResult.objects.create(
                patient_id=order.patient_id,
                ordered_by_id=order.ordered_by_id,
                hospital_id=order.hospital_id,
                department_id=order.department_id,
                test_order=order,
                test_name=order.test_name,
                test_type=order.test_type,
                test_date=now,
                result=order.result,
                normal_range=order.normal_range,
                abnormal_flag=order.abnormal_flag,
                notes=order.result_notes,
                file_url=order.result_file_url,
            )
    except Exception:
        if stored:
            blob_store.delete(stored['url'])
        raise
    _audit(actor, 'test_order_upload_result', order, request, file=bool(stored))
    return order


def cancel(order: TestOrder, actor: User, reason: str, request=None) -> TestOrder:
    is_orderer = actor.id == order.ordered_by_id
    is_admin = actor.role == Role.SUPER_ADMIN or (
        actor.role == Role.HOSPITAL_ADMIN and actor.hospital_id == order.hospital_id
    )
    if not (is_orderer or is_admin):
        raise AuthorizationError('you can only cancel your own orders', kind='not_order_owner')
    if not (reason or '').strip():
        raise ValidationError({'reason': 'cancellation reason is required'})
    now = timezone.now()
    changed = TestOrder.objects.filter(pk=order.pk).exclude(status__in=TestOrder.TERMINAL_STATUSES).update(
        status=TestOrder.STATUS_CANCELLED,
        cancelled_by=actor,
        cancelled_date=now,
        cancellation_reason=reason.strip(),
        updated_at=now,
    )
    if not changed:
        current = _fresh(order.pk)
        raise InvalidState(f'cannot cancel a test that is {current.status}')
    order.refresh_from_db()
    _audit(actor, 'test_order_cancel', order, request, reason=reason)
    return order


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _with_relations(qs):
    return qs.select_related('patient', 'ordered_by', 'department', 'hospital')


def get_order(order_id: int) -> TestOrder:
    order = _with_relations(TestOrder.objects.filter(pk=order_id)).first()
    if order is None:
        raise NotFoundError('test order not found')
    return order


def authorize_view(actor: User, order: TestOrder, request=None) -> None:
    """Department staff see their own department's orders; others go through the authorizer."""
    if actor.role == Role.DEPARTMENT_STAFF:
        _require_department_staff(actor, order)
        _audit(actor, 'test_order_view', order, request)
        return
    resource = authorizer.PatientResource.of(authorizer.TEST_ORDER, order, author_field='ordered_by')
    authorizer.authorize_read(actor, resource, request=request)


def queue_department(actor: User, department_id: Optional[int] = None) -> Department:
    """The department whose queue ``actor`` may read."""
    if actor.role == Role.DEPARTMENT_STAFF:
        if not actor.department_id:
            raise ValidationError('your account is not assigned to a department', kind='no_department')
        if department_id and department_id != actor.department_id:
            raise AuthorizationError('this queue belongs to another department', kind='wrong_department')
        return actor.department
    if actor.role in (Role.HOSPITAL_ADMIN, Role.SUPER_ADMIN) and department_id:
        dept = Department.objects.filter(pk=department_id).first()
        if dept is None:
            raise NotFoundError('department not found')
        if actor.role == Role.HOSPITAL_ADMIN and dept.hospital_id != actor.hospital_id:
            raise AuthorizationError('this department belongs to another hospital', kind='wrong_hospital')
        return dept
    raise AuthorizationError('department queues are for department staff', kind='not_department_staff')


def pending_for_department(department: Department):
    return _with_relations(TestOrder.objects.filter(
        department=department,
        status=TestOrder.STATUS_PAYMENT_PENDING,
        payment_status=TestOrder.PAYMENT_PENDING,
    )).order_by('-ordered_date')


def ready_for_department(department: Department):
    return _with_relations(TestOrder.objects.filter(
        department=department,
        payment_status__in=TestOrder.SETTLED_PAYMENTS,
        status__in=TestOrder.UPLOADABLE_STATUSES,
    )).order_by('-ordered_date')


def completed_for_department(department: Department):
    return _with_relations(TestOrder.objects.filter(
        department=department, status=TestOrder.STATUS_COMPLETED,
    )).order_by('-completed_date')[:COMPLETED_QUEUE_LIMIT]


def orders_for_patient(actor: User, patient: User, request=None):
    qs = _with_relations(TestOrder.objects.filter(patient=patient)).order_by('-ordered_date')
    qs, _ = authorizer.filter_readable(actor, patient, authorizer.TEST_ORDER, qs, request=request)
    return qs


def orders_by_doctor(actor: User, status: Optional[str] = None):
    qs = _with_relations(TestOrder.objects.filter(ordered_by=actor))
    if status:
        qs = qs.filter(status=status)
    return qs.order_by('-ordered_date')
