from decimal import Decimal

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from records.exceptions import (
    AuthorizationError, InvalidState, PaymentRequired, StateConflictError, ValidationError,
)
from records.models import Department, TestOrder, TestResult
from records.services import orders

pytestmark = pytest.mark.django_db


def _data(patient, department, **extra):
    data = {
        'patientId': patient.id,
        'departmentId': department.id,
        'testName': 'Complete blood count',
        'testType': 'blood',
        'paymentAmount': Decimal('25.00'),
    }
    data.update(extra)
    return data


@pytest.fixture
def order(doctor1, patient1, lab1):
    return orders.create_order(doctor1, _data(patient1, lab1))


@pytest.fixture
def paid_order(order, patient1):
    return orders.mark_paid(order, patient1, method='card')


def test_new_order_waits_for_payment(order):
    assert order.status == TestOrder.STATUS_PAYMENT_PENDING
    assert order.payment_status == TestOrder.PAYMENT_PENDING
    assert order.hospital_id == order.department.hospital_id


def test_order_without_payment_is_ready_at_once(doctor1, patient1, lab1):
    o = orders.create_order(doctor1, _data(patient1, lab1, paymentRequired=False))
    assert o.status == TestOrder.STATUS_READY
    assert o.payment_status == TestOrder.PAYMENT_WAIVED


def test_only_doctors_order(nurse1, patient1, lab1):
    with pytest.raises(AuthorizationError) as exc:
        orders.create_order(nurse1, _data(patient1, lab1))
    assert exc.value.kind == 'not_doctor'


def test_cannot_order_from_another_hospitals_department(doctor1, patient1, lab2):
    with pytest.raises(AuthorizationError) as exc:
        orders.create_order(doctor1, _data(patient1, lab2))
    assert exc.value.kind == 'cross_hospital_order'
    assert not TestOrder.objects.exists()


def test_urgent_orders_need_department_opt_in(doctor1, patient1, lab1):
    Department.objects.filter(pk=lab1.pk).update(allow_urgent_tests=False)
    with pytest.raises(ValidationError) as exc:
        orders.create_order(doctor1, _data(patient1, lab1, urgency='urgent'))
    assert exc.value.kind == 'urgent_not_allowed'


def test_mark_paid_advances_to_ready(paid_order, patient1):
    assert paid_order.status == TestOrder.STATUS_READY
    assert paid_order.payment_status == TestOrder.PAYMENT_PAID
    assert paid_order.paid_by == patient1
    assert paid_order.payment_reference


def test_paying_twice_is_rejected_and_leaves_order_alone(paid_order, patient1):
    with pytest.raises(InvalidState) as exc:
        orders.mark_paid(paid_order, patient1, method='cash')
    assert exc.value.kind == 'already_paid'
    paid_order.refresh_from_db()
    assert paid_order.payment_method == 'card'
    assert paid_order.status == TestOrder.STATUS_READY


def test_late_payment_does_not_move_running_order(doctor1, patient1, staff1, lab1):
    o = orders.create_order(doctor1, _data(patient1, lab1, paymentRequired=False))
    orders.start(o, staff1)
    o = orders.mark_paid(o, patient1, method='card')
    assert o.status == TestOrder.STATUS_IN_PROGRESS
    assert o.payment_status == TestOrder.PAYMENT_PAID


def test_paying_a_started_order_again_keeps_status(paid_order, patient1, staff1):
    orders.start(paid_order, staff1)
    with pytest.raises(InvalidState) as exc:
        orders.mark_paid(paid_order, patient1, method='cash')
    assert exc.value.kind == 'already_paid'
    paid_order.refresh_from_db()
    assert paid_order.status == TestOrder.STATUS_IN_PROGRESS
    assert paid_order.payment_method == 'card'


def test_payment_on_failed_order_does_not_make_it_ready(order, patient1):
    TestOrder.objects.filter(pk=order.pk).update(status=TestOrder.STATUS_PAYMENT_FAILED,
                                                 payment_status=TestOrder.PAYMENT_FAILED)
    o = orders.mark_paid(order, patient1, method='card')
    assert o.payment_status == TestOrder.PAYMENT_PAID
    assert o.status == TestOrder.STATUS_PAYMENT_FAILED


def test_only_owner_or_admin_pays(order, patient2, admin1, admin2):
    with pytest.raises(AuthorizationError):
        orders.mark_paid(order, patient2, method='card')
    with pytest.raises(AuthorizationError):
        orders.mark_paid(order, admin2, method='card')
    assert orders.mark_paid(order, admin1, method='insurance').status == TestOrder.STATUS_READY


def test_start_requires_payment(order, staff1):
    with pytest.raises(PaymentRequired):
        orders.start(order, staff1)
    order.refresh_from_db()
    assert order.status == TestOrder.STATUS_PAYMENT_PENDING


def test_start_moves_to_in_progress(paid_order, staff1):
    o = orders.start(paid_order, staff1)
    assert o.status == TestOrder.STATUS_IN_PROGRESS
    assert o.started_by == staff1


def test_concurrent_start_has_one_winner(paid_order, staff1):
    first = TestOrder.objects.get(pk=paid_order.pk)
    second = TestOrder.objects.get(pk=paid_order.pk)
    orders.start(first, staff1)
    with pytest.raises(StateConflictError) as exc:
        orders.start(second, staff1)
    assert exc.value.kind == 'invalid_state'


def test_staff_of_another_department_is_refused(paid_order, make_user, h1, radiology1):
    other = make_user('department_staff', h1, radiology1)
    with pytest.raises(AuthorizationError) as exc:
        orders.start(paid_order, other)
    assert exc.value.kind == 'wrong_department'


def test_upload_before_payment_is_refused(order, staff1):
    with pytest.raises(PaymentRequired):
        orders.upload_result(order, staff1, {'result': 'normal'})
    assert not TestResult.objects.exists()


def test_upload_completes_and_publishes_result(paid_order, staff1):
    f = SimpleUploadedFile('cbc.pdf', b'%PDF-1.4 report', content_type='application/pdf')
    o = orders.upload_result(paid_order, staff1, {'result': 'within range', 'abnormalFlag': False}, f)
    assert o.status == TestOrder.STATUS_COMPLETED
    assert o.result_file_url.startswith(f'test-results/{o.patient_id}/')
    assert o.result_file_type == 'application/pdf'
    published = TestResult.objects.get(test_order=o)
    assert published.result == 'within range'
    assert published.hospital_id == o.hospital_id


def test_upload_on_completed_order_is_refused(paid_order, staff1):
    orders.upload_result(paid_order, staff1, {'result': 'ok'})
    with pytest.raises(InvalidState):
        orders.upload_result(paid_order, staff1, {'result': 'again'})
    assert TestResult.objects.count() == 1


def test_cancel_by_orderer(order, doctor1):
    o = orders.cancel(order, doctor1, 'duplicate order')
    assert o.status == TestOrder.STATUS_CANCELLED
    with pytest.raises(InvalidState):
        orders.mark_paid(o, o.patient, method='card')


def test_completed_order_cannot_be_cancelled(paid_order, staff1, doctor1):
    orders.upload_result(paid_order, staff1, {'result': 'ok'})
    with pytest.raises(InvalidState):
        orders.cancel(paid_order, doctor1, 'too late')


def test_cancel_by_stranger_is_refused(order, doctor2):
    with pytest.raises(AuthorizationError):
        orders.cancel(order, doctor2, 'not mine')


def test_department_queues(order, staff1, patient1):
    dept = orders.queue_department(staff1)
    assert list(orders.pending_for_department(dept)) == [order]
    assert list(orders.ready_for_department(dept)) == []
    orders.mark_paid(order, patient1, method='cash')
    assert list(orders.pending_for_department(dept)) == []
    assert list(orders.ready_for_department(dept)) == [order]


def test_department_staff_view_only_their_department(order, staff1, make_user, h1, radiology1):
    orders.authorize_view(staff1, order)
    other = make_user('department_staff', h1, radiology1)
    with pytest.raises(AuthorizationError):
        orders.authorize_view(other, order)


def test_patient_listing_for_cross_hospital_doctor(order, patient1, doctor2):
    with pytest.raises(AuthorizationError):
        orders.orders_for_patient(doctor2, patient1)


# -- HTTP ---------------------------------------------------------------

def test_order_lifecycle_over_http(client_for, doctor1, patient1, staff1, lab1):
    r = client_for(doctor1).post('/api/test-orders', {
        'patientId': patient1.id, 'departmentId': lab1.id, 'testName': 'Lipid panel', 'testType': 'blood',
    }, format='json')
    assert r.status_code == 201, r.data
    oid = r.data['testOrder']['id']

    staff = client_for(staff1)
    r = staff.put(f'/api/test-orders/{oid}/start', {}, format='json')
    assert r.status_code == 409
    assert r.data['error']['code'] == 'payment_required'

    r = client_for(patient1).post(f'/api/test-orders/{oid}/mark-paid', {'paymentMethod': 'card'}, format='json')
    assert r.status_code == 200
    assert r.data['testOrder']['status'] == TestOrder.STATUS_READY

    r = staff.get('/api/test-orders/department/ready')
    assert [o['id'] for o in r.data['testOrders']] == [oid]

    assert staff.put(f'/api/test-orders/{oid}/start', {}, format='json').status_code == 200
    r = staff.put(f'/api/test-orders/{oid}/upload-result', {'result': 'LDL 100'}, format='json')
    assert r.status_code == 200, r.data
    assert r.data['testOrder']['status'] == TestOrder.STATUS_COMPLETED

    r = client_for(patient1).get(f'/api/test-orders/patient/{patient1.id}')
    assert r.status_code == 200
    assert r.data['testOrders'][0]['status'] == TestOrder.STATUS_COMPLETED


def test_upload_requires_result_or_file(client_for, paid_order, staff1):
    r = client_for(staff1).put(f'/api/test-orders/{paid_order.id}/upload-result', {}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'validation_error'


def test_doctor_cannot_start_tests(client_for, paid_order, doctor1):
    r = client_for(doctor1).put(f'/api/test-orders/{paid_order.id}/start', {}, format='json')
    assert r.status_code == 403
