"""
Test order views: doctors order, patients (or the hospital admin) pay,
department staff run the test and upload the result.

Guard failures come back as 409 with ``payment_required`` or
``invalid_state`` so department screens can tell the two apart.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.models import Role, User
from records.permissions import IsDepartmentStaff, IsDoctor
from records.serializers.orders import (
    CancelSerializer, MarkPaidSerializer, OrderCreateSerializer, OrderStatusQuerySerializer,
    UploadResultSerializer, order_payload,
)
from records.services import orders
from records.services.storage import blob_store


def _detail(order) -> dict:
    return order_payload(order, file_link=blob_store.link(order.result_file_url))


@api_view(['POST'])
@permission_classes([IsDoctor])
def create_order(request):
    s = OrderCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.create_order(request.user, s.validated_data, request=request)
    order = orders.get_order(order.pk)
    return Response({'ok': True, 'testOrder': order_payload(order)}, status=201)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def order_detail(request, pk):
    order = orders.get_order(pk)
    orders.authorize_view(request.user, order, request=request)
    return Response({'ok': True, 'testOrder': _detail(order)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_orders(request, patient_id):
    patient = get_object_or_404(User, pk=patient_id, role=Role.PATIENT)
    qs = orders.orders_for_patient(request.user, patient, request=request)
    return Response({'ok': True, 'testOrders': [order_payload(o) for o in qs]})


@api_view(['GET'])
@permission_classes([IsDoctor])
def doctor_orders(request):
    q = OrderStatusQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = orders.orders_by_doctor(request.user, q.validated_data.get('status'))
    return Response({'ok': True, 'testOrders': [order_payload(o) for o in qs]})


def _queue(request, fetch):
    q = OrderStatusQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    department = orders.queue_department(request.user, q.validated_data.get('departmentId'))
    return Response({
        'ok': True,
        'departmentId': department.id,
        'testOrders': [order_payload(o) for o in fetch(department)],
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def department_pending(request):
    """Orders waiting for payment."""
    return _queue(request, orders.pending_for_department)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def department_ready(request):
    """Paid (or waived) orders the department can work on."""
    return _queue(request, orders.ready_for_department)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def department_completed(request):
    return _queue(request, orders.completed_for_department)


@api_view(['PUT', 'POST'])
@permission_classes([IsDepartmentStaff])
def start_order(request, pk):
    order = orders.start(orders.get_order(pk), request.user, request=request)
    return Response({'ok': True, 'testOrder': order_payload(order)})


@api_view(['PUT', 'POST'])
@permission_classes([IsDepartmentStaff])
def upload_result(request, pk):
    s = UploadResultSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    f = data.pop('file', None)
    order = orders.upload_result(orders.get_order(pk), request.user, data, f, request=request)
    return Response({'ok': True, 'testOrder': _detail(order)})


@api_view(['PUT', 'POST'])
@permission_classes([IsAuthenticated])
def cancel_order(request, pk):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.cancel(orders.get_order(pk), request.user, s.validated_data['reason'], request=request)
    return Response({'ok': True, 'testOrder': order_payload(order)})


@api_view(['PUT', 'POST'])
@permission_classes([IsAuthenticated])
def mark_paid(request, pk):
    s = MarkPaidSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.mark_paid(
        orders.get_order(pk), request.user,
        method=s.validated_data['paymentMethod'],
        reference=s.validated_data.get('paymentReference') or None,
        request=request,
    )
    return Response({'ok': True, 'testOrder': order_payload(order)})
