"""
Hospital (tenant) views.

Registration is public and creates a pending hospital plus its admin.
Approval, rejection and platform settings belong to the super admin; a
hospital admin manages contact details of their own hospital.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from records.auth_views import LoginRateThrottle
from records.exceptions import AuthorizationError, NotFoundError
from records.models import Hospital, Role
from records.permissions import IsHospitalAdmin, IsSuperAdmin
from records.serializers.tenants import (
    HospitalApproveSerializer, HospitalProfileSerializer, HospitalRegisterSerializer,
    HospitalSettingsSerializer, ReasonSerializer, hospital_payload,
)
from records.services import tenants


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def register_hospital(request):
    s = HospitalRegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    hospital = tenants.register_hospital(s.validated_data, request=request)
    return Response({
        'ok': True,
        'hospital': hospital_payload(hospital, full=True),
        'message': 'registration received; the hospital is pending platform approval',
    }, status=201)


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def list_hospitals(request):
    qs = Hospital.objects.all().order_by('-created_at')
    approval = request.query_params.get('approvalStatus')
    if approval:
        qs = qs.filter(approval_status=approval)
    subscription = request.query_params.get('subscriptionStatus')
    if subscription:
        qs = qs.filter(subscription_status=subscription)
    return Response({'ok': True, 'hospitals': [hospital_payload(h) for h in qs]})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def pending_hospitals(request):
    qs = Hospital.objects.filter(approval_status=Hospital.APPROVAL_PENDING).order_by('created_at')
    return Response({'ok': True, 'hospitals': [hospital_payload(h, full=True) for h in qs]})


@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def approve_hospital(request, pk):
    hospital = get_object_or_404(Hospital, pk=pk)
    s = HospitalApproveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    hospital = tenants.approve_hospital(
        hospital, request.user,
        plan=vd.get('subscriptionPlan'), expiry=vd.get('subscriptionExpiry'), notes=vd.get('notes', ''),
        request=request,
    )
    return Response({'ok': True, 'hospital': hospital_payload(hospital, full=True)})


@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def reject_hospital(request, pk):
    hospital = get_object_or_404(Hospital, pk=pk)
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    hospital = tenants.reject_hospital(hospital, request.user, s.validated_data['reason'], request=request)
    return Response({'ok': True, 'hospital': hospital_payload(hospital, full=True)})


@api_view(['PUT', 'PATCH'])
@permission_classes([IsSuperAdmin])
def hospital_settings(request, pk):
    hospital = get_object_or_404(Hospital, pk=pk)
    s = HospitalSettingsSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    hospital = tenants.update_hospital_settings(hospital, request.user, s.validated_data, request=request)
    return Response({'ok': True, 'hospital': hospital_payload(hospital, full=True)})


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def my_hospital(request):
    """``GET`` for any member; ``PUT`` for the hospital admin."""
    hospital = request.user.hospital
    if hospital is None:
        raise NotFoundError('your account is not linked to a hospital', kind='no_hospital')
    if request.method == 'GET':
        return Response({'ok': True, 'hospital': hospital_payload(hospital, full=True)})

    if request.user.role != Role.HOSPITAL_ADMIN:
        raise AuthorizationError('only the hospital admin may edit the hospital', kind='not_hospital_admin')
    s = HospitalProfileSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    hospital = tenants.update_my_hospital(hospital, request.user, s.validated_data, request=request)
    return Response({'ok': True, 'hospital': hospital_payload(hospital, full=True)})


@api_view(['GET'])
@permission_classes([IsHospitalAdmin])
def my_hospital_stats(request):
    return Response({'ok': True, 'stats': tenants.hospital_stats(request.user.hospital)})
