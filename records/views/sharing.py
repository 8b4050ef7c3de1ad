"""
Cross-hospital sharing views.

Hospital admins file and withdraw requests for their own hospital; the
super admin approves, rejects and revokes.  Any hospital staff member can
see which hospitals their hospital currently has read access to.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from records.models import Hospital, HospitalSharing
from records.permissions import IsHospitalAdmin, IsHospitalStaff, IsSuperAdmin
from records.serializers.sharing import (
    SharingApproveSerializer, SharingListQuerySerializer, SharingRequestSerializer, sharing_payload,
)
from records.serializers.tenants import ReasonSerializer, hospital_payload
from records.services import sharing


def _record(pk) -> HospitalSharing:
    return get_object_or_404(
        HospitalSharing.objects.select_related('requesting_hospital', 'target_hospital'), pk=pk
    )


@api_view(['POST'])
@permission_classes([IsHospitalAdmin])
def request_sharing(request):
    s = SharingRequestSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    target = get_object_or_404(Hospital, pk=vd['targetHospitalId'])
    record = sharing.request_sharing(
        request.user.hospital, target, vd['reason'],
        actor=request.user,
        scope=vd['scope'],
        patient_ids=vd.get('patientIds'),
        permissions=vd.get('permissions'),
        request=request,
    )
    return Response({'ok': True, 'sharing': sharing_payload(record)}, status=201)


@api_view(['GET'])
@permission_classes([IsHospitalAdmin])
def my_requests(request):
    qs = sharing.requests_by(request.user.hospital_id)
    return Response({'ok': True, 'requests': [sharing_payload(r) for r in qs]})


@api_view(['GET'])
@permission_classes([IsHospitalAdmin])
def requests_for_my_hospital(request):
    qs = sharing.requests_for(request.user.hospital_id)
    return Response({'ok': True, 'requests': [sharing_payload(r) for r in qs]})


@api_view(['GET'])
@permission_classes([IsHospitalStaff])
def accessible_hospitals(request):
    data = []
    for grant in sharing.accessible_hospitals(request.user.hospital_id):
        record = sharing_payload(grant)
        data.append({
            **hospital_payload(grant.target_hospital),
            'sharingId': grant.id,
            'expiresAt': record['expiresAt'],
            'permissions': record['permissions'],
        })
    return Response({'ok': True, 'hospitals': data})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def list_sharing(request):
    q = SharingListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = sharing.list_records(status=q.validated_data.get('status'), hospital_id=q.validated_data.get('hospitalId'))
    return Response({'ok': True, 'records': [sharing_payload(r) for r in qs]})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def pending_sharing(request):
    qs = sharing.list_records(status=HospitalSharing.STATUS_PENDING)
    return Response({'ok': True, 'records': [sharing_payload(r) for r in qs]})


@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def approve_sharing(request, pk):
    s = SharingApproveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = sharing.approve(
        _record(pk), request.user,
        expires_at=s.validated_data.get('expiresAt'), notes=s.validated_data.get('notes', ''),
        request=request,
    )
    return Response({'ok': True, 'sharing': sharing_payload(record)})


@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def reject_sharing(request, pk):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = sharing.reject(_record(pk), request.user, s.validated_data['reason'], request=request)
    return Response({'ok': True, 'sharing': sharing_payload(record)})


@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def revoke_sharing(request, pk):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = sharing.revoke(_record(pk), request.user, s.validated_data['reason'], request=request)
    return Response({'ok': True, 'sharing': sharing_payload(record)})


@api_view(['DELETE'])
@permission_classes([IsHospitalAdmin])
def cancel_sharing(request, pk):
    sharing.cancel(_record(pk), request.user, request=request)
    return Response({'ok': True})
