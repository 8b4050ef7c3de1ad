"""
Own-profile endpoints and the admin side of staff applications.

``GET /api/users/me`` stays reachable for users held back by the tenant
gate so they can see why.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.permissions import IsAdministrator
from records.serializers.auth import ProfileUpdateSerializer, user_payload
from records.serializers.tenants import ReasonSerializer, hospital_payload
from records.serializers.users import (
    ApproveUserSerializer, UserListQuerySerializer, UserStatusSerializer, application_payload,
)
from records.services import approvals, identity


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def me(request):
    user = request.user
    if request.method == 'PATCH':
        s = ProfileUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        user = identity.update_profile(user, s.validated_data, request=request)
    payload = {'ok': True, 'user': user_payload(user)}
    if user.hospital is not None:
        payload['hospital'] = hospital_payload(user.hospital)
    return Response(payload)


@api_view(['GET'])
@permission_classes([IsAdministrator])
def pending_approvals(request):
    qs = approvals.pending_applications(request.user)
    return Response({'ok': True, 'applications': [application_payload(u) for u in qs]})


@api_view(['GET'])
@permission_classes([IsAdministrator])
def list_users(request):
    q = UserListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = approvals.list_users(request.user, role=q.validated_data.get('role'),
                              is_active=q.validated_data.get('isActive'))
    return Response({'ok': True, 'users': [user_payload(u) for u in qs]})


@api_view(['POST'])
@permission_classes([IsAdministrator])
def approve_user(request, pk):
    s = ApproveUserSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = approvals.get_managed_user(request.user, pk)
    user = approvals.approve_user(request.user, user, s.validated_data.get('role'),
                                  s.validated_data.get('notes', ''), request=request)
    return Response({'ok': True, 'user': user_payload(user)})


@api_view(['POST'])
@permission_classes([IsAdministrator])
def reject_user(request, pk):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = approvals.get_managed_user(request.user, pk)
    user = approvals.reject_user(request.user, user, s.validated_data['reason'], request=request)
    return Response({'ok': True, 'user': user_payload(user)})


@api_view(['PUT', 'PATCH'])
@permission_classes([IsAdministrator])
def user_status(request, pk):
    s = UserStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = approvals.get_managed_user(request.user, pk)
    user = approvals.set_user_active(request.user, user, s.validated_data['isActive'], request=request)
    return Response({'ok': True, 'user': user_payload(user)})
