"""
Department views.

Members of a hospital list and read its departments; the hospital admin
creates, edits and soft-deletes them and appoints the head.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.exceptions import ValidationError
from records.models import Hospital, Role
from records.permissions import IsAdministrator
from records.serializers.auth import user_payload
from records.serializers.tenants import AssignHeadSerializer, DepartmentSerializer, department_payload
from records.services import tenants


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def departments(request):
    """``GET`` lists the caller's hospital departments; ``POST`` creates one."""
    if request.method == 'GET':
        qs = tenants.visible_departments(request.user).order_by('name')
        dept_type = request.query_params.get('type')
        if dept_type:
            qs = qs.filter(type=dept_type)
        return Response({'ok': True, 'departments': [department_payload(d) for d in qs]})

    s = DepartmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    if request.user.role == Role.SUPER_ADMIN:
        hospital_id = s.validated_data.get('hospitalId')
        if not hospital_id:
            raise ValidationError({'hospitalId': 'required when creating as platform admin'})
        hospital = get_object_or_404(Hospital, pk=hospital_id)
    else:
        hospital = request.user.hospital
        if hospital is None:
            raise ValidationError('your account is not linked to a hospital', kind='no_hospital')
    dept = tenants.create_department(request.user, hospital, s.validated_data, request=request)
    return Response({'ok': True, 'department': department_payload(dept)}, status=201)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def department_detail(request, pk):
    dept = tenants.get_department(request.user, pk)
    if request.method == 'GET':
        return Response({'ok': True, 'department': department_payload(dept)})
    if request.method == 'DELETE':
        tenants.delete_department(request.user, dept, request=request)
        return Response({'ok': True})

    s = DepartmentSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    dept = tenants.update_department(request.user, dept, s.validated_data, request=request)
    return Response({'ok': True, 'department': department_payload(dept)})


@api_view(['GET'])
@permission_classes([IsAdministrator])
def department_staff(request, pk):
    dept = tenants.get_department(request.user, pk)
    staff = tenants.department_staff(dept)
    return Response({'ok': True, 'staff': [user_payload(u) for u in staff]})


@api_view(['POST'])
@permission_classes([IsAdministrator])
def assign_head(request, pk):
    dept = tenants.get_department(request.user, pk)
    s = AssignHeadSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    dept = tenants.assign_head(request.user, dept, s.validated_data['headId'], request=request)
    return Response({'ok': True, 'department': department_payload(dept)})
