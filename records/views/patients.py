"""Patient lookup and registration by hospital staff."""
from __future__ import annotations

from django.core.paginator import Paginator
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.permissions import IsHealthcareWorker
from records.serializers.auth import user_payload
from records.serializers.users import PatientListQuerySerializer, PatientRegisterSerializer, patient_summary
from records.services import patients


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_patients(request):
    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page_size = q.validated_data['pageSize']
    paginator = Paginator(patients.list_patients(request.user), page_size)
    page = paginator.get_page(q.validated_data['page'])
    return Response({
        'ok': True,
        'patients': [patient_summary(p) for p in page.object_list],
        'total': paginator.count,
        'page': page.number,
        'pageSize': page_size,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def search_patients(request):
    """``?q=`` matches first/last name, email or phone in the caller's hospital."""
    results = patients.search_patients(request.user, request.query_params.get('q', ''))
    return Response({'ok': True, 'patients': [patient_summary(p) for p in results]})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_detail(request, pk):
    patient = patients.get_patient(request.user, pk, request=request)
    return Response({'ok': True, 'patient': user_payload(patient)})


@api_view(['POST'])
@permission_classes([IsHealthcareWorker])
def register_patient(request):
    s = PatientRegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient, generated = patients.register_patient(request.user, s.validated_data, request=request)
    payload = {'ok': True, 'patient': user_payload(patient)}
    if generated:
        payload['temporaryPassword'] = generated
    return Response(payload, status=201)
