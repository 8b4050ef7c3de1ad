"""
Medical records, prescriptions and test results.

The three resources share create / patch / per-patient listing; which
serializer and presenter apply is looked up from the artifact.
"""
from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.models import Role, User
from records.permissions import IsHealthcareWorker
from records.serializers.clinical import (
    FileUploadSerializer, MedicalRecordSerializer, PrescriptionSerializer, ResultSerializer,
    medical_record_payload, prescription_payload, result_payload,
)
from records.services import clinical
from records.services.clinical import MEDICAL_RECORDS, PRESCRIPTIONS, TEST_RESULTS
from records.services.storage import blob_store


def _result(t) -> dict:
    return result_payload(t, file_link=blob_store.link(t.file_url))


# artifact -> (response key, serializer, presenter)
_HANDLERS = {
    MEDICAL_RECORDS: ('medicalRecord', MedicalRecordSerializer, medical_record_payload),
    PRESCRIPTIONS: ('prescription', PrescriptionSerializer, prescription_payload),
    TEST_RESULTS: ('testResult', ResultSerializer, _result),
}


def _create(request, artifact):
    key, serializer_class, present = _HANDLERS[artifact]
    s = serializer_class(data=request.data)
    s.is_valid(raise_exception=True)
    obj = clinical.create(artifact, request.user, s.validated_data, request=request)
    return Response({'ok': True, key: present(obj)}, status=201)


def _update(request, artifact, pk):
    key, serializer_class, present = _HANDLERS[artifact]
    obj = clinical.get_artifact(artifact, pk)
    s = serializer_class(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    data.pop('patientId', None)
    obj = clinical.update(artifact, request.user, obj, data, request=request)
    return Response({'ok': True, key: present(obj)})


def _list_for_patient(request, artifact, patient_id):
    key, _, present = _HANDLERS[artifact]
    patient = get_object_or_404(User, pk=patient_id, role=Role.PATIENT)
    items = clinical.list_for_patient(artifact, request.user, patient, request=request)
    return Response({'ok': True, f'{key}s': [present(o) for o in items]})


@api_view(['POST'])
@permission_classes([IsHealthcareWorker])
def create_medical_record(request):
    return _create(request, MEDICAL_RECORDS)


@api_view(['PATCH', 'PUT'])
@permission_classes([IsAuthenticated])
def update_medical_record(request, pk):
    return _update(request, MEDICAL_RECORDS, pk)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_medical_records(request, patient_id):
    return _list_for_patient(request, MEDICAL_RECORDS, patient_id)


@api_view(['POST'])
@permission_classes([IsHealthcareWorker])
def create_prescription(request):
    return _create(request, PRESCRIPTIONS)


@api_view(['PATCH', 'PUT'])
@permission_classes([IsAuthenticated])
def update_prescription(request, pk):
    return _update(request, PRESCRIPTIONS, pk)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_prescriptions(request, patient_id):
    return _list_for_patient(request, PRESCRIPTIONS, patient_id)


@api_view(['POST'])
@permission_classes([IsHealthcareWorker])
def create_test_result(request):
    return _create(request, TEST_RESULTS)


@api_view(['PATCH', 'PUT'])
@permission_classes([IsAuthenticated])
def update_test_result(request, pk):
    return _update(request, TEST_RESULTS, pk)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_test_results(request, patient_id):
    return _list_for_patient(request, TEST_RESULTS, patient_id)


@api_view(['POST'])
@permission_classes([IsHealthcareWorker])
def upload_test_result_file(request, pk):
    """Multipart ``file``: PDF, JPEG, PNG or Word, up to the configured size."""
    result = clinical.get_artifact(TEST_RESULTS, pk)
    s = FileUploadSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = clinical.attach_result_file(request.user, result, s.validated_data['file'], request=request)
    return Response({'ok': True, 'testResult': _result(result)})
