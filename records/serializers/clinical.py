from rest_framework import serializers

from records.models import MedicalRecord
from records.serializers.fields import CleanCharField, iso


class VitalSignsSerializer(serializers.Serializer):
    bloodPressure = CleanCharField(max_length=32, required=False, allow_blank=True)
    heartRate = serializers.IntegerField(required=False, min_value=0)
    temperature = serializers.FloatField(required=False)
    weight = serializers.FloatField(required=False, min_value=0)
    height = serializers.FloatField(required=False, min_value=0)


class MedicalRecordSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    departmentId = serializers.IntegerField(required=False, allow_null=True)
    visitDate = serializers.DateTimeField(required=False)
    visitType = serializers.ChoiceField(choices=MedicalRecord.VISIT_TYPE_CHOICES, required=False)
    diagnosis = CleanCharField()
    symptoms = serializers.ListField(child=CleanCharField(max_length=255), required=False)
    treatment = CleanCharField(required=False, allow_blank=True)
    notes = CleanCharField(required=False, allow_blank=True)
    vitalSigns = VitalSignsSerializer(required=False)


class PrescriptionSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    departmentId = serializers.IntegerField(required=False, allow_null=True)
    medicationName = CleanCharField(max_length=255)
    dosage = CleanCharField(max_length=128)
    frequency = CleanCharField(max_length=128)
    duration = CleanCharField(max_length=128, required=False, allow_blank=True)
    instructions = CleanCharField(required=False, allow_blank=True)
    prescribedDate = serializers.DateTimeField(required=False)
    isActive = serializers.BooleanField(required=False)


class ResultSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    departmentId = serializers.IntegerField(required=False, allow_null=True)
    testName = CleanCharField(max_length=255)
    testType = CleanCharField(max_length=128, required=False, allow_blank=True)
    testDate = serializers.DateTimeField(required=False)
    result = CleanCharField(required=False, allow_blank=True)
    normalRange = CleanCharField(max_length=255, required=False, allow_blank=True)
    abnormalFlag = serializers.BooleanField(required=False)
    notes = CleanCharField(required=False, allow_blank=True)


class FileUploadSerializer(serializers.Serializer):
    file = serializers.FileField()


def _author(u) -> dict:
    return {'id': u.id, 'firstName': u.first_name, 'lastName': u.last_name} if u else None


def _common(obj) -> dict:
    return {
        'id': obj.id,
        'patientId': obj.patient_id,
        'hospitalId': obj.hospital_id,
        'departmentId': obj.department_id,
        'createdAt': iso(obj.created_at),
        'updatedAt': iso(obj.updated_at),
    }


def medical_record_payload(r) -> dict:
    data = _common(r)
    hidden = getattr(r, 'diagnosis_hidden', False)
    data.update({
        'doctor': _author(r.doctor),
        'visitDate': iso(r.visit_date),
        'visitType': r.visit_type,
        'diagnosis': None if hidden else r.diagnosis,
        'diagnosisHidden': hidden,
        'symptoms': r.symptoms,
        'treatment': r.treatment,
        'notes': r.notes,
        'vitalSigns': r.vital_signs,
    })
    return data


def prescription_payload(p) -> dict:
    data = _common(p)
    data.update({
        'doctor': _author(p.doctor),
        'medicationName': p.medication_name,
        'dosage': p.dosage,
        'frequency': p.frequency,
        'duration': p.duration,
        'instructions': p.instructions,
        'prescribedDate': iso(p.prescribed_date),
        'isActive': p.is_active,
    })
    return data


def result_payload(t, *, file_link=None) -> dict:
    data = _common(t)
    data.update({
        'orderedBy': _author(t.ordered_by),
        'testOrderId': t.test_order_id,
        'testName': t.test_name,
        'testType': t.test_type,
        'testDate': iso(t.test_date),
        'result': t.result,
        'normalRange': t.normal_range,
        'abnormalFlag': t.abnormal_flag,
        'notes': t.notes,
        'fileLink': file_link,
    })
    return data
