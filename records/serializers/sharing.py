from rest_framework import serializers

from records.models import HospitalSharing
from records.serializers.fields import CleanCharField, iso


class PermissionsSerializer(serializers.Serializer):
    canViewMedicalRecords = serializers.BooleanField(required=False)
    canViewTestResults = serializers.BooleanField(required=False)
    canViewPrescriptions = serializers.BooleanField(required=False)
    canViewDiagnosis = serializers.BooleanField(required=False)


class SharingRequestSerializer(serializers.Serializer):
    targetHospitalId = serializers.IntegerField()
    reason = CleanCharField()
    scope = serializers.ChoiceField(choices=HospitalSharing.SCOPE_CHOICES, default=HospitalSharing.SCOPE_FULL)
    patientIds = serializers.ListField(child=serializers.IntegerField(), required=False)
    permissions = PermissionsSerializer(required=False)


class SharingApproveSerializer(serializers.Serializer):
    expiresAt = serializers.DateTimeField(required=False, allow_null=True)
    notes = CleanCharField(required=False, allow_blank=True)


class SharingListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=HospitalSharing.STATUS_CHOICES, required=False)
    hospitalId = serializers.IntegerField(required=False)


def _hospital_ref(h) -> dict:
    return {'id': h.id, 'name': h.name} if h else None


def sharing_payload(r: HospitalSharing) -> dict:
    return {
        'id': r.id,
        'requestingHospital': _hospital_ref(r.requesting_hospital),
        'targetHospital': _hospital_ref(r.target_hospital),
        'status': r.status,
        'scope': r.scope,
        'permissions': {
            'canViewMedicalRecords': r.can_view_medical_records,
            'canViewTestResults': r.can_view_test_results,
            'canViewPrescriptions': r.can_view_prescriptions,
            'canViewDiagnosis': r.can_view_diagnosis,
        },
        'patientIds': [p.id for p in r.specific_patients.all()] if r.scope == HospitalSharing.SCOPE_LIMITED else [],
        'requestReason': r.request_reason,
        'requestedBy': r.requested_by_id,
        'requestedAt': iso(r.requested_at),
        'approvedBy': r.approved_by_id,
        'approvedAt': iso(r.approved_at),
        'rejectedAt': iso(r.rejected_at),
        'revokedAt': iso(r.revoked_at),
        'rejectionReason': r.rejection_reason,
        'revocationReason': r.revocation_reason,
        'expiresAt': iso(r.expires_at),
        'isActive': r.is_active,
        'isExpired': r.is_expired,
        'accessCount': r.access_count,
        'lastAccessedAt': iso(r.last_accessed_at),
    }
