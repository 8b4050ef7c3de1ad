from rest_framework import serializers

from records.models import APPLICABLE_ROLES, Role, User
from records.serializers.fields import CleanCharField, iso


class PatientRegisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=8, required=False, allow_blank=True)
    firstName = CleanCharField(max_length=150)
    lastName = CleanCharField(max_length=150)
    phone = CleanCharField(max_length=32, required=False, allow_blank=True)
    address = CleanCharField(max_length=255, required=False, allow_blank=True)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=User.GENDER_CHOICES, required=False)
    bloodType = serializers.ChoiceField(choices=User.BLOOD_TYPE_CHOICES, required=False)
    emergencyContact = CleanCharField(max_length=255, required=False, allow_blank=True)

    def validate_email(self, v):
        return v.strip().lower()


class PatientListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200, default=20)


class ApproveUserSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=sorted(APPLICABLE_ROLES), required=False)
    notes = CleanCharField(required=False, allow_blank=True)


class UserStatusSerializer(serializers.Serializer):
    isActive = serializers.BooleanField()


class UserListQuerySerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Role.choices, required=False)
    isActive = serializers.BooleanField(required=False, allow_null=True, default=None)


class AuditQuerySerializer(serializers.Serializer):
    action = serializers.CharField(required=False, max_length=64)
    resourceType = serializers.CharField(required=False, max_length=64)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500, default=100)


def patient_summary(u: User) -> dict:
    return {
        'id': u.id,
        'email': u.email,
        'firstName': u.first_name,
        'lastName': u.last_name,
        'phone': u.phone,
        'dateOfBirth': u.date_of_birth.isoformat() if u.date_of_birth else None,
        'gender': u.gender,
        'hospitalId': u.hospital_id,
    }


def application_payload(u: User) -> dict:
    return {
        'id': u.id,
        'email': u.email,
        'firstName': u.first_name,
        'lastName': u.last_name,
        'appliedRole': u.applied_role,
        'appliedAt': iso(u.applied_at),
        'hospitalId': u.hospital_id,
        'departmentId': u.department_id,
        'departmentRole': u.department_role,
        'licenseNumber': u.license_number,
        'specialization': u.specialization,
        'approvalStatus': u.approval_status,
    }


def audit_payload(e) -> dict:
    return {
        'id': e.id,
        'actorId': e.actor_id,
        'action': e.action,
        'resourceType': e.resource_type,
        'resourceId': e.resource_id or None,
        'patientId': e.subject_patient_id,
        'hospitalId': e.hospital_id_snapshot,
        'outcome': e.outcome,
        'detail': e.detail,
        'ip': e.ip,
        'createdAt': iso(e.created_at),
    }
