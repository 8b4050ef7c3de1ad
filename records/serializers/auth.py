from rest_framework import serializers

from records.models import APPLICABLE_ROLES, Role, User
from records.serializers.fields import CleanCharField, iso


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate_email(self, v):
        return v.strip().lower()


class RefreshSerializer(serializers.Serializer):
    refreshToken = serializers.CharField()


class LogoutSerializer(serializers.Serializer):
    refreshToken = serializers.CharField(required=False, allow_blank=True)


class RegisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=8)
    firstName = CleanCharField(max_length=150)
    lastName = CleanCharField(max_length=150)
    role = serializers.ChoiceField(
        choices=[Role.PATIENT.value] + sorted(APPLICABLE_ROLES), default=Role.PATIENT.value
    )
    hospitalId = serializers.IntegerField(required=False, allow_null=True)
    departmentId = serializers.IntegerField(required=False, allow_null=True)
    departmentRole = serializers.ChoiceField(choices=User.DEPARTMENT_ROLE_CHOICES, required=False)
    phone = CleanCharField(max_length=32, required=False, allow_blank=True)
    address = CleanCharField(max_length=255, required=False, allow_blank=True)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=User.GENDER_CHOICES, required=False)
    bloodType = serializers.ChoiceField(choices=User.BLOOD_TYPE_CHOICES, required=False)
    licenseNumber = CleanCharField(max_length=64, required=False, allow_blank=True)
    specialization = CleanCharField(max_length=128, required=False, allow_blank=True)

    def validate_email(self, v):
        return v.strip().lower()

    def validate(self, attrs):
        if attrs['role'] != Role.PATIENT and not attrs.get('hospitalId'):
            raise serializers.ValidationError({'hospitalId': 'staff applicants must name their hospital'})
        return attrs


class ChangePasswordSerializer(serializers.Serializer):
    currentPassword = serializers.CharField(write_only=True)
    newPassword = serializers.CharField(write_only=True, min_length=8)


class ForgotPasswordSerializer(serializers.Serializer):
    email = serializers.EmailField()


class ResetPasswordSerializer(serializers.Serializer):
    password = serializers.CharField(write_only=True, min_length=8)


class ProfileUpdateSerializer(serializers.Serializer):
    phone = CleanCharField(max_length=32, required=False, allow_blank=True)
    address = CleanCharField(max_length=255, required=False, allow_blank=True)
    emergencyContact = CleanCharField(max_length=255, required=False, allow_blank=True)
    bloodType = serializers.ChoiceField(choices=User.BLOOD_TYPE_CHOICES, required=False)


def user_payload(u: User) -> dict:
    data = {
        'id': u.id,
        'email': u.email,
        'firstName': u.first_name,
        'lastName': u.last_name,
        'role': u.role,
        'hospitalId': u.hospital_id,
        'departmentId': u.department_id,
        'approvalStatus': u.approval_status,
        'isActive': u.is_active,
        'phone': u.phone,
        'lastSeenAt': iso(u.last_seen_at),
        'createdAt': iso(u.date_joined),
    }
    if u.role == Role.PATIENT:
        data.update({
            'dateOfBirth': u.date_of_birth.isoformat() if u.date_of_birth else None,
            'gender': u.gender,
            'bloodType': u.blood_type,
            'address': u.address,
            'emergencyContact': u.emergency_contact,
        })
    elif u.role == Role.PENDING_APPROVAL:
        data['appliedRole'] = u.applied_role
    else:
        data.update({
            'departmentRole': u.department_role,
            'licenseNumber': u.license_number,
            'specialization': u.specialization,
        })
    return data
