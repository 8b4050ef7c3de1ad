from rest_framework import serializers

from records.models import Department, Hospital
from records.serializers.fields import CleanCharField, iso


class AddressSerializer(serializers.Serializer):
    street = CleanCharField(max_length=255, required=False, allow_blank=True)
    city = CleanCharField(max_length=128, required=False, allow_blank=True)
    state = CleanCharField(max_length=128, required=False, allow_blank=True)
    zipCode = CleanCharField(max_length=32, required=False, allow_blank=True)
    country = CleanCharField(max_length=128, required=False, allow_blank=True)


class HospitalAdminSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=8)
    firstName = CleanCharField(max_length=150)
    lastName = CleanCharField(max_length=150)
    phone = CleanCharField(max_length=32, required=False, allow_blank=True)

    def validate_email(self, v):
        return v.strip().lower()


class HospitalRegisterSerializer(serializers.Serializer):
    name = CleanCharField(max_length=255)
    registrationNumber = CleanCharField(max_length=64)
    email = serializers.EmailField()
    phone = CleanCharField(max_length=32)
    address = AddressSerializer(required=False)
    website = serializers.URLField(required=False, allow_blank=True)
    description = CleanCharField(required=False, allow_blank=True)
    subscriptionPlan = serializers.ChoiceField(choices=Hospital.PLAN_CHOICES, required=False)
    admin = HospitalAdminSerializer()


class HospitalApproveSerializer(serializers.Serializer):
    subscriptionPlan = serializers.ChoiceField(choices=Hospital.PLAN_CHOICES, required=False)
    subscriptionExpiry = serializers.DateTimeField(required=False, allow_null=True)
    notes = CleanCharField(required=False, allow_blank=True)


class ReasonSerializer(serializers.Serializer):
    reason = CleanCharField()


class HospitalSettingsSerializer(serializers.Serializer):
    subscriptionPlan = serializers.ChoiceField(choices=Hospital.PLAN_CHOICES, required=False)
    subscriptionStatus = serializers.ChoiceField(choices=Hospital.SUB_CHOICES, required=False)
    subscriptionExpiry = serializers.DateTimeField(required=False, allow_null=True)
    allowCrossHospitalSharing = serializers.BooleanField(required=False)
    allowTelemedicine = serializers.BooleanField(required=False)
    allowOnlinePayments = serializers.BooleanField(required=False)
    allowPatientPortal = serializers.BooleanField(required=False)
    isActive = serializers.BooleanField(required=False)
    notes = CleanCharField(required=False, allow_blank=True)


class HospitalProfileSerializer(serializers.Serializer):
    phone = CleanCharField(max_length=32, required=False)
    website = serializers.URLField(required=False, allow_blank=True)
    description = CleanCharField(required=False, allow_blank=True)
    address = AddressSerializer(required=False)


class DepartmentSerializer(serializers.Serializer):
    name = CleanCharField(max_length=255)
    code = CleanCharField(max_length=32)
    type = serializers.ChoiceField(choices=Department.TYPE_CHOICES)
    description = CleanCharField(required=False, allow_blank=True)
    phone = CleanCharField(max_length=32, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    location = CleanCharField(max_length=255, required=False, allow_blank=True)
    services = serializers.ListField(child=serializers.DictField(), required=False)
    operatingHours = serializers.DictField(required=False)
    requirePaymentBeforeUpload = serializers.BooleanField(required=False)
    autoNotifyDoctor = serializers.BooleanField(required=False)
    allowUrgentTests = serializers.BooleanField(required=False)
    loginEnabled = serializers.BooleanField(required=False)
    loginEmail = serializers.EmailField(required=False, allow_blank=True, allow_null=True)
    loginPassword = serializers.CharField(required=False, allow_blank=True, write_only=True, min_length=8)
    isActive = serializers.BooleanField(required=False)
    hospitalId = serializers.IntegerField(required=False)


class AssignHeadSerializer(serializers.Serializer):
    headId = serializers.IntegerField()


def hospital_payload(h: Hospital, *, full: bool = False) -> dict:
    data = {
        'id': h.id,
        'name': h.name,
        'registrationNumber': h.registration_number,
        'email': h.email,
        'phone': h.phone,
        'address': {
            'street': h.street, 'city': h.city, 'state': h.state,
            'zipCode': h.zip_code, 'country': h.country,
        },
        'website': h.website,
        'approvalStatus': h.approval_status,
        'subscriptionPlan': h.subscription_plan,
        'subscriptionStatus': h.subscription_status,
        'subscriptionExpiry': iso(h.subscription_expiry),
        'isActive': h.is_active,
        'createdAt': iso(h.created_at),
    }
    if full:
        data.update({
            'description': h.description,
            'approvedAt': iso(h.approved_at),
            'rejectionReason': h.rejection_reason,
            'adminUserId': h.admin_user_id,
            'settings': {
                'allowCrossHospitalSharing': h.allow_cross_hospital_sharing,
                'allowTelemedicine': h.allow_telemedicine,
                'allowOnlinePayments': h.allow_online_payments,
                'allowPatientPortal': h.allow_patient_portal,
            },
            'stats': {
                'totalDoctors': h.total_doctors,
                'totalNurses': h.total_nurses,
                'totalPatients': h.total_patients,
                'totalDepartments': h.total_departments,
            },
            'notes': h.notes,
        })
    return data


def department_payload(d: Department) -> dict:
    return {
        'id': d.id,
        'hospitalId': d.hospital_id,
        'name': d.name,
        'code': d.code,
        'type': d.type,
        'description': d.description,
        'phone': d.phone,
        'email': d.email,
        'location': d.location,
        'headId': d.head_id,
        'services': d.services,
        'operatingHours': d.operating_hours,
        'loginEnabled': d.login_enabled,
        'loginEmail': d.login_email,
        'settings': {
            'requirePaymentBeforeUpload': d.require_payment_before_upload,
            'autoNotifyDoctor': d.auto_notify_doctor,
            'allowUrgentTests': d.allow_urgent_tests,
        },
        'stats': {
            'totalStaff': d.total_staff,
            'totalTestsCompleted': d.total_tests_completed,
            'totalTestsPending': d.total_tests_pending,
        },
        'isActive': d.is_active,
        'createdAt': iso(d.created_at),
    }
