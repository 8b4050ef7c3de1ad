"""Django admin registrations for the records models."""
from django.contrib import admin

from .models import (
    AuditEvent,
    Department,
    Hospital,
    HospitalSharing,
    MedicalRecord,
    Prescription,
    TestOrder,
    TestResult,
    User,
)


@admin.register(Hospital)
class HospitalAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'registration_number', 'approval_status', 'subscription_status',
                    'subscription_expiry', 'allow_cross_hospital_sharing', 'is_active')
    list_filter = ('approval_status', 'subscription_status', 'subscription_plan')
    search_fields = ('name', 'registration_number', 'email')


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'code', 'hospital', 'type', 'is_active')
    list_filter = ('type', 'is_active', 'hospital')
    search_fields = ('name', 'code')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('email', 'role', 'hospital', 'department', 'approval_status', 'is_active')
    list_filter = ('role', 'approval_status', 'hospital')
    search_fields = ('email', 'first_name', 'last_name', 'phone')
    exclude = ('password', 'password_reset_token')


@admin.register(HospitalSharing)
class HospitalSharingAdmin(admin.ModelAdmin):
    list_display = ('id', 'requesting_hospital', 'target_hospital', 'status', 'is_active', 'expires_at',
                    'access_count')
    list_filter = ('status', 'is_active', 'scope')


@admin.register(MedicalRecord)
class MedicalRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'hospital', 'visit_type', 'visit_date')
    search_fields = ('patient__email', 'doctor__email')


@admin.register(Prescription)
class PrescriptionAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'medication_name', 'is_active', 'prescribed_date')
    search_fields = ('patient__email', 'medication_name')


@admin.register(TestResult)
class TestResultAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'test_name', 'abnormal_flag', 'test_date')
    search_fields = ('patient__email', 'test_name')


@admin.register(TestOrder)
class TestOrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'test_name', 'patient', 'department', 'status', 'payment_status', 'ordered_date')
    list_filter = ('status', 'payment_status', 'urgency')
    search_fields = ('test_name', 'patient__email', 'payment_reference')
    # status changes go through the service layer
    readonly_fields = ('status', 'payment_status')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'outcome', 'actor', 'resource_type', 'resource_id')
    list_filter = ('action', 'outcome')
    search_fields = ('action', 'resource_id')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
