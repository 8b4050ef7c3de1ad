"""
Role based permission classes.

These only check the caller's role.  Tenant and patient scoping is
decided in the services (and the access authorizer for patient data).
"""
from rest_framework.permissions import BasePermission

from records.models import CLINICAL_ROLES, STAFF_ROLES, Role


def _role(request):
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated):
        return None
    return getattr(user, "role", None)


class IsSuperAdmin(BasePermission):
    """Only the platform super admin."""
    def has_permission(self, request, view) -> bool:
        return _role(request) == Role.SUPER_ADMIN


class IsHospitalAdmin(BasePermission):
    """Hospital admin bound to a hospital."""
    def has_permission(self, request, view) -> bool:
        return _role(request) == Role.HOSPITAL_ADMIN and bool(request.user.hospital_id)


class IsAdministrator(BasePermission):
    """Hospital admin or super admin."""
    def has_permission(self, request, view) -> bool:
        return _role(request) in (Role.HOSPITAL_ADMIN, Role.SUPER_ADMIN)


class IsDoctor(BasePermission):
    def has_permission(self, request, view) -> bool:
        return _role(request) == Role.DOCTOR


class IsHealthcareWorker(BasePermission):
    """Hospital admin, doctor or nurse."""
    def has_permission(self, request, view) -> bool:
        return _role(request) in CLINICAL_ROLES


class IsHospitalStaff(BasePermission):
    """Any hospital-bound staff role, department staff included."""
    def has_permission(self, request, view) -> bool:
        return _role(request) in STAFF_ROLES and bool(request.user.hospital_id)


class IsDepartmentStaff(BasePermission):
    def has_permission(self, request, view) -> bool:
        return _role(request) == Role.DEPARTMENT_STAFF
