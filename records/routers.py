"""
URL mappings for the records API.

Every endpoint lives under ``/api/`` without a trailing slash.  Literal
segments (``pending``, ``my-hospital`` ...) are listed before the
``<int:pk>`` patterns they sit next to.
"""
from django.urls import include, path

from .auth_views import (
    change_password_view,
    forgot_password_view,
    login_view,
    logout_view,
    me_view,
    refresh_view,
    register_view,
    reset_password_view,
)
from .views import audit, clinical, departments, files, health, hospitals, orders, patients, sharing, users

urlpatterns = [
    # Auth
    path('api/auth/login', login_view, name='auth_login'),
    path('api/auth/refresh', refresh_view, name='auth_refresh'),
    path('api/auth/register', register_view, name='auth_register'),
    path('api/auth/me', me_view, name='auth_me'),
    path('api/auth/logout', logout_view, name='auth_logout'),
    path('api/auth/change-password', change_password_view, name='auth_change_password'),
    path('api/auth/forgot-password', forgot_password_view, name='auth_forgot_password'),
    path('api/auth/reset-password/<str:token>', reset_password_view, name='auth_reset_password'),

    # Users
    path('api/users/me', users.me, name='users_me'),

    # Hospitals
    path('api/hospitals', hospitals.list_hospitals, name='hospital_list'),
    path('api/hospitals/register', hospitals.register_hospital, name='hospital_register'),
    path('api/hospitals/pending', hospitals.pending_hospitals, name='hospital_pending'),
    path('api/hospitals/my-hospital', hospitals.my_hospital, name='hospital_mine'),
    path('api/hospitals/my-hospital/stats', hospitals.my_hospital_stats, name='hospital_mine_stats'),
    path('api/hospitals/<int:pk>/approve', hospitals.approve_hospital, name='hospital_approve'),
    path('api/hospitals/<int:pk>/reject', hospitals.reject_hospital, name='hospital_reject'),
    path('api/hospitals/<int:pk>/settings', hospitals.hospital_settings, name='hospital_settings'),

    # Departments
    path('api/departments', departments.departments, name='department_list'),
    path('api/departments/<int:pk>', departments.department_detail, name='department_detail'),
    path('api/departments/<int:pk>/staff', departments.department_staff, name='department_staff'),
    path('api/departments/<int:pk>/assign-head', departments.assign_head, name='department_assign_head'),

    # Hospital sharing
    path('api/hospital-sharing', sharing.list_sharing, name='sharing_list'),
    path('api/hospital-sharing/request', sharing.request_sharing, name='sharing_request'),
    path('api/hospital-sharing/pending', sharing.pending_sharing, name='sharing_pending'),
    path('api/hospital-sharing/my-requests', sharing.my_requests, name='sharing_my_requests'),
    path('api/hospital-sharing/requests-for-my-hospital', sharing.requests_for_my_hospital,
         name='sharing_requests_for_me'),
    path('api/hospital-sharing/accessible-hospitals', sharing.accessible_hospitals, name='sharing_accessible'),
    path('api/hospital-sharing/<int:pk>', sharing.cancel_sharing, name='sharing_cancel'),
    path('api/hospital-sharing/<int:pk>/approve', sharing.approve_sharing, name='sharing_approve'),
    path('api/hospital-sharing/<int:pk>/reject', sharing.reject_sharing, name='sharing_reject'),
    path('api/hospital-sharing/<int:pk>/revoke', sharing.revoke_sharing, name='sharing_revoke'),

    # Test orders
    path('api/test-orders', orders.create_order, name='order_create'),
    path('api/test-orders/doctor/my-orders', orders.doctor_orders, name='order_doctor_list'),
    path('api/test-orders/department/pending', orders.department_pending, name='order_department_pending'),
    path('api/test-orders/department/ready', orders.department_ready, name='order_department_ready'),
    path('api/test-orders/department/completed', orders.department_completed,
         name='order_department_completed'),
    path('api/test-orders/patient/<int:patient_id>', orders.patient_orders, name='order_patient_list'),
    path('api/test-orders/<int:pk>', orders.order_detail, name='order_detail'),
    path('api/test-orders/<int:pk>/start', orders.start_order, name='order_start'),
    path('api/test-orders/<int:pk>/upload-result', orders.upload_result, name='order_upload_result'),
    path('api/test-orders/<int:pk>/cancel', orders.cancel_order, name='order_cancel'),
    path('api/test-orders/<int:pk>/mark-paid', orders.mark_paid, name='order_mark_paid'),

    # Patients
    path('api/patients', patients.list_patients, name='patient_list'),
    path('api/patients/search', patients.search_patients, name='patient_search'),
    path('api/patients/register', patients.register_patient, name='patient_register'),
    path('api/patients/<int:pk>', patients.patient_detail, name='patient_detail'),

    # Clinical records
    path('api/medical-records', clinical.create_medical_record, name='medical_record_create'),
    path('api/medical-records/<int:pk>', clinical.update_medical_record, name='medical_record_update'),
    path('api/medical-records/patient/<int:patient_id>', clinical.patient_medical_records,
         name='medical_record_patient_list'),
    path('api/prescriptions', clinical.create_prescription, name='prescription_create'),
    path('api/prescriptions/<int:pk>', clinical.update_prescription, name='prescription_update'),
    path('api/prescriptions/patient/<int:patient_id>', clinical.patient_prescriptions,
         name='prescription_patient_list'),
    path('api/test-results', clinical.create_test_result, name='test_result_create'),
    path('api/test-results/<int:pk>', clinical.update_test_result, name='test_result_update'),
    path('api/test-results/<int:pk>/upload', clinical.upload_test_result_file, name='test_result_upload'),
    path('api/test-results/patient/<int:patient_id>', clinical.patient_test_results,
         name='test_result_patient_list'),

    # Admin: staff applications and account status
    path('api/admin/pending-approvals', users.pending_approvals, name='admin_pending_approvals'),
    path('api/admin/users', users.list_users, name='admin_users'),
    path('api/admin/approve/<int:pk>', users.approve_user, name='admin_approve_user'),
    path('api/admin/reject/<int:pk>', users.reject_user, name='admin_reject_user'),
    path('api/admin/users/<int:pk>/status', users.user_status, name='admin_user_status'),

    # Audit trail
    path('api/audit-logs', audit.audit_logs, name='audit_logs'),

    # Signed file downloads
    path('api/files', files.blob_download, name='blob_download'),

    # Operations
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),
]
