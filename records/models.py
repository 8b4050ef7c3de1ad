"""
Database models for the HealthVault records API.

The tenant root is :class:`Hospital`; departments, staff, patients and
clinical artifacts hang beneath it.  Cross-tenant reads are governed by
directed :class:`HospitalSharing` grants, and :class:`TestOrder` carries
the payment → fulfilment workflow.  Clinical history is append-style:
artifacts are never hard-deleted, so ownership references use PROTECT.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.utils import timezone


class Role(models.TextChoices):
    SUPER_ADMIN = 'super_admin', 'Platform super admin'
    HOSPITAL_ADMIN = 'hospital_admin', 'Hospital admin'
    DOCTOR = 'doctor', 'Doctor'
    NURSE = 'nurse', 'Nurse'
    DEPARTMENT_STAFF = 'department_staff', 'Department staff'
    PATIENT = 'patient', 'Patient'
    PENDING_APPROVAL = 'pending_approval', 'Pending approval'


# Roles allowed general clinical access inside their own hospital
CLINICAL_ROLES = frozenset({Role.HOSPITAL_ADMIN.value, Role.DOCTOR.value, Role.NURSE.value})
# Roles that must hold a hospital affiliation
STAFF_ROLES = CLINICAL_ROLES | {Role.DEPARTMENT_STAFF.value}
# Roles a registrant may apply for (reviewed by an admin)
APPLICABLE_ROLES = frozenset({Role.DOCTOR.value, Role.NURSE.value, Role.DEPARTMENT_STAFF.value})


class Hospital(models.Model):
    """A tenant.  Usable only when approved with an active subscription."""
    PLAN_FREE = 'free'
    PLAN_BASIC = 'basic'
    PLAN_PREMIUM = 'premium'
    PLAN_ENTERPRISE = 'enterprise'
    PLAN_CHOICES = (
        (PLAN_FREE, 'free'), (PLAN_BASIC, 'basic'),
        (PLAN_PREMIUM, 'premium'), (PLAN_ENTERPRISE, 'enterprise'),
    )

    SUB_PENDING = 'pending'
    SUB_ACTIVE = 'active'
    SUB_SUSPENDED = 'suspended'
    SUB_EXPIRED = 'expired'
    SUB_CHOICES = (
        (SUB_PENDING, 'pending'), (SUB_ACTIVE, 'active'),
        (SUB_SUSPENDED, 'suspended'), (SUB_EXPIRED, 'expired'),
    )

    APPROVAL_PENDING = 'pending'
    APPROVAL_APPROVED = 'approved'
    APPROVAL_REJECTED = 'rejected'
    APPROVAL_CHOICES = (
        (APPROVAL_PENDING, 'pending'), (APPROVAL_APPROVED, 'approved'), (APPROVAL_REJECTED, 'rejected'),
    )

    name = models.CharField(max_length=255, unique=True)
    registration_number = models.CharField(max_length=64, unique=True)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=32)
    street = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=128, blank=True)
    state = models.CharField(max_length=128, blank=True)
    zip_code = models.CharField(max_length=32, blank=True)
    country = models.CharField(max_length=128, blank=True)
    website = models.URLField(blank=True)
    description = models.TextField(blank=True)

    subscription_plan = models.CharField(max_length=16, choices=PLAN_CHOICES, default=PLAN_FREE)
    subscription_status = models.CharField(max_length=16, choices=SUB_CHOICES, default=SUB_PENDING, db_index=True)
    subscription_start_date = models.DateTimeField(null=True, blank=True)
    subscription_expiry = models.DateTimeField(null=True, blank=True)

    approval_status = models.CharField(max_length=16, choices=APPROVAL_CHOICES, default=APPROVAL_PENDING, db_index=True)
    approved_by = models.ForeignKey(
        'User', null=True, blank=True, on_delete=models.SET_NULL, related_name='hospitals_approved'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    admin_user = models.ForeignKey(
        'User', null=True, blank=True, on_delete=models.SET_NULL, related_name='administered_hospitals'
    )

    allow_cross_hospital_sharing = models.BooleanField(default=False)
    allow_telemedicine = models.BooleanField(default=False)
    allow_online_payments = models.BooleanField(default=False)
    allow_patient_portal = models.BooleanField(default=True)

    total_doctors = models.PositiveIntegerField(default=0)
    total_nurses = models.PositiveIntegerField(default=0)
    total_patients = models.PositiveIntegerField(default=0)
    total_departments = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['approval_status', 'subscription_status']),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.registration_number})"

    def subscription_lapsed(self, now=None) -> bool:
        now = now or timezone.now()
        return bool(
            self.subscription_status == self.SUB_ACTIVE
            and self.subscription_expiry
            and self.subscription_expiry <= now
        )

    def expire_subscription_if_due(self) -> bool:
        """Persist the active → expired transition once the expiry has passed."""
        if not self.subscription_lapsed():
            return False
        if self.pk:
            Hospital.objects.filter(pk=self.pk, subscription_status=self.SUB_ACTIVE).update(
                subscription_status=self.SUB_EXPIRED, updated_at=timezone.now()
            )
        self.subscription_status = self.SUB_EXPIRED
        return True

    def is_usable(self) -> bool:
        self.expire_subscription_if_due()
        return self.approval_status == self.APPROVAL_APPROVED and self.subscription_status == self.SUB_ACTIVE

    def can_share_records(self) -> bool:
        return self.is_usable() and self.allow_cross_hospital_sharing

    def save(self, *args, **kwargs):
        if self.subscription_lapsed():
            self.subscription_status = self.SUB_EXPIRED
        super().save(*args, **kwargs)


class Department(models.Model):
    TYPE_CHOICES = [
        (t, t) for t in (
            'radiology', 'laboratory', 'cardiology', 'neurology', 'orthopedics',
            'pediatrics', 'emergency', 'surgery', 'pharmacy', 'other',
        )
    ]

    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='departments')
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32)
    type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    description = models.TextField(blank=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    location = models.CharField(max_length=255, blank=True)
    head = models.ForeignKey(
        'User', null=True, blank=True, on_delete=models.SET_NULL, related_name='headed_departments'
    )
    # [{name, description, price, duration, isActive}]
    services = models.JSONField(default=list, blank=True)
    # {monday: {open, close, isOpen}, ...}
    operating_hours = models.JSONField(default=dict, blank=True)

    login_enabled = models.BooleanField(default=False)
    login_email = models.EmailField(unique=True, null=True, blank=True)
    login_password = models.CharField(max_length=128, blank=True)

    require_payment_before_upload = models.BooleanField(default=True)
    auto_notify_doctor = models.BooleanField(default=True)
    allow_urgent_tests = models.BooleanField(default=True)

    total_staff = models.PositiveIntegerField(default=0)
    total_tests_completed = models.PositiveIntegerField(default=0)
    total_tests_pending = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['hospital', 'code'], name='department_code_unique_per_hospital'),
        ]
        indexes = [models.Index(fields=['hospital', 'is_active'])]

    def __str__(self) -> str:
        return f"{self.name} [{self.code}] @ {self.hospital_id}"

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        if self.login_email == '':
            self.login_email = None
        super().save(*args, **kwargs)

    def is_operational(self) -> bool:
        return self.is_active and self.hospital.is_usable()


class UserManager(BaseUserManager):
    """Email is the login identifier; passwords always go through set_password."""
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError('email is required')
        user = self.model(email=self.normalize_email(email).lower(), **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', False)
        extra_fields.setdefault('is_superuser', False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', Role.SUPER_ADMIN)
        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    """Identity plus role and tenant affiliation.

    ``hospital`` and ``department`` are weak references: removing either
    leaves the user in place with the affiliation cleared.
    """
    APPROVAL_PENDING = 'pending'
    APPROVAL_APPROVED = 'approved'
    APPROVAL_REJECTED = 'rejected'
    APPROVAL_CHOICES = (
        (APPROVAL_PENDING, 'pending'), (APPROVAL_APPROVED, 'approved'), (APPROVAL_REJECTED, 'rejected'),
    )
    DEPARTMENT_ROLE_CHOICES = [
        (r, r) for r in ('lab_technician', 'radiologist', 'pharmacist', 'receptionist', 'other')
    ]
    GENDER_CHOICES = (('Male', 'Male'), ('Female', 'Female'), ('Other', 'Other'))
    BLOOD_TYPE_CHOICES = [(b, b) for b in ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')]

    username = None
    email = models.EmailField(unique=True)
    role = models.CharField(max_length=32, choices=Role.choices, default=Role.PATIENT, db_index=True)
    hospital = models.ForeignKey(
        Hospital, null=True, blank=True, on_delete=models.SET_NULL, related_name='members'
    )
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    department_role = models.CharField(max_length=32, choices=DEPARTMENT_ROLE_CHOICES, blank=True)

    approval_status = models.CharField(max_length=16, choices=APPROVAL_CHOICES, default=APPROVAL_APPROVED)
    applied_role = models.CharField(max_length=32, choices=Role.choices, blank=True)
    applied_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='users_approved'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    verification_notes = models.TextField(blank=True)

    # Patient
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=8, choices=GENDER_CHOICES, blank=True)
    blood_type = models.CharField(max_length=4, choices=BLOOD_TYPE_CHOICES, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    address = models.CharField(max_length=255, blank=True)
    emergency_contact = models.CharField(max_length=255, blank=True)

    # Clinical staff
    license_number = models.CharField(max_length=64, blank=True)
    specialization = models.CharField(max_length=128, blank=True)

    last_seen_at = models.DateTimeField(null=True, blank=True)
    password_reset_token = models.CharField(max_length=64, blank=True, db_index=True)
    password_reset_expires = models.DateTimeField(null=True, blank=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS: list[str] = []

    class Meta:
        indexes = [
            models.Index(fields=['hospital', 'role', 'is_active']),
            models.Index(fields=['department', 'role']),
        ]

    def __str__(self) -> str:
        return f"{self.email} ({self.role})"

    def save(self, *args, **kwargs):
        # role sets hold plain strings; Role members hash by name
        self.role = str(self.role)
        super().save(*args, **kwargs)

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN

    @property
    def is_patient(self) -> bool:
        return self.role == Role.PATIENT


class HospitalSharing(models.Model):
    """A directed grant: ``requesting_hospital`` may read ``target_hospital`` data."""
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_REVOKED = 'revoked'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'), (STATUS_APPROVED, 'approved'),
        (STATUS_REJECTED, 'rejected'), (STATUS_REVOKED, 'revoked'),
    )

    SCOPE_FULL = 'full'
    SCOPE_LIMITED = 'limited'
    SCOPE_CHOICES = ((SCOPE_FULL, 'full'), (SCOPE_LIMITED, 'limited'))

    requesting_hospital = models.ForeignKey(
        Hospital, on_delete=models.CASCADE, related_name='outgoing_sharing'
    )
    target_hospital = models.ForeignKey(
        Hospital, on_delete=models.CASCADE, related_name='incoming_sharing'
    )
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)

    can_view_medical_records = models.BooleanField(default=True)
    can_view_test_results = models.BooleanField(default=True)
    can_view_prescriptions = models.BooleanField(default=True)
    can_view_diagnosis = models.BooleanField(default=True)

    scope = models.CharField(max_length=16, choices=SCOPE_CHOICES, default=SCOPE_FULL)
    specific_patients = models.ManyToManyField('User', blank=True, related_name='sharing_scopes')

    expires_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    request_reason = models.TextField()
    requested_by = models.ForeignKey(
        'User', null=True, on_delete=models.SET_NULL, related_name='sharing_requested'
    )
    requested_at = models.DateTimeField(default=timezone.now)
    approved_by = models.ForeignKey(
        'User', null=True, blank=True, on_delete=models.SET_NULL, related_name='sharing_approved'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    revocation_reason = models.TextField(blank=True)
    admin_notes = models.TextField(blank=True)

    last_accessed_at = models.DateTimeField(null=True, blank=True)
    access_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['requesting_hospital', 'target_hospital'], name='sharing_unique_directed_pair'
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'is_active']),
            models.Index(fields=['target_hospital', 'status']),
        ]

    def __str__(self) -> str:
        return f"share {self.requesting_hospital_id} -> {self.target_hospital_id} ({self.status})"

    @property
    def is_expired(self) -> bool:
        return bool(self.expires_at and timezone.now() >= self.expires_at)

    @property
    def grants_access(self) -> bool:
        return self.status == self.STATUS_APPROVED and self.is_active and not self.is_expired


class MedicalRecord(models.Model):
    VISIT_TYPE_CHOICES = [
        (v, v) for v in ('consultation', 'follow_up', 'emergency', 'admission', 'routine_checkup', 'other')
    ]

    patient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='medical_records')
    doctor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='authored_records')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='medical_records')
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='medical_records'
    )
    visit_date = models.DateTimeField(default=timezone.now)
    visit_type = models.CharField(max_length=32, choices=VISIT_TYPE_CHOICES, default='consultation')
    diagnosis = models.TextField()
    symptoms = models.JSONField(default=list, blank=True)
    treatment = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    # {bloodPressure, heartRate, temperature, weight, height}
    vital_signs = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['patient', 'visit_date'])]

    def __str__(self):
        return f"record {self.id} patient={self.patient_id}"


class Prescription(models.Model):
    patient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='prescriptions')
    doctor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='authored_prescriptions')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='prescriptions')
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='prescriptions'
    )
    medication_name = models.CharField(max_length=255)
    dosage = models.CharField(max_length=128)
    frequency = models.CharField(max_length=128)
    duration = models.CharField(max_length=128, blank=True)
    instructions = models.TextField(blank=True)
    prescribed_date = models.DateTimeField(default=timezone.now)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['patient', 'prescribed_date'])]

    def __str__(self):
        return f"rx {self.id} {self.medication_name} patient={self.patient_id}"


class TestResult(models.Model):
    __test__ = False  # keep pytest from collecting the model

    patient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='test_results')
    ordered_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='authored_test_results')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='test_results')
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='test_results'
    )
    test_order = models.OneToOneField(
        'TestOrder', null=True, blank=True, on_delete=models.SET_NULL, related_name='published_result'
    )
    test_name = models.CharField(max_length=255)
    test_type = models.CharField(max_length=128, blank=True)
    test_date = models.DateTimeField(default=timezone.now)
    result = models.TextField(blank=True)
    normal_range = models.CharField(max_length=255, blank=True)
    abnormal_flag = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    file_url = models.CharField(max_length=512, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['patient', 'test_date'])]

    def __str__(self):
        return f"result {self.id} {self.test_name} patient={self.patient_id}"


def _payment_reference() -> str:
    return f"PAY-{int(timezone.now().timestamp() * 1000)}"


class TestOrder(models.Model):
    """A test ordered by a doctor and fulfilled by a department.

    Every status change is written with a conditional UPDATE in
    ``records.services.orders``; never ``save()`` a status change.
    """
    __test__ = False  # keep pytest from collecting the model

    STATUS_ORDERED = 'ordered'
    STATUS_PAYMENT_PENDING = 'payment_pending'
    STATUS_PAYMENT_FAILED = 'payment_failed'
    STATUS_READY = 'ready_for_test'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = (
        (STATUS_ORDERED, 'ordered'),
        (STATUS_PAYMENT_PENDING, 'payment_pending'),
        (STATUS_PAYMENT_FAILED, 'payment_failed'),
        (STATUS_READY, 'ready_for_test'),
        (STATUS_IN_PROGRESS, 'in_progress'),
        (STATUS_COMPLETED, 'completed'),
        (STATUS_CANCELLED, 'cancelled'),
    )
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)
    UPLOADABLE_STATUSES = (STATUS_READY, STATUS_IN_PROGRESS)

    PAYMENT_PENDING = 'pending'
    PAYMENT_PAID = 'paid'
    PAYMENT_FAILED = 'failed'
    PAYMENT_REFUNDED = 'refunded'
    PAYMENT_WAIVED = 'waived'
    PAYMENT_CHOICES = (
        (PAYMENT_PENDING, 'pending'), (PAYMENT_PAID, 'paid'), (PAYMENT_FAILED, 'failed'),
        (PAYMENT_REFUNDED, 'refunded'), (PAYMENT_WAIVED, 'waived'),
    )
    SETTLED_PAYMENTS = (PAYMENT_PAID, PAYMENT_WAIVED)

    METHOD_CHOICES = [(m, m) for m in ('cash', 'card', 'insurance', 'bank_transfer', 'mobile_money')]
    URGENCY_CHOICES = [(u, u) for u in ('routine', 'urgent', 'emergency')]

    patient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='test_orders')
    ordered_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='ordered_tests')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='test_orders')
    department = models.ForeignKey(Department, on_delete=models.PROTECT, related_name='test_orders')

    test_name = models.CharField(max_length=255)
    test_type = models.CharField(max_length=128)
    test_description = models.TextField(blank=True)
    test_instructions = models.TextField(blank=True)
    urgency = models.CharField(max_length=16, choices=URGENCY_CHOICES, default='routine')

    payment_required = models.BooleanField(default=True)
    payment_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_status = models.CharField(max_length=16, choices=PAYMENT_CHOICES, default=PAYMENT_PENDING)
    payment_date = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=16, choices=METHOD_CHOICES, blank=True)
    payment_reference = models.CharField(max_length=64, default=_payment_reference)
    paid_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='paid_test_orders'
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ORDERED, db_index=True)

    result = models.TextField(blank=True)
    result_notes = models.TextField(blank=True)
    result_file_url = models.CharField(max_length=512, blank=True)
    result_file_type = models.CharField(max_length=128, blank=True)
    normal_range = models.CharField(max_length=255, blank=True)
    abnormal_flag = models.BooleanField(default=False)
    result_uploaded_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='uploaded_test_results'
    )
    result_uploaded_at = models.DateTimeField(null=True, blank=True)

    ordered_date = models.DateTimeField(default=timezone.now)
    scheduled_date = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    started_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='started_test_orders'
    )
    completed_date = models.DateTimeField(null=True, blank=True)
    cancelled_date = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='cancelled_test_orders'
    )
    cancellation_reason = models.TextField(blank=True)

    notes = models.TextField(blank=True)
    internal_notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['department', 'status']),
            models.Index(fields=['patient', 'ordered_date']),
            models.Index(fields=['ordered_by', 'ordered_date']),
        ]

    def __str__(self):
        return f"order {self.id} {self.test_name} ({self.status})"

    @property
    def payment_settled(self) -> bool:
        return self.payment_status in self.SETTLED_PAYMENTS

    @property
    def can_upload_result(self) -> bool:
        return self.payment_settled and self.status in self.UPLOADABLE_STATUSES


class AuditEvent(models.Model):
    """Append-only audit trail row.  Existing rows are never updated."""
    OUTCOME_ALLOW = 'allow'
    OUTCOME_DENY = 'deny'
    OUTCOME_SUCCESS = 'success'
    OUTCOME_FAILURE = 'failure'

    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_events')
    action = models.CharField(max_length=64)
    resource_type = models.CharField(max_length=64, blank=True)
    resource_id = models.CharField(max_length=64, blank=True)
    # Patient the event concerns, when any; lets patients read their own trail
    subject_patient_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    hospital_id_snapshot = models.BigIntegerField(null=True, blank=True, db_index=True)
    outcome = models.CharField(max_length=16, default=OUTCOME_SUCCESS)
    detail = models.JSONField(default=dict, blank=True)
    ip = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['resource_type', 'resource_id', 'created_at']),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.action}:{self.actor_id}:{self.outcome}@{self.created_at:%F %T}"

    def save(self, *args, **kwargs):
        if self.pk and AuditEvent.objects.filter(pk=self.pk).exists():
            raise ValueError('audit events are immutable')
        super().save(*args, **kwargs)
