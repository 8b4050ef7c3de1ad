from rest_framework import serializers

from records.models import TestOrder
from records.serializers.fields import CleanCharField, iso


class OrderCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField()
    departmentId = serializers.IntegerField()
    testName = CleanCharField(max_length=255)
    testType = CleanCharField(max_length=128)
    testDescription = CleanCharField(required=False, allow_blank=True)
    testInstructions = CleanCharField(required=False, allow_blank=True)
    urgency = serializers.ChoiceField(choices=TestOrder.URGENCY_CHOICES, default='routine')
    paymentRequired = serializers.BooleanField(default=True)
    paymentAmount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    scheduledDate = serializers.DateTimeField(required=False, allow_null=True)
    notes = CleanCharField(required=False, allow_blank=True)


class MarkPaidSerializer(serializers.Serializer):
    paymentMethod = serializers.ChoiceField(choices=TestOrder.METHOD_CHOICES)
    paymentReference = CleanCharField(max_length=64, required=False, allow_blank=True)


class UploadResultSerializer(serializers.Serializer):
    result = CleanCharField(required=False, allow_blank=True)
    resultNotes = CleanCharField(required=False, allow_blank=True)
    normalRange = CleanCharField(max_length=255, required=False, allow_blank=True)
    abnormalFlag = serializers.BooleanField(required=False, default=False)
    file = serializers.FileField(required=False)

    def validate(self, attrs):
        if not attrs.get('result') and not attrs.get('file'):
            raise serializers.ValidationError('either a result or a result file is required')
        return attrs


class CancelSerializer(serializers.Serializer):
    reason = CleanCharField()


class OrderStatusQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=TestOrder.STATUS_CHOICES, required=False)
    departmentId = serializers.IntegerField(required=False)


def _person(u) -> dict:
    return {'id': u.id, 'firstName': u.first_name, 'lastName': u.last_name} if u else None


def order_payload(o: TestOrder, *, file_link=None) -> dict:
    return {
        'id': o.id,
        'patient': _person(o.patient),
        'orderedBy': _person(o.ordered_by),
        'hospitalId': o.hospital_id,
        'department': {'id': o.department.id, 'name': o.department.name, 'code': o.department.code},
        'testName': o.test_name,
        'testType': o.test_type,
        'testDescription': o.test_description,
        'testInstructions': o.test_instructions,
        'urgency': o.urgency,
        'status': o.status,
        'payment': {
            'required': o.payment_required,
            'amount': str(o.payment_amount),
            'status': o.payment_status,
            'method': o.payment_method,
            'reference': o.payment_reference,
            'paidAt': iso(o.payment_date),
        },
        'canUploadResult': o.can_upload_result,
        'result': {
            'value': o.result,
            'notes': o.result_notes,
            'normalRange': o.normal_range,
            'abnormalFlag': o.abnormal_flag,
            'fileType': o.result_file_type,
            'fileLink': file_link,
            'uploadedBy': o.result_uploaded_by_id,
            'uploadedAt': iso(o.result_uploaded_at),
        } if o.status == TestOrder.STATUS_COMPLETED else None,
        'orderedDate': iso(o.ordered_date),
        'scheduledDate': iso(o.scheduled_date),
        'startedAt': iso(o.started_at),
        'completedDate': iso(o.completed_date),
        'cancelledDate': iso(o.cancelled_date),
        'cancellationReason': o.cancellation_reason,
        'notes': o.notes,
    }
