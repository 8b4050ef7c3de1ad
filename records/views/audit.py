from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.serializers.users import AuditQuerySerializer, audit_payload
from records.services.audit import events_visible_to


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def audit_logs(request):
    """Newest first; ``?action=``, ``?resourceType=`` and ``?limit=`` narrow the list."""
    q = AuditQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    qs = events_visible_to(request.user, action=vd.get('action'), resource_type=vd.get('resourceType'))
    return Response({'ok': True, 'events': [audit_payload(e) for e in qs[:vd['limit']]]})
