import mimetypes

from django.http import FileResponse
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny

from records.exceptions import NotFoundError
from records.services.storage import blob_store


@api_view(['GET'])
@permission_classes([AllowAny])
def blob_download(request):
    """Serve a stored file from a signed, time-limited link."""
    token = request.query_params.get('token')
    if not token:
        raise NotFoundError('link is invalid or has expired', kind='invalid_link')
    key = blob_store.resolve(token)
    content_type = mimetypes.guess_type(key)[0] or 'application/octet-stream'
    return FileResponse(blob_store.open(key), content_type=content_type)
