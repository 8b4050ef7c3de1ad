import logging
import time
import uuid

from records.logging import clear_request_context, set_request_context

logger = logging.getLogger(__name__)


class RequestContextMiddleware:
    """Tag each request with an id, echo it back and log the outcome.

    DRF authenticates inside the view, so the user id is filled in after
    the response is produced.
    """
    HEADER = 'HTTP_X_REQUEST_ID'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = (request.META.get(self.HEADER) or '').strip()[:64] or uuid.uuid4().hex
        request.request_id = request_id
        set_request_context(request_id)
        started = time.monotonic()
        try:
            response = self.get_response(request)
            user = getattr(request, 'user', None)
            if getattr(user, 'is_authenticated', False):
                set_request_context(request_id, user.id)
            logger.info(
                '%s %s -> %s', request.method, request.path, response.status_code,
                extra={
                    'event': 'http_request',
                    'status_code': response.status_code,
                    'duration_ms': round((time.monotonic() - started) * 1000, 2),
                },
            )
            response['X-Request-ID'] = request_id
            return response
        finally:
            clear_request_context()
