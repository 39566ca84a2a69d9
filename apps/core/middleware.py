"""
Core middleware for request processing.
"""
import uuid
import logging
from django.utils.deprecation import MiddlewareMixin

from apps.core.logging import set_request_id, clear_request_id

logger = logging.getLogger(__name__)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        set_request_id(request_id)

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        clear_request_id()
        return response
