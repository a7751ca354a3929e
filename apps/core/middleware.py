"""
Request tracing middleware.
"""
import uuid
from django.utils.deprecation import MiddlewareMixin


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject unique request ID for tracing.

    The ID is echoed back in the X-Request-ID header and attached to
    error payloads by the DRF exception handler.
    """

    def process_request(self, request):
        """Generate and inject request ID if not already set."""
        if not hasattr(request, 'request_id'):
            request.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4()))
        return None

    def process_response(self, request, response):
        """Add request ID to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        return response
