"""Request-scoped middleware: request ids and API payload limits.

``RequestIdMiddleware`` gives every request an identifier, read from the
incoming ``X-Request-ID`` header or generated as a UUID4. The id is stored
on the request, in the ``REQUEST_ID_CTX`` ContextVar (read by the logging
filter and by outgoing HTTP clients) and echoed on the response.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body
is larger than ``settings.API_MAX_BYTES`` with HTTP 413.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    """Sets and returns a per-request identifier.

    Attributes:
        HEADER (str): Incoming header name in ``request.META`` casing.
        RESPONSE_HEADER (str): Header added to outgoing responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
            if clen and clen.isdigit() and int(clen) > limit:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
