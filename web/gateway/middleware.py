"""Middleware that assigns a request identifier and guards API payload size.

``RequestIdMiddleware`` ensures every incoming HTTP request carries a
request identifier. The identifier is read from the incoming
``X-Request-Id`` header when provided by the client, or generated
server-side otherwise. It is stored on the ``request`` object and in a
context variable so logging and outgoing HTTP calls pick it up without
passing it explicitly, and it is echoed back in the ``X-Request-ID``
response header. Each request is logged once on the way out with its
method, path, status and duration.

``ApiSizeLimitMiddleware`` rejects oversized ``/api/`` bodies before any
view reads them.
"""

import contextvars
import logging
import os
import time
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

logger = logging.getLogger("gateway.access")


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The incoming header, in ``request.META`` casing.
        RESPONSE_HEADER (str): The header added to outgoing responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._started_at = time.monotonic()
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid

        started = getattr(request, "_started_at", None)
        logger.info(
            "request handled",
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000, 2) if started else None,
            },
        )
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
