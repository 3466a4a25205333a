"""HTTP views for the orders app.

This module contains DRF API views for checkout and the order lifecycle.
Views are kept intentionally small: they validate requests (via Pydantic),
map to domain DTOs, delegate to the ``OrderService`` and translate domain
errors into HTTP responses.

The views obtain a configured ``OrderService`` from
``providers.get_order_service()``, which wires HTTP adapters or in-process
stubs depending on runtime settings.

Idempotency: when an ``Idempotency-Key`` header is provided, checkout
stores its response; retries with the same payload replay it with an
``Idempotent-Replay: true`` header, and reusing the key with a different
payload returns HTTP 409.
"""

import logging

from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import Requester
from .errors import OrderError
from .idempotency import finalize, get_or_create_idempotent
from .schemas import CheckoutDTO, StatusUpdateDTO, render_order

logger = logging.getLogger(__name__)


def requester_from(request) -> Requester:
    user = request.user
    return Requester(user_id=user.pk, is_admin=bool(user.is_staff))


def error_response(exc: OrderError) -> Response:
    return Response(exc.as_body(), status=exc.status_code)


def validation_response(exc: ValidationError) -> Response:
    return Response(
        {
            "detail": "VALIDATION_ERROR",
            "errors": exc.errors(include_url=False, include_context=False, include_input=False),
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module."""

    permission_classes = []

    def get(self, request):
        return Response({"ok": True})


class CheckoutView(APIView):
    """Turn the caller's cart into an order.

    Returns:
        - 201 with the created order.
        - 200 with the stored body (and original status) on an idempotent replay.
        - 400 for validation, empty cart, stock, total mismatch and payment
          verification failures.
        - 401 when unauthenticated.
        - 409 when an idempotency key is reused with another payload.
        - 502 when the catalog or gateway is unreachable.
    """

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_create"

    def post(self, request):
        idem_key = request.headers.get("Idempotency-Key")
        requester = requester_from(request)

        # 1) Pydantic validation
        try:
            dto = CheckoutDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(requester.user_id, idem_key, request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        service = providers.get_order_service()
        try:
            order = service.checkout(
                user_id=requester.user_id,
                shipping_address=dto.shipping_address.to_domain(),
                payment=dto.payment_info.to_domain(),
                client_total_cents=dto.client_total_cents,
            )
        except OrderError as e:
            if rec:
                finalize(rec, e.status_code, e.as_body())
            return error_response(e)
        except Exception:
            logger.exception("checkout failed", extra={"user_id": requester.user_id})
            body = {"detail": "INTERNAL_ERROR"}
            if rec:
                finalize(rec, 500, body)
            return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        # 4) Response
        body = render_order(order)
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class OrdersCollectionView(APIView):
    """Paginated list of every order, newest first (admins only)."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        try:
            page = max(1, int(request.GET.get("page", 1)))
            page_size = min(100, max(1, int(request.GET.get("page_size", 20))))
        except ValueError:
            return Response({"detail": "VALIDATION_ERROR"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = providers.get_order_service().list_all_orders(
                requester_from(request), page=page, page_size=page_size
            )
        except OrderError as e:
            return error_response(e)

        return Response(
            {
                "count": result.count,
                "page": result.page,
                "page_size": result.page_size,
                "results": [render_order(o) for o in result.results],
            },
            status=200,
        )


class UserOrdersView(APIView):
    """A user's orders, newest first. Owner or admin only."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request, user_id: int):
        try:
            orders = providers.get_order_service().list_orders(user_id, requester_from(request))
        except OrderError as e:
            return error_response(e)
        return Response({"results": [render_order(o) for o in orders]}, status=200)


class RetrieveOrderView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = providers.get_order_service().get_order(oid, requester_from(request))
        except OrderError as e:
            return error_response(e)
        return Response(render_order(order), status=200)


class OrderStatusView(APIView):
    """Admin-only status / payment status update."""

    permission_classes = [IsAuthenticated]

    def patch(self, request, oid):
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        try:
            order = providers.get_order_service().update_status(
                oid, dto.status, dto.payment_status, requester_from(request)
            )
        except OrderError as e:
            return error_response(e)
        return Response(render_order(order), status=200)


class CancelOrderView(APIView):
    """Cancel a pending or processing order and restock its lines."""

    permission_classes = [IsAuthenticated]

    def post(self, request, oid):
        try:
            result = providers.get_order_service().cancel_order(oid, requester_from(request))
        except OrderError as e:
            return error_response(e)

        body = render_order(result.order)
        if result.restock_failed:
            body["restock_failed"] = [
                {"product_id": i.product_id, "quantity": i.quantity} for i in result.restock_failed
            ]
        return Response(body, status=200)
