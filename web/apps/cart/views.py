"""HTTP views for the caller's cart."""

from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders import providers
from apps.orders.cache import OrderCache
from apps.orders.errors import OrderError
from apps.orders.schemas import normalize_sku
from apps.orders.views import error_response, validation_response

from .repository import CartRepository
from .schemas import CartItemIn
from .service import CartService


def get_cart_service() -> CartService:
    return CartService(CartRepository(), providers.get_catalog(), OrderCache())


class CartView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        try:
            cart = get_cart_service().view(request.user.pk)
        except OrderError as e:
            return error_response(e)
        return Response(cart, status=200)

    def post(self, request):
        try:
            dto = CartItemIn.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        try:
            line = get_cart_service().add(request.user.pk, dto.product_id, dto.size, dto.quantity)
        except OrderError as e:
            return error_response(e)
        return Response(
            {"product_id": line.product_id, "size": line.size, "quantity": line.quantity},
            status=status.HTTP_200_OK,
        )


class CartItemView(APIView):
    permission_classes = [IsAuthenticated]

    def delete(self, request, product_id: str):
        try:
            pid = normalize_sku(product_id)
        except ValueError:
            return Response({"detail": "VALIDATION_ERROR"}, status=status.HTTP_400_BAD_REQUEST)
        try:
            get_cart_service().remove(request.user.pk, pid)
        except OrderError as e:
            return error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)
