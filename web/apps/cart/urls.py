from django.urls import path
from .views import CartView, CartItemView
app_name = "cart"

urlpatterns = [
    path("", CartView.as_view(), name="cart"),  # GET view / POST add
    path("<str:product_id>/", CartItemView.as_view(), name="cart-item"),
]
