from django.urls import path
from .views import OrdersPingView, CheckoutView
from .views import OrdersCollectionView, UserOrdersView, RetrieveOrderView
from .views import OrderStatusView, CancelOrderView
app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET admin list
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("<int:user_id>/", UserOrdersView.as_view(), name="user-orders"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
]
