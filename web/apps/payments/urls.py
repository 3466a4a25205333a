from django.urls import path
from .views import GatewayOrderView, GatewayWebhookView
app_name = "payments"

urlpatterns = [
    path("gateway-orders/", GatewayOrderView.as_view(), name="gateway-orders"),
    path("webhook/", GatewayWebhookView.as_view(), name="webhook"),
]
