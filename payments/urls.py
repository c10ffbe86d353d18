from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import FinePaymentViewSet, stripe_webhook

app_name = "payments"

router = DefaultRouter()
router.register(r"", FinePaymentViewSet, basename="payments")

urlpatterns = [
    path("webhook/", stripe_webhook, name="stripe-webhook"),
    path("", include(router.urls)),
]
