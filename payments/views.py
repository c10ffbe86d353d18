import logging

import stripe
from django.conf import settings
from django.views.decorators.csrf import csrf_exempt
from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from config.exceptions import NotFound
from config.permissions import IsStaffUser

from .models import FinePayment
from .serializers import (
    FineCheckoutSerializer,
    FinePaymentCreateSerializer,
    FinePaymentSerializer,
)
from .services import (
    expire_online_payment,
    record_payment,
    settle_online_payment,
    start_online_payment,
)

# Initialize Stripe API key from Django settings
stripe.api_key = settings.STRIPE_SECRET_KEY
logger = logging.getLogger(__name__)


class FinePaymentViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    GenericViewSet,
):
    """
    ViewSet for fine payments.

    Permissions:
    - Staff users can view all payments and record payments or waivers.
    - Regular users can view only their own payments and pay their own
      fines online through `checkout`.

    Filtering:
    - `status` query param: paid, partial, pending or waived.
    - `user_id` filter is restricted to staff users only.
    """

    queryset = FinePayment.objects.all()
    serializer_class = FinePaymentSerializer
    permission_classes = [IsAuthenticated]

    def get_permissions(self):
        if self.action == "create":
            return [IsStaffUser()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == "create":
            return FinePaymentCreateSerializer
        if self.action == "checkout":
            return FineCheckoutSerializer
        return FinePaymentSerializer

    def get_queryset(self):
        user = self.request.user
        queryset = FinePayment.objects.select_related("borrowing", "user", "processed_by")

        if not user.is_staff:
            # Regular users see only payments for their own borrowings
            queryset = queryset.filter(user=user)

        user_id = self.request.query_params.get("user_id")
        if user_id:
            if not user.is_staff:
                raise ValidationError("Only staff users can filter by user_id.")
            queryset = queryset.filter(user_id=user_id)

        status_filter = self.request.query_params.get("status")
        if status_filter:
            if status_filter not in FinePayment.PaymentStatus.values:
                raise ValidationError(f"Unknown payment status: {status_filter}")
            queryset = queryset.filter(payment_status=status_filter)

        return queryset

    @extend_schema(request=FinePaymentCreateSerializer, responses={201: FinePaymentSerializer})
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        payment = record_payment(
            data["borrowing"],
            amount_paid=data.get("amount_paid"),
            method=data["payment_method"],
            notes=data.get("notes", ""),
            actor=request.user,
        )

        return Response(
            {
                "message": "Payment processed successfully",
                "payment": FinePaymentSerializer(payment).data,
                "fine_status": payment.borrowing.fine_status,
            },
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(request=FineCheckoutSerializer, responses={201: FinePaymentSerializer})
    @action(detail=False, methods=["post"])
    def checkout(self, request):
        """Start a Stripe Checkout session for the caller's own fine."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        borrowing = serializer.validated_data["borrowing"]
        if borrowing.user_id != request.user.pk and not request.user.is_staff:
            raise PermissionDenied("You can only pay fines for your own borrowings.")

        payment = start_online_payment(
            borrowing, amount=serializer.validated_data.get("amount")
        )

        return Response(
            {
                "checkout_url": payment.session_url,
                "payment": FinePaymentSerializer(payment).data,
            },
            status=status.HTTP_201_CREATED,
        )


@csrf_exempt  # Disable CSRF for webhook (Stripe signs requests)
@api_view(["POST"])
@permission_classes([AllowAny])  # Stripe webhook must be accessible publicly
def stripe_webhook(request):
    """
    Endpoint to handle Stripe webhook events.

    Handles events:
    - checkout.session.completed: settles the pending fine payment as paid or partial.
    - checkout.session.expired: zeroes the pending payment's amount.
    """
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
    endpoint_secret = settings.STRIPE_WEBHOOK_SECRET

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Stripe webhook verification failed: {e}")
        return Response(status=status.HTTP_400_BAD_REQUEST)

    event_type = event["type"]
    session = event["data"]["object"]

    try:
        if event_type == "checkout.session.completed":
            settle_online_payment(session["id"])
            logger.info(f"Payment completed for session {session['id']}.")
        elif event_type == "checkout.session.expired":
            expire_online_payment(session["id"])
        else:
            # Unhandled events are logged for later analysis
            logger.debug(f"Unhandled Stripe event type: {event_type}")
    except NotFound:
        logger.error(f"Payment with session_id={session['id']} not found.")
        return Response(status=status.HTTP_404_NOT_FOUND)

    return Response(status=status.HTTP_200_OK)
