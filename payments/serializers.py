from rest_framework import serializers

from borrowings.models import Borrowing
from config.exceptions import InvalidAmount
from payments.models import FinePayment


class FinePaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = FinePayment
        fields = (
            "id",
            "borrowing",
            "user",
            "processed_by",
            "amount_paid",
            "total_fine",
            "payment_date",
            "payment_method",
            "payment_status",
            "receipt_number",
            "notes",
            "session_url",
        )
        read_only_fields = fields


class FinePaymentCreateSerializer(serializers.Serializer):
    borrowing = serializers.PrimaryKeyRelatedField(queryset=Borrowing.objects.all())
    amount_paid = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, allow_null=True
    )
    payment_method = serializers.ChoiceField(
        choices=FinePayment.PaymentMethod.choices,
        default=FinePayment.PaymentMethod.CASH,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, data):
        if (
            data.get("amount_paid") is None
            and data["payment_method"] != FinePayment.PaymentMethod.WAIVED
        ):
            raise InvalidAmount("Payment amount is required")
        return data


class FineCheckoutSerializer(serializers.Serializer):
    borrowing = serializers.PrimaryKeyRelatedField(queryset=Borrowing.objects.all())
    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, allow_null=True
    )
