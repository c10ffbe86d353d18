import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


def generate_receipt_number():
    return f"REC-{timezone.now():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


class FinePayment(models.Model):

    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        CARD = "card", "Card"
        ONLINE = "online", "Online"
        WAIVED = "waived", "Waived"

    class PaymentStatus(models.TextChoices):
        PAID = "paid", "Paid"
        PARTIAL = "partial", "Partial"
        PENDING = "pending", "Pending"
        WAIVED = "waived", "Waived"

    borrowing = models.ForeignKey(
        "borrowings.Borrowing",
        on_delete=models.PROTECT,
        related_name="payments",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="fine_payments",
    )
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_fine_payments",
    )
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2)
    total_fine = models.DecimalField(max_digits=10, decimal_places=2)
    payment_date = models.DateTimeField(default=timezone.now)
    payment_method = models.CharField(
        max_length=10,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CASH,
    )
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    receipt_number = models.CharField(
        max_length=40, unique=True, default=generate_receipt_number
    )
    notes = models.TextField(blank=True, default="")
    session_id = models.CharField(max_length=255, unique=True, blank=True, null=True)
    session_url = models.URLField(max_length=1000, blank=True, null=True)

    class Meta:
        ordering = ["-payment_date", "-id"]
        indexes = [
            models.Index(fields=["payment_status"], name="fine_payment_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_paid__gte=0),
                name="fine_payment_amount_not_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_paid__lte=models.F("total_fine")),
                name="fine_payment_within_total",
            ),
        ]

    def __str__(self):
        return (
            f"FinePayment({self.receipt_number}) - {self.amount_paid}/{self.total_fine} "
            f"| Status: {self.payment_status}"
        )

    @staticmethod
    def status_for(amount_paid, total_fine):
        """Settlement status of a non-waived payment of ``amount_paid``."""
        if amount_paid >= total_fine:
            return FinePayment.PaymentStatus.PAID
        if amount_paid > Decimal("0"):
            return FinePayment.PaymentStatus.PARTIAL
        return FinePayment.PaymentStatus.PENDING
