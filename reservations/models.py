from django.conf import settings
from django.db import models
from django.utils import timezone


class Reservation(models.Model):

    class ReservationStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        FULFILLED = "fulfilled", "Fulfilled"
        CANCELLED = "cancelled", "Cancelled"
        EXPIRED = "expired", "Expired"

    book = models.ForeignKey(
        "books.Book", on_delete=models.PROTECT, related_name="reservations"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="reservations"
    )
    reservation_date = models.DateTimeField(default=timezone.now)
    expiry_date = models.DateTimeField()
    status = models.CharField(
        max_length=10,
        choices=ReservationStatus.choices,
        default=ReservationStatus.PENDING,
    )

    class Meta:
        ordering = ["-reservation_date", "-id"]
        indexes = [
            models.Index(fields=["book", "status"], name="reservation_book_status_idx"),
            models.Index(fields=["expiry_date", "status"], name="reservation_expiry_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "book"],
                condition=models.Q(status="pending"),
                name="unique_pending_reservation",
            ),
        ]

    def __str__(self):
        return f"Reservation: {self.book.title} for {self.user.email} ({self.status})"

    @property
    def is_pending(self):
        return self.status == self.ReservationStatus.PENDING

    def is_expired(self, now=None):
        now = now or timezone.now()
        return self.is_pending and now > self.expiry_date
