from decimal import Decimal

from django.conf import settings
from django.db import models

from fines.calculator import calculate_fine


class Borrowing(models.Model):

    class BorrowingStatus(models.TextChoices):
        BORROWED = "borrowed", "Borrowed"
        OVERDUE = "overdue", "Overdue"
        RETURNED = "returned", "Returned"

    class FineStatus(models.TextChoices):
        NONE = "none", "None"
        PENDING = "pending", "Pending"
        PARTIAL = "partial", "Partial"
        PAID = "paid", "Paid"
        WAIVED = "waived", "Waived"

    ACTIVE_STATUSES = (BorrowingStatus.BORROWED, BorrowingStatus.OVERDUE)

    book = models.ForeignKey(
        "books.Book", on_delete=models.PROTECT, related_name="borrowings"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="borrowings"
    )
    issue_date = models.DateField()
    due_date = models.DateField()
    return_date = models.DateField(null=True, blank=True)
    fine = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    fine_status = models.CharField(
        max_length=10,
        choices=FineStatus.choices,
        default=FineStatus.NONE,
    )
    status = models.CharField(
        max_length=10,
        choices=BorrowingStatus.choices,
        default=BorrowingStatus.BORROWED,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-issue_date", "-id"]
        indexes = [
            models.Index(fields=["book", "status"], name="borrowing_book_status_idx"),
            models.Index(fields=["user", "status"], name="borrowing_user_status_idx"),
            models.Index(fields=["due_date", "status"], name="borrowing_due_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "book"],
                condition=models.Q(status__in=["borrowed", "overdue"]),
                name="unique_active_borrowing",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(status="returned", return_date__isnull=False)
                    | (~models.Q(status="returned") & models.Q(return_date__isnull=True))
                ),
                name="returned_iff_return_date",
            ),
            models.CheckConstraint(
                condition=models.Q(fine__gte=0),
                name="borrowing_fine_not_negative",
            ),
        ]

    def __str__(self):
        return f"Borrowing: {self.book.title} by {self.user.email}"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    def _sync_fine_status(self):
        if self.fine > 0 and self.fine_status == self.FineStatus.NONE:
            self.fine_status = self.FineStatus.PENDING
        elif self.fine == 0 and self.fine_status != self.FineStatus.WAIVED:
            self.fine_status = self.FineStatus.NONE

    def evaluate(self, today, policy):
        """
        Refresh status and fine for ``today`` without saving.

        An unreturned loan past its due date becomes overdue and its fine is
        recomputed against ``policy``. Returned loans keep the fine fixed at
        return time. Returns True when any field changed.
        """
        if not self.is_active or self.return_date is not None:
            return False

        before = (self.status, self.fine, self.fine_status)

        if today > self.due_date:
            self.status = self.BorrowingStatus.OVERDUE
            self.fine = calculate_fine(self.due_date, today, policy)
        self._sync_fine_status()

        return before != (self.status, self.fine, self.fine_status)

    def close(self, return_date, policy):
        """Mark the loan returned on ``return_date`` with its final fine."""
        self.return_date = return_date
        self.status = self.BorrowingStatus.RETURNED
        self.fine = calculate_fine(self.due_date, return_date, policy)
        self._sync_fine_status()

    def apply_fine_status(self, fine_status):
        """Mirror the status of the latest payment recorded against this loan."""
        self.fine_status = self.FineStatus(fine_status)
