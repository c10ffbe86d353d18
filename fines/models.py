from decimal import Decimal

from django.conf import settings
from django.db import models

from config.exceptions import PolicyValidationError


class FinePolicy(models.Model):
    """
    One version of the library's fine settings.

    Versions are append-only: saving new settings inserts a row, and the
    newest row is the policy in force.
    """

    DEFAULT_RATE_PER_DAY = Decimal("1.00")
    DEFAULT_GRACE_PERIOD = 0
    DEFAULT_MAX_FINE_PER_BOOK = Decimal("50.00")
    DEFAULT_CURRENCY_CODE = "USD"

    rate_per_day = models.DecimalField(
        max_digits=8, decimal_places=2, default=DEFAULT_RATE_PER_DAY
    )
    grace_period = models.PositiveIntegerField(default=DEFAULT_GRACE_PERIOD)
    max_fine_per_book = models.DecimalField(
        max_digits=10, decimal_places=2, default=DEFAULT_MAX_FINE_PER_BOOK
    )
    currency_code = models.CharField(max_length=3, default=DEFAULT_CURRENCY_CODE)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="fine_policies",
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "fine policies"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(rate_per_day__gte=0),
                name="fine_rate_not_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(max_fine_per_book__gte=0),
                name="fine_cap_not_negative",
            ),
        ]

    def __str__(self):
        return (
            f"{self.rate_per_day} {self.currency_code}/day, "
            f"grace {self.grace_period}d, cap {self.max_fine_per_book}"
        )

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise PolicyValidationError(
                "Fine policies cannot be edited; save new settings instead."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PolicyValidationError("Fine policies cannot be deleted.")

    @classmethod
    def default(cls):
        """Unsaved policy used while no settings have been stored yet."""
        return cls(
            rate_per_day=cls.DEFAULT_RATE_PER_DAY,
            grace_period=cls.DEFAULT_GRACE_PERIOD,
            max_fine_per_book=cls.DEFAULT_MAX_FINE_PER_BOOK,
            currency_code=cls.DEFAULT_CURRENCY_CODE,
        )
