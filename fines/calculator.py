"""
Overdue fine calculation.

``calculate_fine`` is a pure function of the due date, the reference date
and a fine policy. It has no access to the database: callers resolve the
policy in force (see ``fines.services.get_active_policy``) and pass it in.
"""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.utils import timezone

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _as_date(value):
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected a date or datetime, got {type(value).__name__}")


def _as_decimal(value):
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def overdue_days(due_date, reference_date):
    """
    Whole calendar days from the day after ``due_date`` through
    ``reference_date`` inclusive. Zero on or before the due date.
    """
    due_date = _as_date(due_date)
    reference_date = _as_date(reference_date)
    if reference_date <= due_date:
        return 0
    days = (reference_date - (due_date + timedelta(days=1))).days + 1
    return max(0, days)


def calculate_fine(due_date, reference_date, policy):
    """
    Return the fine owed for a loan due on ``due_date`` as of ``reference_date``.

    The grace period is subtracted from the overdue days before charging,
    and the result is capped at ``policy.max_fine_per_book``. Arithmetic is
    done in ``Decimal`` and only the final amount is rounded to cents.
    """
    days = overdue_days(due_date, reference_date)
    if days == 0:
        return ZERO

    effective_days = max(0, days - int(policy.grace_period))
    raw_fine = effective_days * _as_decimal(policy.rate_per_day)
    fine = min(raw_fine, _as_decimal(policy.max_fine_per_book))
    return fine.quantize(CENT, rounding=ROUND_HALF_UP)
