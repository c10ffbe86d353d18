import logging
from decimal import Decimal, InvalidOperation

from config.exceptions import PolicyValidationError
from fines.models import FinePolicy

logger = logging.getLogger(__name__)


def get_active_policy():
    """
    Return the fine policy in force: the most recently saved version, or the
    built-in defaults when no settings have been saved yet.
    """
    policy = FinePolicy.objects.order_by("-created_at", "-id").first()
    if policy is None:
        return FinePolicy.default()
    return policy


def _non_negative_decimal(data, field, default):
    value = data.get(field)
    if value is None or value == "":
        if default is None:
            raise PolicyValidationError({field: "This field is required."})
        return default
    if isinstance(value, bool):
        raise PolicyValidationError({field: "Must be a number."})
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise PolicyValidationError({field: "Must be a number."})
    if not number.is_finite() or number < 0:
        raise PolicyValidationError({field: "Must be a non-negative number."})
    if number != number.quantize(Decimal("0.01")):
        raise PolicyValidationError({field: "At most two decimal places are allowed."})
    return number


def _non_negative_int(data, field, default):
    value = data.get(field)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise PolicyValidationError({field: "Must be a whole number."})
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise PolicyValidationError({field: "Must be a whole number."})
    if not number.is_finite() or number != number.to_integral_value():
        raise PolicyValidationError({field: "Must be a whole number."})
    if number < 0:
        raise PolicyValidationError({field: "Must not be negative."})
    return int(number)


def update_policy(data, actor=None):
    """
    Validate ``data`` and store it as the newest fine policy version.

    Args:
        data (dict): ``rate_per_day`` (required), ``grace_period``,
            ``max_fine_per_book``, ``currency_code``.
        actor: the staff user saving the settings.

    Returns:
        FinePolicy: the newly inserted version.
    """
    rate_per_day = _non_negative_decimal(data, "rate_per_day", None)
    grace_period = _non_negative_int(
        data, "grace_period", FinePolicy.DEFAULT_GRACE_PERIOD
    )
    max_fine_per_book = _non_negative_decimal(
        data, "max_fine_per_book", FinePolicy.DEFAULT_MAX_FINE_PER_BOOK
    )

    currency_code = data.get("currency_code") or FinePolicy.DEFAULT_CURRENCY_CODE
    if not isinstance(currency_code, str) or len(currency_code) != 3 or not currency_code.isalpha():
        raise PolicyValidationError({"currency_code": "Must be a 3-letter currency code."})

    policy = FinePolicy.objects.create(
        rate_per_day=rate_per_day,
        grace_period=grace_period,
        max_fine_per_book=max_fine_per_book,
        currency_code=currency_code.upper(),
        updated_by=actor,
    )

    logger.info(f"Saved fine policy id={policy.id}: {policy}")
    return policy
