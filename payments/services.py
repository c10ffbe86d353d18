"""
Fine payment ledger.

Payments are append-only: every payment, waiver or online checkout adds a
``FinePayment`` row carrying a snapshot of the fine at that moment, and the
borrowing's ``fine_status`` mirrors the latest row.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import stripe
from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from borrowings.models import Borrowing
from config.exceptions import InvalidAmount, NoFineDue, NotFound
from config.notifications.tasks import send_telegram_payment_notification
from fines.services import get_active_policy

from .models import FinePayment

stripe.api_key = settings.STRIPE_SECRET_KEY
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _parse_amount(amount):
    if amount is None or amount == "" or isinstance(amount, bool):
        raise InvalidAmount()
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise InvalidAmount()
    if not value.is_finite() or value <= 0:
        raise InvalidAmount()
    if value != value.quantize(CENT):
        raise InvalidAmount("Payment amount cannot have more than two decimal places.")
    return value


def _lock_with_current_fine(borrowing, today=None):
    """
    Lock the borrowing row and bring its fine up to date.

    Unreturned borrowings are re-evaluated against today's date and the
    current policy; returned ones keep the fine fixed at return time.
    """
    borrowing_id = borrowing.pk if isinstance(borrowing, Borrowing) else borrowing
    try:
        locked = (
            Borrowing.objects.select_for_update()
            .select_related("book", "user")
            .get(pk=borrowing_id)
        )
    except Borrowing.DoesNotExist:
        raise NotFound(f"Borrowing {borrowing_id} not found.")

    previous_fine = locked.fine
    if locked.evaluate(today or timezone.localdate(), get_active_policy()):
        locked.save(update_fields=["status", "fine", "fine_status"])
        if locked.fine != previous_fine:
            logger.info(
                f"Updated fine amount for borrowing {locked.pk} "
                f"from {previous_fine} to {locked.fine}"
            )
    return locked


def _notify(payment):
    data = {
        "user": payment.user.email,
        "method": payment.payment_method.upper(),
        "status": payment.payment_status.upper(),
        "amount": str(payment.amount_paid),
        "total_fine": str(payment.total_fine),
        "borrowing_id": payment.borrowing_id,
        "book": payment.borrowing.book.title,
        "receipt": payment.receipt_number,
    }
    transaction.on_commit(lambda: send_telegram_payment_notification.delay(data))


def outstanding_fine(borrowing):
    """Current fine minus everything already settled against it."""
    settled = borrowing.payments.exclude(
        payment_status=FinePayment.PaymentStatus.PENDING
    ).aggregate(total=Sum("amount_paid"))["total"] or Decimal("0.00")
    return max(borrowing.fine - settled, Decimal("0.00"))


@transaction.atomic
def record_payment(borrowing, amount_paid, method, notes="", actor=None, today=None):
    """
    Record a payment or waiver against a borrowing's current fine.

    Args:
        borrowing: Borrowing instance or primary key.
        amount_paid: amount handed over; ignored for waivers.
        method: one of ``FinePayment.PaymentMethod``.
        notes: free text stored on the receipt.
        actor: staff user processing the payment.

    Returns:
        FinePayment instance

    Raises:
        NotFound: no such borrowing.
        NoFineDue: the recomputed fine is zero.
        InvalidAmount: amount is missing, malformed or not positive.
    """
    try:
        method = FinePayment.PaymentMethod(method)
    except ValueError:
        raise ValidationError({"payment_method": f"Unknown payment method: {method}"})

    locked = _lock_with_current_fine(borrowing, today)
    fine = locked.fine
    if fine <= 0:
        raise NoFineDue()

    if method == FinePayment.PaymentMethod.WAIVED:
        amount = fine
        payment_status = FinePayment.PaymentStatus.WAIVED
    else:
        amount = min(_parse_amount(amount_paid), fine)
        payment_status = FinePayment.status_for(amount, fine)

    payment = FinePayment.objects.create(
        borrowing=locked,
        user=locked.user,
        processed_by=actor,
        amount_paid=amount,
        total_fine=fine,
        payment_method=method,
        payment_status=payment_status,
        notes=notes or "",
    )

    locked.apply_fine_status(payment_status)
    locked.save(update_fields=["fine_status"])

    logger.info(
        f"Recorded {payment_status} payment {payment.receipt_number} of {amount} "
        f"against fine {fine} for borrowing id={locked.pk}"
    )
    _notify(payment)
    return payment


def create_stripe_checkout_session(borrowing, amount, currency_code):
    amount_cents = int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))

    return stripe.checkout.Session.create(
        payment_method_types=["card"],
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": currency_code.lower(),
                "product_data": {
                    "name": f"Library fine for book '{borrowing.book.title}'",
                },
                "unit_amount": amount_cents,
            },
            "quantity": 1,
        }],
        success_url=settings.STRIPE_SUCCESS_URL + "?session_id={CHECKOUT_SESSION_ID}",
        cancel_url=settings.STRIPE_CANCEL_URL,
        metadata={
            "borrowing_id": borrowing.id,
            "payment_type": "FINE",
        },
    )


@transaction.atomic
def start_online_payment(borrowing, amount=None, today=None):
    """
    Open a Stripe Checkout session for a borrower paying their own fine.

    Stores a pending ``online`` payment for the requested amount (the
    outstanding fine by default); the webhook settles it later.
    """
    locked = _lock_with_current_fine(borrowing, today)
    fine = locked.fine
    if fine <= 0:
        raise NoFineDue()

    if amount is None:
        amount = outstanding_fine(locked)
        if amount <= 0:
            raise NoFineDue("This fine has already been settled.")
    else:
        amount = min(_parse_amount(amount), fine)

    session = create_stripe_checkout_session(
        locked, amount, get_active_policy().currency_code
    )

    payment = FinePayment.objects.create(
        borrowing=locked,
        user=locked.user,
        amount_paid=amount,
        total_fine=fine,
        payment_method=FinePayment.PaymentMethod.ONLINE,
        payment_status=FinePayment.PaymentStatus.PENDING,
        session_id=session.id,
        session_url=session.url,
    )

    locked.apply_fine_status(FinePayment.PaymentStatus.PENDING)
    locked.save(update_fields=["fine_status"])

    logger.info(
        f"Started online payment {payment.receipt_number} for borrowing id={locked.pk} "
        f"(session {session.id})"
    )
    return payment


def _lock_session_payment(session_id):
    try:
        return (
            FinePayment.objects.select_for_update()
            .select_related("borrowing__book", "user")
            .get(session_id=session_id)
        )
    except FinePayment.DoesNotExist:
        raise NotFound(f"Payment with session_id={session_id} not found.")


@transaction.atomic
def settle_online_payment(session_id):
    """Mark a pending online payment as completed. Replays are no-ops."""
    payment = _lock_session_payment(session_id)
    if payment.payment_status != FinePayment.PaymentStatus.PENDING:
        logger.info(f"Payment {payment.receipt_number} already settled, skipping")
        return payment

    payment.payment_status = FinePayment.status_for(payment.amount_paid, payment.total_fine)
    payment.payment_date = timezone.now()
    payment.save(update_fields=["payment_status", "payment_date"])

    borrowing = Borrowing.objects.select_for_update().get(pk=payment.borrowing_id)
    borrowing.apply_fine_status(payment.payment_status)
    borrowing.save(update_fields=["fine_status"])

    logger.info(
        f"Online payment {payment.receipt_number} completed as {payment.payment_status} "
        f"for borrowing id={borrowing.pk}"
    )
    _notify(payment)
    return payment


@transaction.atomic
def expire_online_payment(session_id):
    """Record that a checkout session lapsed without payment."""
    payment = _lock_session_payment(session_id)
    if payment.payment_status != FinePayment.PaymentStatus.PENDING:
        return payment

    payment.amount_paid = Decimal("0.00")
    payment.notes = (payment.notes + "\nCheckout session expired.").strip()
    payment.save(update_fields=["amount_paid", "notes"])

    logger.info(f"Checkout session {session_id} expired for payment {payment.receipt_number}")
    return payment
