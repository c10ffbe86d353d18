import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from books.services import on_reservation_resolved, on_reserve
from config.exceptions import (
    DuplicateReservation,
    InvalidReservationState,
    NoCopiesAvailable,
    ReservationMismatch,
)
from reservations.models import Reservation

logger = logging.getLogger(__name__)

PENDING = Reservation.ReservationStatus.PENDING


def _resolve(reservation, new_status):
    """
    Move a pending reservation to ``new_status`` and release its hold.

    The status change is a conditional UPDATE on ``status='pending'``, so a
    reservation resolved concurrently releases its unit only once. Returns
    False when the reservation was no longer pending.
    """
    updated = Reservation.objects.filter(pk=reservation.pk, status=PENDING).update(
        status=new_status
    )
    if not updated:
        reservation.refresh_from_db(fields=["status"])
        return False

    on_reservation_resolved(reservation.book_id)
    reservation.status = new_status
    logger.info(f"Reservation id={reservation.pk} marked {new_status}")
    return True


def _resolve_or_fail(reservation, new_status):
    if not _resolve(reservation, new_status):
        raise InvalidReservationState(
            f"Cannot update a reservation with status: {reservation.status}"
        )
    return reservation


@transaction.atomic
def reserve_book(book, user, expiry_date=None, now=None):
    """
    Place a hold on one copy of ``book`` for ``user``.

    Raises:
        NoCopiesAvailable: every copy is borrowed or on hold.
        DuplicateReservation: the user already has a pending hold on the book.
    """
    now = now or timezone.now()
    expiry_date = expiry_date or now + timedelta(days=settings.RESERVATION_HOLD_DAYS)
    if expiry_date <= now:
        raise ValidationError({"expiry_date": "Expiry date must be in the future."})

    expire_stale_reservations(now, book=book)

    if Reservation.objects.filter(user=user, book=book, status=PENDING).exists():
        raise DuplicateReservation()

    if book.copies_available <= 0:
        raise NoCopiesAvailable("No copies available for reservation.")

    on_reserve(book)
    try:
        with transaction.atomic():
            reservation = Reservation.objects.create(
                book=book,
                user=user,
                reservation_date=now,
                expiry_date=expiry_date,
            )
    except IntegrityError:
        raise DuplicateReservation()

    logger.info(
        f"Reservation id={reservation.pk} placed on book id={book.pk} "
        f"for user id={user.pk} until {expiry_date.isoformat()}"
    )
    return reservation


@transaction.atomic
def cancel_reservation(reservation):
    return _resolve_or_fail(reservation, Reservation.ReservationStatus.CANCELLED)


@transaction.atomic
def fulfill_reservation(reservation):
    """Mark a hold as collected and return its unit to the shelf count."""
    return _resolve_or_fail(reservation, Reservation.ReservationStatus.FULFILLED)


@transaction.atomic
def expire_reservation(reservation, now=None):
    """Expire ``reservation`` if its hold has lapsed. Returns True if it did."""
    if not reservation.is_expired(now):
        return False
    return _resolve(reservation, Reservation.ReservationStatus.EXPIRED)


def expire_stale_reservations(now=None, book=None):
    """
    Expire every pending reservation whose expiry date has passed.

    With ``book`` given only that book's holds are checked, and the instance
    is refreshed so its ``copies_available`` counts the released copies.
    """
    now = now or timezone.now()
    stale = Reservation.objects.filter(status=PENDING, expiry_date__lt=now)
    if book is not None:
        stale = stale.filter(book=book)

    expired = 0
    for reservation in stale:
        if expire_reservation(reservation, now):
            expired += 1

    if expired:
        logger.info(f"Expired {expired} stale reservations")
        if book is not None:
            book.refresh_from_db(fields=["copies_available"])
    return expired


def release_for_issue(reservation, book, user, now=None):
    """
    Fulfil ``reservation`` as part of issuing ``book`` to ``user``.

    Must run inside the issuing transaction: the hold's unit is returned
    here and taken again by the new borrowing, so the pair nets to a single
    unit moving from "on hold" to "on loan".
    """
    if reservation.book_id != book.pk or reservation.user_id != user.pk:
        raise ReservationMismatch()
    if not reservation.is_pending:
        raise InvalidReservationState(
            f"Cannot fulfill a reservation with status: {reservation.status}"
        )
    if reservation.is_expired(now):
        raise InvalidReservationState("Reservation has expired.")

    return _resolve_or_fail(reservation, Reservation.ReservationStatus.FULFILLED)
