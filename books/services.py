"""
Availability reconciliation for books.

Every event that creates or resolves a borrowing or a reservation moves
``copies_available`` by exactly one unit. Each move is a single guarded
UPDATE, so two concurrent requests can never both take the last copy and
the counter never leaves ``[0, copies_total]``. A guarded update that
matches no row fails the triggering operation instead of clamping.
"""

import logging

from django.db.models import F

from books.models import Book
from config.exceptions import AvailabilityConflict, NoCopiesAvailable, NotFound

logger = logging.getLogger(__name__)


def _adjust_available(book, delta):
    book_id = book.pk if isinstance(book, Book) else book
    queryset = Book.objects.filter(pk=book_id)

    if delta < 0:
        guarded = queryset.filter(copies_available__gte=-delta)
    else:
        guarded = queryset.filter(copies_available__lte=F("copies_total") - delta)

    updated = guarded.update(copies_available=F("copies_available") + delta)
    if not updated:
        if not queryset.exists():
            raise NotFound(f"Book {book_id} not found.")
        if delta < 0:
            raise NoCopiesAvailable()
        logger.error(f"Availability overflow for book id={book_id} (delta={delta})")
        raise AvailabilityConflict()

    if isinstance(book, Book):
        book.refresh_from_db(fields=["copies_available"])

    logger.debug(f"Book id={book_id} copies_available adjusted by {delta}")


def on_issue(book):
    _adjust_available(book, -1)


def on_return(book):
    _adjust_available(book, 1)


def on_reserve(book):
    _adjust_available(book, -1)


def on_reservation_resolved(book):
    """Release a reservation hold (cancelled, expired or fulfilled)."""
    _adjust_available(book, 1)


def set_copies_total(book, copies_total):
    """
    Change a book's stock size, moving ``copies_available`` by the same delta.

    Copies currently out on loan or on hold stay accounted for, so shrinking
    below the number of units in circulation is rejected.
    """
    delta = copies_total - book.copies_total
    if delta == 0:
        return book

    updated = Book.objects.filter(
        pk=book.pk,
        copies_total=book.copies_total,
        copies_available__gte=-delta,
    ).update(
        copies_total=copies_total,
        copies_available=F("copies_available") + delta,
    )
    if not updated:
        raise AvailabilityConflict(
            "Total copies cannot drop below the copies currently borrowed or reserved."
        )

    book.refresh_from_db(fields=["copies_total", "copies_available"])
    logger.info(f"Book id={book.pk} stock resized to {copies_total} copies")
    return book
