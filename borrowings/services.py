"""
Borrowing lifecycle: issue, lazy overdue evaluation, return and bulk
fine recalculation.

Status and fine fields of a ``Borrowing`` are only changed through the
transition methods on the model, driven from here.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from books.services import on_issue, on_return
from borrowings.models import Borrowing
from config.exceptions import AlreadyReturned, DuplicateBorrow, NotFound
from fines.services import get_active_policy
from reservations.services import expire_stale_reservations, release_for_issue

logger = logging.getLogger(__name__)


def default_due_date(issue_date):
    return issue_date + timedelta(days=settings.LOAN_PERIOD_DAYS)


@transaction.atomic
def issue_book(book, user, due_date=None, reservation=None, issue_date=None):
    """
    Lend one copy of ``book`` to ``user``.

    When ``reservation`` is given it must be the user's pending hold on this
    book; it is fulfilled in the same transaction.

    Raises:
        DuplicateBorrow: the user already has this book out.
        NoCopiesAvailable: no copy is free to lend.
    """
    issue_date = issue_date or timezone.localdate()
    due_date = due_date or default_due_date(issue_date)
    if due_date < issue_date:
        raise ValidationError({"due_date": "Due date cannot be before issue date."})

    expire_stale_reservations(book=book)

    if Borrowing.objects.filter(
        user=user, book=book, status__in=Borrowing.ACTIVE_STATUSES
    ).exists():
        raise DuplicateBorrow()

    if reservation is not None:
        release_for_issue(reservation, book, user)

    on_issue(book)

    try:
        with transaction.atomic():
            borrowing = Borrowing.objects.create(
                book=book,
                user=user,
                issue_date=issue_date,
                due_date=due_date,
            )
    except IntegrityError:
        raise DuplicateBorrow()

    logger.info(
        f"Issued book id={book.pk} to user id={user.pk} "
        f"(borrowing id={borrowing.pk}, due {due_date.isoformat()})"
    )
    return borrowing


def evaluate_borrowing(borrowing, today=None, policy=None):
    """
    Lazily refresh an unreturned borrowing: promote it to overdue and
    recompute its fine. Persists only when something changed.

    The write is conditioned on the status and fine status read, so a
    return or payment committed in between is never overwritten.
    """
    today = today or timezone.localdate()
    previous_status = borrowing.status
    previous_fine_status = borrowing.fine_status

    if not borrowing.evaluate(today, policy or get_active_policy()):
        return False

    updated = Borrowing.objects.filter(
        pk=borrowing.pk,
        status=previous_status,
        fine_status=previous_fine_status,
    ).update(
        status=borrowing.status,
        fine=borrowing.fine,
        fine_status=borrowing.fine_status,
    )
    if not updated:
        borrowing.refresh_from_db()
        return False

    logger.info(
        f"Borrowing id={borrowing.pk} evaluated: status={borrowing.status}, "
        f"fine={borrowing.fine}"
    )
    return True


@transaction.atomic
def return_borrowing(borrowing, return_date=None):
    """
    Check a borrowed copy back in and fix its final fine.

    Args:
        borrowing: Borrowing instance or primary key.
        return_date: date the copy came back, today if omitted.

    Raises:
        NotFound: no such borrowing.
        AlreadyReturned: the borrowing is already closed.
    """
    borrowing_id = borrowing.pk if isinstance(borrowing, Borrowing) else borrowing
    try:
        locked = (
            Borrowing.objects.select_for_update()
            .select_related("book")
            .get(pk=borrowing_id)
        )
    except Borrowing.DoesNotExist:
        raise NotFound(f"Borrowing {borrowing_id} not found.")

    if locked.status == Borrowing.BorrowingStatus.RETURNED:
        raise AlreadyReturned()

    return_date = return_date or timezone.localdate()
    if return_date < locked.issue_date:
        raise ValidationError({"return_date": "Return date cannot be before issue date."})

    locked.close(return_date, get_active_policy())

    updated = (
        Borrowing.objects.filter(pk=locked.pk)
        .exclude(status=Borrowing.BorrowingStatus.RETURNED)
        .update(
            status=locked.status,
            return_date=locked.return_date,
            fine=locked.fine,
            fine_status=locked.fine_status,
        )
    )
    if not updated:
        raise AlreadyReturned()

    on_return(locked.book)

    logger.info(
        f"Borrowing id={locked.pk} returned on {return_date.isoformat()} "
        f"with fine {locked.fine}"
    )
    return locked


def recalculate_all(today=None):
    """
    Re-run overdue promotion and fine calculation for every unreturned
    borrowing past its due date. Safe to repeat; returns how many
    borrowings actually changed.
    """
    today = today or timezone.localdate()
    policy = get_active_policy()

    candidates = Borrowing.objects.filter(
        status__in=Borrowing.ACTIVE_STATUSES,
        return_date__isnull=True,
        due_date__lt=today,
    )
    logger.info(f"Processing {candidates.count()} borrowings for fine recalculation")

    updated = 0
    for borrowing in candidates.iterator():
        if evaluate_borrowing(borrowing, today, policy):
            updated += 1

    logger.info(f"Successfully updated {updated} overdue borrowings")
    return updated
