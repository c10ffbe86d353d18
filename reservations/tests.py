from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from books.models import Book
from borrowings.services import issue_book, return_borrowing
from config.exceptions import (
    DuplicateReservation,
    InvalidReservationState,
    NoCopiesAvailable,
)
from reservations.models import Reservation
from reservations.services import (
    cancel_reservation,
    expire_reservation,
    expire_stale_reservations,
    fulfill_reservation,
    reserve_book,
)
from users.models import User


@pytest.fixture
def user(db):
    return User.objects.create_user(email="reader@example.com", password="pass")


@pytest.fixture
def staff(db):
    return User.objects.create_user(
        email="desk@example.com", password="pass", is_staff=True
    )


@pytest.fixture
def book(db):
    return Book.objects.create(
        title="Kindred",
        author="Octavia E. Butler",
        isbn="9780807083697",
        copies_total=2,
        copies_available=2,
    )


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def available(book):
    book.refresh_from_db()
    return book.copies_available


@pytest.mark.django_db
def test_reserve_holds_one_copy(book, user):
    reservation = reserve_book(book, user)

    assert reservation.status == Reservation.ReservationStatus.PENDING
    assert reservation.expiry_date > reservation.reservation_date
    assert available(book) == 1


@pytest.mark.django_db
def test_duplicate_pending_reservation_is_rejected(book, user):
    reserve_book(book, user)
    with pytest.raises(DuplicateReservation):
        reserve_book(book, user)
    assert available(book) == 1


@pytest.mark.django_db
def test_cannot_reserve_when_nothing_is_available(book, user):
    Book.objects.filter(pk=book.pk).update(copies_available=0)
    book.refresh_from_db()
    with pytest.raises(NoCopiesAvailable):
        reserve_book(book, user)
    assert not Reservation.objects.exists()


@pytest.mark.django_db
def test_expiry_must_be_in_the_future(book, user):
    with pytest.raises(ValidationError):
        reserve_book(book, user, expiry_date=timezone.now() - timedelta(minutes=1))


@pytest.mark.django_db
def test_cancel_releases_the_hold(book, user):
    reservation = reserve_book(book, user)
    cancel_reservation(reservation)

    assert reservation.status == Reservation.ReservationStatus.CANCELLED
    assert available(book) == 2

    with pytest.raises(InvalidReservationState):
        cancel_reservation(reservation)
    assert available(book) == 2


@pytest.mark.django_db
def test_fulfill_releases_the_hold(book, user):
    reservation = reserve_book(book, user)
    fulfill_reservation(reservation)

    reservation.refresh_from_db()
    assert reservation.status == Reservation.ReservationStatus.FULFILLED
    assert available(book) == 2


@pytest.mark.django_db
def test_lapsed_hold_is_expired_once(book, user):
    now = timezone.now()
    reservation = reserve_book(book, user, now=now)

    assert expire_reservation(reservation, now) is False
    later = reservation.expiry_date + timedelta(seconds=1)
    assert expire_reservation(reservation, later) is True
    assert expire_reservation(reservation, later) is False

    reservation.refresh_from_db()
    assert reservation.status == Reservation.ReservationStatus.EXPIRED
    assert available(book) == 2


@pytest.mark.django_db
def test_expire_stale_reservations(book, user, staff):
    now = timezone.now()
    stale = reserve_book(book, user, expiry_date=now + timedelta(hours=1), now=now)
    fresh = reserve_book(book, staff, expiry_date=now + timedelta(days=2), now=now)

    assert expire_stale_reservations(now + timedelta(hours=2)) == 1

    stale.refresh_from_db()
    fresh.refresh_from_db()
    assert stale.status == Reservation.ReservationStatus.EXPIRED
    assert fresh.status == Reservation.ReservationStatus.PENDING
    assert available(book) == 1


@pytest.mark.django_db
def test_reserve_releases_lapsed_holds_on_the_book(book, user, staff):
    placed = timezone.now() - timedelta(days=4)
    lapsed = reserve_book(book, user, expiry_date=placed + timedelta(days=1), now=placed)
    reserve_book(book, staff, expiry_date=placed + timedelta(days=1), now=placed)
    assert available(book) == 0

    again = reserve_book(book, user)

    lapsed.refresh_from_db()
    assert lapsed.status == Reservation.ReservationStatus.EXPIRED
    assert again.status == Reservation.ReservationStatus.PENDING
    assert available(book) == 1


@pytest.mark.django_db
def test_copies_stay_in_bounds_through_mixed_activity(book, user, staff):
    """Available copies equal total minus active loans minus pending holds."""
    third = User.objects.create_user(email="third@example.com", password="pass")

    def assert_balanced():
        book.refresh_from_db()
        loans = book.borrowings.filter(return_date__isnull=True).count()
        holds = book.reservations.filter(
            status=Reservation.ReservationStatus.PENDING
        ).count()
        assert 0 <= book.copies_available <= book.copies_total
        assert book.copies_available == book.copies_total - loans - holds

    hold = reserve_book(book, user)
    assert_balanced()
    loan = issue_book(book, staff)
    assert_balanced()
    with pytest.raises(NoCopiesAvailable):
        issue_book(book, third)
    assert_balanced()
    issue_book(book, user, reservation=hold)
    assert_balanced()
    return_borrowing(loan)
    assert_balanced()
    reserve_book(book, third)
    assert_balanced()
    assert available(book) == 0


# HTTP layer


@pytest.mark.django_db
def test_create_reservation_over_http(api_client, book, user):
    response = api_client.post(reverse("reservations:reservations-list"), {"book": book.id})

    assert response.status_code == 201
    assert response.data["reservation"]["user"] == user.id
    assert response.data["reservation"]["status"] == "pending"
    assert available(book) == 1


@pytest.mark.django_db
def test_reservation_without_copies_returns_conflict(api_client, book):
    Book.objects.filter(pk=book.pk).update(copies_available=0)
    response = api_client.post(reverse("reservations:reservations-list"), {"book": book.id})
    assert response.status_code == 409


@pytest.mark.django_db
def test_list_expires_lapsed_holds(api_client, book, user):
    reservation = reserve_book(book, user)
    Reservation.objects.filter(pk=reservation.pk).update(
        expiry_date=timezone.now() - timedelta(minutes=5)
    )

    response = api_client.get(reverse("reservations:reservations-list"))

    assert response.status_code == 200
    assert response.data[0]["status"] == "expired"
    assert available(book) == 2


@pytest.mark.django_db
def test_member_sees_only_own_reservations(api_client, book, user, staff):
    own = reserve_book(book, user)
    reserve_book(book, staff)

    response = api_client.get(reverse("reservations:reservations-list"))

    assert [item["id"] for item in response.data] == [own.id]


@pytest.mark.django_db
def test_owner_cancels_over_http(api_client, book, user):
    reservation = reserve_book(book, user)
    url = reverse("reservations:reservations-cancel", kwargs={"pk": reservation.pk})

    response = api_client.post(url)
    assert response.status_code == 200
    assert response.data["reservation"]["status"] == "cancelled"

    response = api_client.post(url)
    assert response.status_code == 400


@pytest.mark.django_db
def test_fulfill_is_staff_only(api_client, book, user, staff):
    reservation = reserve_book(book, user)
    url = reverse("reservations:reservations-fulfill", kwargs={"pk": reservation.pk})

    assert api_client.post(url).status_code == 403

    client = APIClient()
    client.force_authenticate(user=staff)
    response = client.post(url)
    assert response.status_code == 200
    assert response.data["reservation"]["status"] == "fulfilled"
    assert available(book) == 2
