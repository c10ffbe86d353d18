from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from books.models import Book
from borrowings.models import Borrowing
from borrowings.services import (
    evaluate_borrowing,
    issue_book,
    recalculate_all,
    return_borrowing,
)
from config.exceptions import AlreadyReturned, DuplicateBorrow, NoCopiesAvailable
from fines.services import update_policy
from payments.services import record_payment
from reservations.models import Reservation
from reservations.services import reserve_book
from users.models import User


def days_ago(days):
    return timezone.localdate() - timedelta(days=days)


class BorrowingsTests(APITestCase):
    def setUp(self):
        self.staff_user = User.objects.create_user(
            email="staff@example.com", password="pass", is_staff=True
        )
        self.regular_user = User.objects.create_user(
            email="user@example.com", password="pass", is_staff=False
        )
        self.book = Book.objects.create(
            title="Test Book",
            author="Test Author",
            isbn="9780000000001",
            copies_total=3,
            copies_available=3,
        )

    def create_loan(self, user=None, due_in=7, **kwargs):
        """Insert an active loan directly, taking one copy off the shelf."""
        Book.objects.filter(pk=self.book.pk).update(
            copies_available=self.book.copies_available - 1
        )
        self.book.refresh_from_db()
        return Borrowing.objects.create(
            book=self.book,
            user=user or self.regular_user,
            issue_date=days_ago(20),
            due_date=timezone.localdate() + timedelta(days=due_in),
            **kwargs,
        )

    def test_create_borrowing_decreases_available_copies(self):
        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-list")
        data = {
            "book": self.book.id,
            "due_date": (timezone.localdate() + timedelta(days=7)).isoformat(),
        }

        response = self.client.post(url, data)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 2)
        self.assertEqual(response.data["borrowing"]["user"], self.regular_user.id)
        self.assertEqual(response.data["borrowing"]["status"], "borrowed")

    def test_default_loan_period(self):
        self.client.force_authenticate(user=self.regular_user)
        response = self.client.post(
            reverse("borrowing:borrowings-list"), {"book": self.book.id}
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        expected = timezone.localdate() + timedelta(days=14)
        self.assertEqual(response.data["borrowing"]["due_date"], expected.isoformat())

    def test_create_borrowing_fails_when_no_copies_available(self):
        Book.objects.filter(pk=self.book.pk).update(copies_available=0)

        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-list")
        response = self.client.post(url, {"book": self.book.id})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(Borrowing.objects.exists())

    def test_due_date_in_the_past_is_rejected(self):
        self.client.force_authenticate(user=self.regular_user)
        response = self.client.post(
            reverse("borrowing:borrowings-list"),
            {"book": self.book.id, "due_date": days_ago(1).isoformat()},
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_regular_user_cannot_issue_to_someone_else(self):
        self.client.force_authenticate(user=self.regular_user)
        response = self.client.post(
            reverse("borrowing:borrowings-list"),
            {"book": self.book.id, "user": self.staff_user.id},
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_staff_issues_to_member(self):
        self.client.force_authenticate(user=self.staff_user)
        response = self.client.post(
            reverse("borrowing:borrowings-list"),
            {"book": self.book.id, "user": self.regular_user.id},
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["borrowing"]["user"], self.regular_user.id)

    def test_second_active_borrow_of_same_book_is_rejected(self):
        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-list")
        self.client.post(url, {"book": self.book.id})
        response = self.client.post(url, {"book": self.book.id})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 2)

    def test_return_book_success_increases_available_without_fine(self):
        borrowing = self.create_loan()

        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-return-book", kwargs={"pk": borrowing.pk})

        response = self.client.post(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        borrowing.refresh_from_db()
        self.assertEqual(borrowing.return_date, timezone.localdate())
        self.assertEqual(borrowing.status, Borrowing.BorrowingStatus.RETURNED)
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.NONE)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 3)
        self.assertEqual(response.data["fine_amount"], "0.00")

    def test_return_book_success_with_fine(self):
        borrowing = self.create_loan(due_in=-5)

        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-return-book", kwargs={"pk": borrowing.pk})

        response = self.client.post(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        borrowing.refresh_from_db()
        self.assertEqual(borrowing.status, Borrowing.BorrowingStatus.RETURNED)
        self.assertEqual(borrowing.fine, Decimal("5.00"))
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.PENDING)
        self.assertEqual(response.data["fine_amount"], "5.00")
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 3)

    def test_return_with_explicit_date(self):
        borrowing = self.create_loan(due_in=-5)

        self.client.force_authenticate(user=self.staff_user)
        url = reverse("borrowing:borrowings-return-book", kwargs={"pk": borrowing.pk})
        response = self.client.post(url, {"return_date": days_ago(3).isoformat()})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["fine_amount"], "2.00")

    def test_return_book_already_returned_error(self):
        borrowing = Borrowing.objects.create(
            book=self.book,
            user=self.regular_user,
            issue_date=days_ago(10),
            due_date=days_ago(3),
            return_date=days_ago(4),
            status=Borrowing.BorrowingStatus.RETURNED,
        )
        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-return-book", kwargs={"pk": borrowing.pk})
        response = self.client.post(url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("already been returned", str(response.data))
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 3)

    def test_get_queryset_filters_is_active(self):
        active_borrow = self.create_loan(due_in=5)
        inactive_borrow = Borrowing.objects.create(
            book=self.book,
            user=self.regular_user,
            issue_date=days_ago(10),
            due_date=days_ago(5),
            return_date=days_ago(6),
            status=Borrowing.BorrowingStatus.RETURNED,
        )
        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-list")

        response = self.client.get(url, {"is_active": "true"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        borrow_ids = [borrow["id"] for borrow in response.data]
        self.assertIn(active_borrow.id, borrow_ids)
        self.assertNotIn(inactive_borrow.id, borrow_ids)

        response = self.client.get(url, {"is_active": "false"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        borrow_ids = [borrow["id"] for borrow in response.data]
        self.assertIn(inactive_borrow.id, borrow_ids)
        self.assertNotIn(active_borrow.id, borrow_ids)

    def test_list_promotes_overdue_loans_before_filtering(self):
        late = self.create_loan(due_in=-1)
        self.assertEqual(late.status, Borrowing.BorrowingStatus.BORROWED)

        self.client.force_authenticate(user=self.regular_user)
        response = self.client.get(
            reverse("borrowing:borrowings-list"), {"status": "overdue"}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([borrow["id"] for borrow in response.data], [late.id])
        self.assertEqual(response.data[0]["fine"], "1.00")
        self.assertEqual(response.data[0]["fine_status"], "pending")

    def test_retrieve_refreshes_fine(self):
        late = self.create_loan(due_in=-3)
        self.client.force_authenticate(user=self.regular_user)
        response = self.client.get(
            reverse("borrowing:borrowings-detail", kwargs={"pk": late.pk})
        )
        self.assertEqual(response.data["status"], "overdue")
        self.assertEqual(response.data["fine"], "3.00")

    def test_regular_user_sees_only_own_borrowings(self):
        other_user = User.objects.create_user(
            email="other@example.com", password="pass"
        )
        borrow_self = self.create_loan(due_in=1)
        borrow_other = self.create_loan(user=other_user, due_in=1)

        self.client.force_authenticate(user=self.regular_user)
        url = reverse("borrowing:borrowings-list")
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        borrow_ids = [borrow["id"] for borrow in response.data]
        self.assertIn(borrow_self.id, borrow_ids)
        self.assertNotIn(borrow_other.id, borrow_ids)

    def test_regular_user_cannot_filter_by_user_id(self):
        self.client.force_authenticate(user=self.regular_user)
        response = self.client.get(
            reverse("borrowing:borrowings-list"), {"user_id": self.staff_user.id}
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_staff_user_sees_all_borrowings(self):
        other_user = User.objects.create_user(
            email="other2@example.com", password="pass"
        )
        borrow_self = self.create_loan(user=self.staff_user, due_in=1)
        borrow_other = self.create_loan(user=other_user, due_in=1)

        self.client.force_authenticate(user=self.staff_user)
        url = reverse("borrowing:borrowings-list")
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        borrow_ids = [borrow["id"] for borrow in response.data]
        self.assertIn(borrow_self.id, borrow_ids)
        self.assertIn(borrow_other.id, borrow_ids)

    def test_issue_fulfils_own_reservation(self):
        Book.objects.filter(pk=self.book.pk).update(copies_total=1, copies_available=1)
        self.book.refresh_from_db()
        reservation = reserve_book(self.book, self.regular_user)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)

        self.client.force_authenticate(user=self.staff_user)
        response = self.client.post(
            reverse("borrowing:borrowings-list"),
            {
                "book": self.book.id,
                "user": self.regular_user.id,
                "reservation": reservation.id,
                "fulfill_reservation": True,
            },
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        reservation.refresh_from_db()
        self.assertEqual(reservation.status, Reservation.ReservationStatus.FULFILLED)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)

    def test_issue_rejects_someone_elses_reservation(self):
        other_user = User.objects.create_user(email="third@example.com", password="pass")
        reservation = reserve_book(self.book, other_user)

        self.client.force_authenticate(user=self.staff_user)
        response = self.client.post(
            reverse("borrowing:borrowings-list"),
            {
                "book": self.book.id,
                "user": self.regular_user.id,
                "reservation": reservation.id,
                "fulfill_reservation": True,
            },
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Borrowing.objects.exists())
        reservation.refresh_from_db()
        self.assertTrue(reservation.is_pending)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 2)

    def test_issue_releases_lapsed_hold_on_last_copy(self):
        Book.objects.filter(pk=self.book.pk).update(copies_total=1, copies_available=1)
        self.book.refresh_from_db()
        placed = timezone.now() - timedelta(hours=2)
        reservation = reserve_book(
            self.book, self.staff_user, expiry_date=placed + timedelta(hours=1), now=placed
        )

        self.client.force_authenticate(user=self.regular_user)
        response = self.client.post(reverse("borrowing:borrowings-list"), {"book": self.book.id})

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        reservation.refresh_from_db()
        self.assertEqual(reservation.status, Reservation.ReservationStatus.EXPIRED)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)


class BorrowingServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="reader@example.com", password="pass")
        self.book = Book.objects.create(
            title="Dune",
            author="Frank Herbert",
            isbn="9780441013593",
            copies_total=1,
            copies_available=1,
        )

    def issue(self, due_days_ago):
        return issue_book(
            self.book,
            self.user,
            due_date=days_ago(due_days_ago),
            issue_date=days_ago(30),
        )

    def test_return_on_due_date_owes_nothing(self):
        borrowing = self.issue(due_days_ago=0)
        borrowing = return_borrowing(borrowing, return_date=borrowing.due_date)
        self.assertEqual(borrowing.fine, Decimal("0.00"))
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.NONE)

    def test_return_one_day_late_owes_one_day(self):
        borrowing = self.issue(due_days_ago=5)
        borrowing = return_borrowing(
            borrowing, return_date=borrowing.due_date + timedelta(days=1)
        )
        self.assertEqual(borrowing.fine, Decimal("1.00"))
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.PENDING)

    def test_last_copy_goes_to_one_borrower_only(self):
        issue_book(self.book, self.user)
        other = User.objects.create_user(email="late@example.com", password="pass")
        with self.assertRaises(NoCopiesAvailable):
            issue_book(self.book, other)
        self.assertEqual(Borrowing.objects.count(), 1)

    def test_duplicate_borrow(self):
        Book.objects.filter(pk=self.book.pk).update(copies_total=2, copies_available=2)
        self.book.refresh_from_db()
        issue_book(self.book, self.user)
        with self.assertRaises(DuplicateBorrow):
            issue_book(self.book, self.user)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 1)

    def test_evaluation_is_idempotent(self):
        borrowing = self.issue(due_days_ago=4)
        today = timezone.localdate()

        self.assertTrue(evaluate_borrowing(borrowing, today))
        self.assertFalse(evaluate_borrowing(borrowing, today))

        borrowing.refresh_from_db()
        self.assertEqual(borrowing.status, Borrowing.BorrowingStatus.OVERDUE)
        self.assertEqual(borrowing.fine, Decimal("4.00"))

    def test_policy_change_applies_to_unreturned_loans(self):
        borrowing = self.issue(due_days_ago=4)
        evaluate_borrowing(borrowing)
        update_policy({"rate_per_day": "2.00"})

        evaluate_borrowing(borrowing)
        borrowing.refresh_from_db()
        self.assertEqual(borrowing.fine, Decimal("8.00"))

    def test_policy_change_does_not_touch_returned_loans(self):
        borrowing = self.issue(due_days_ago=4)
        return_borrowing(borrowing)
        update_policy({"rate_per_day": "2.00"})

        borrowing.refresh_from_db()
        self.assertFalse(evaluate_borrowing(borrowing))
        self.assertEqual(borrowing.fine, Decimal("4.00"))

    def test_second_return_does_not_release_another_copy(self):
        borrowing = self.issue(due_days_ago=0)
        stale = Borrowing.objects.get(pk=borrowing.pk)

        return_borrowing(borrowing)
        with self.assertRaises(AlreadyReturned):
            return_borrowing(stale)

        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 1)

    def test_returns_from_two_stale_instances_release_one_copy(self):
        borrowing = self.issue(due_days_ago=2)
        first = Borrowing.objects.get(pk=borrowing.pk)
        second = Borrowing.objects.get(pk=borrowing.pk)

        return_borrowing(first)
        # second was loaded before the return and still looks active
        self.assertTrue(second.is_active)
        with self.assertRaises(AlreadyReturned):
            return_borrowing(second)

        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 1)
        second.refresh_from_db()
        self.assertEqual(second.fine, Decimal("2.00"))

    def test_fine_dropping_to_zero_clears_settlement_status(self):
        borrowing = self.issue(due_days_ago=4)
        record_payment(borrowing, "3.00", "cash")
        borrowing.refresh_from_db()
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.PARTIAL)

        update_policy({"rate_per_day": "1.00", "max_fine_per_book": "0"})
        self.assertEqual(recalculate_all(), 1)

        borrowing.refresh_from_db()
        self.assertEqual(borrowing.fine, Decimal("0.00"))
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.NONE)

    def test_waived_status_survives_fine_dropping_to_zero(self):
        borrowing = self.issue(due_days_ago=4)
        record_payment(borrowing, None, "waived")

        update_policy({"rate_per_day": "1.00", "max_fine_per_book": "0"})
        recalculate_all()

        borrowing.refresh_from_db()
        self.assertEqual(borrowing.fine, Decimal("0.00"))
        self.assertEqual(borrowing.fine_status, Borrowing.FineStatus.WAIVED)

    def test_issue_expires_lapsed_holds_on_the_book(self):
        other = User.objects.create_user(email="holder@example.com", password="pass")
        placed = timezone.now() - timedelta(days=5)
        reserve_book(self.book, other, expiry_date=placed + timedelta(days=3), now=placed)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)

        issue_book(self.book, self.user)

        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)
        self.assertFalse(
            Reservation.objects.filter(status=Reservation.ReservationStatus.PENDING).exists()
        )
