from django.test import TestCase, RequestFactory
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from books.models import Book
from books.serializers import BookSerializer
from books.services import (
    on_issue,
    on_reservation_resolved,
    on_reserve,
    on_return,
    set_copies_total,
)
from config.exceptions import AvailabilityConflict, NoCopiesAvailable, NotFound
from config.permissions import IsStaffUser

User = get_user_model()


class IsStaffUserPermissionTest(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.permission = IsStaffUser()

        self.staff_user = User.objects.create_user(
            email='staff@example.com',
            password='pass'
        )
        self.staff_user.is_staff = True
        self.staff_user.save()

        self.normal_user = User.objects.create_user(
            email='normal@example.com',
            password='pass'
        )

    def test_permission_staff_user(self):
        request = self.factory.get('/fake-url/')
        request.user = self.staff_user
        self.assertTrue(self.permission.has_permission(request, None))

    def test_permission_normal_user(self):
        request = self.factory.get('/fake-url/')
        request.user = self.normal_user
        self.assertFalse(self.permission.has_permission(request, None))

    def test_permission_anonymous_user(self):
        request = self.factory.get('/fake-url/')
        request.user = AnonymousUser()
        self.assertFalse(self.permission.has_permission(request, None))


class AvailabilityTest(TestCase):
    def setUp(self):
        self.book = Book.objects.create(
            title="Solaris",
            author="Stanislaw Lem",
            isbn="9780156027601",
            copies_total=2,
            copies_available=2,
        )

    def test_issue_and_return_move_one_copy(self):
        on_issue(self.book)
        self.assertEqual(self.book.copies_available, 1)
        on_return(self.book)
        self.assertEqual(self.book.copies_available, 2)

    def test_reserve_and_release_move_one_copy(self):
        on_reserve(self.book)
        self.assertEqual(self.book.copies_available, 1)
        on_reservation_resolved(self.book)
        self.assertEqual(self.book.copies_available, 2)

    def test_cannot_go_below_zero(self):
        on_issue(self.book)
        on_reserve(self.book)
        with self.assertRaises(NoCopiesAvailable):
            on_issue(self.book)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)

    def test_cannot_exceed_total(self):
        with self.assertRaises(AvailabilityConflict):
            on_return(self.book)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 2)

    def test_unknown_book(self):
        with self.assertRaises(NotFound):
            on_issue(999999)

    def test_stale_instances_cannot_both_take_last_copy(self):
        Book.objects.filter(pk=self.book.pk).update(copies_available=1)
        first = Book.objects.get(pk=self.book.pk)
        second = Book.objects.get(pk=self.book.pk)

        on_issue(first)
        # second still believes one copy is left
        self.assertEqual(second.copies_available, 1)
        with self.assertRaises(NoCopiesAvailable):
            on_issue(second)

        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_available, 0)

    def test_resize_moves_available_by_same_delta(self):
        on_issue(self.book)
        set_copies_total(self.book, 5)
        self.assertEqual(self.book.copies_total, 5)
        self.assertEqual(self.book.copies_available, 4)

        set_copies_total(self.book, 1)
        self.assertEqual(self.book.copies_total, 1)
        self.assertEqual(self.book.copies_available, 0)

    def test_resize_below_copies_in_circulation_is_rejected(self):
        on_issue(self.book)
        on_issue(self.book)
        with self.assertRaises(AvailabilityConflict):
            set_copies_total(self.book, 1)
        self.book.refresh_from_db()
        self.assertEqual(self.book.copies_total, 2)
        self.assertEqual(self.book.copies_available, 0)

    def test_editing_details_from_stale_instance_keeps_availability(self):
        stale = Book.objects.get(pk=self.book.pk)
        on_issue(self.book)

        serializer = BookSerializer(stale, data={"title": "Solaris (2nd ed.)"}, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()

        self.book.refresh_from_db()
        self.assertEqual(self.book.title, "Solaris (2nd ed.)")
        self.assertEqual(self.book.copies_available, 1)

    def test_resizing_from_stale_instance_keeps_availability(self):
        stale = Book.objects.get(pk=self.book.pk)
        on_issue(self.book)

        serializer = BookSerializer(
            stale, data={"author": "S. Lem", "copies_total": 3}, partial=True
        )
        serializer.is_valid(raise_exception=True)
        serializer.save()

        self.book.refresh_from_db()
        self.assertEqual(self.book.author, "S. Lem")
        self.assertEqual(self.book.copies_total, 3)
        self.assertEqual(self.book.copies_available, 2)


class BookApiTest(APITestCase):
    def setUp(self):
        self.staff = User.objects.create_user(
            email="admin@example.com", password="pass", is_staff=True
        )
        self.member = User.objects.create_user(email="reader@example.com", password="pass")
        self.book = Book.objects.create(
            title="The Hobbit",
            author="J. R. R. Tolkien",
            isbn="9780547928227",
            copies_total=3,
            copies_available=3,
        )

    def test_anyone_can_list_books(self):
        response = self.client.get(reverse("books:book-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_search_by_author(self):
        Book.objects.create(
            title="Dune", author="Frank Herbert", isbn="9780441013593",
            copies_total=1, copies_available=1,
        )
        response = self.client.get(reverse("books:book-list"), {"search": "tolkien"})
        titles = [book["title"] for book in response.data]
        self.assertEqual(titles, ["The Hobbit"])

    def test_create_starts_with_all_copies_available(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.post(
            reverse("books:book-list"),
            {
                "title": "Neuromancer",
                "author": "William Gibson",
                "isbn": "9780441569595",
                "copies_total": 4,
                "copies_available": 0,
            },
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["copies_available"], 4)

    def test_member_cannot_create_books(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.post(
            reverse("books:book-list"),
            {"title": "X", "author": "Y", "isbn": "1", "copies_total": 1},
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_update_total_resizes_availability(self):
        on_issue(self.book)
        self.client.force_authenticate(user=self.staff)
        response = self.client.patch(
            reverse("books:book-detail", args=[self.book.pk]), {"copies_total": 5}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["copies_total"], 5)
        self.assertEqual(response.data["copies_available"], 4)

    def test_shrinking_below_loans_returns_conflict(self):
        on_issue(self.book)
        on_issue(self.book)
        self.client.force_authenticate(user=self.staff)
        response = self.client.patch(
            reverse("books:book-detail", args=[self.book.pk]), {"copies_total": 1}
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
