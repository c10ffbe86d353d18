import pytest
import requests
import stripe
from django.contrib.auth import get_user_model
from django.test import override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient
from unittest.mock import Mock, patch
from datetime import timedelta
from decimal import Decimal

from books.models import Book
from borrowings.models import Borrowing
from config.exceptions import InvalidAmount, NoFineDue
from config.notifications.tasks import send_telegram_payment_notification
from payments.models import FinePayment
from payments.services import outstanding_fine, record_payment


User = get_user_model()

@pytest.fixture
def user(db):
    return User.objects.create_user(
        email="testuser@example.com",
        password="password"
    )

@pytest.fixture
def staff(db):
    return User.objects.create_user(
        email="desk@example.com",
        password="password",
        is_staff=True,
    )

@pytest.fixture
def book(db):
    return Book.objects.create(
        title="Test Book",
        author="Test Author",
        isbn="9780000000002",
        copies_total=10,
        copies_available=10,
    )

@pytest.fixture
def borrowing(db, user, book):
    """A returned loan that closed with a capped fine of 50.00."""
    today = timezone.localdate()
    return Borrowing.objects.create(
        user=user,
        book=book,
        issue_date=today - timedelta(days=120),
        due_date=today - timedelta(days=100),
        return_date=today - timedelta(days=10),
        status=Borrowing.BorrowingStatus.RETURNED,
        fine=Decimal("50.00"),
        fine_status=Borrowing.FineStatus.PENDING,
    )

@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client

@pytest.fixture
def staff_client(staff):
    client = APIClient()
    client.force_authenticate(user=staff)
    return client


# Recording payments

@pytest.mark.django_db
def test_partial_payment_then_waiver(borrowing, staff):
    payment = record_payment(borrowing, "30", "cash", actor=staff)

    assert payment.amount_paid == Decimal("30.00")
    assert payment.total_fine == Decimal("50.00")
    assert payment.payment_status == FinePayment.PaymentStatus.PARTIAL
    assert payment.processed_by == staff
    borrowing.refresh_from_db()
    assert borrowing.fine_status == Borrowing.FineStatus.PARTIAL
    assert outstanding_fine(borrowing) == Decimal("20.00")

    waiver = record_payment(borrowing, "1.00", "waived", notes="Hardship", actor=staff)

    assert waiver.amount_paid == Decimal("50.00")
    assert waiver.payment_status == FinePayment.PaymentStatus.WAIVED
    borrowing.refresh_from_db()
    assert borrowing.fine_status == Borrowing.FineStatus.WAIVED
    assert borrowing.fine == Decimal("50.00")


@pytest.mark.django_db
def test_overpayment_is_clamped_to_fine(borrowing):
    payment = record_payment(borrowing, Decimal("80.00"), "card")

    assert payment.amount_paid == Decimal("50.00")
    assert payment.payment_status == FinePayment.PaymentStatus.PAID
    borrowing.refresh_from_db()
    assert borrowing.fine_status == Borrowing.FineStatus.PAID


@pytest.mark.django_db
@pytest.mark.parametrize("amount", [None, "", "0", "-5", "abc", "1.001"])
def test_invalid_amounts_are_rejected(borrowing, amount):
    with pytest.raises(InvalidAmount):
        record_payment(borrowing, amount, "cash")
    assert not FinePayment.objects.exists()


@pytest.mark.django_db
def test_no_fine_due(user, book):
    today = timezone.localdate()
    on_time = Borrowing.objects.create(
        user=user,
        book=book,
        issue_date=today - timedelta(days=3),
        due_date=today + timedelta(days=4),
    )
    with pytest.raises(NoFineDue):
        record_payment(on_time, "5.00", "cash")


@pytest.mark.django_db
def test_unreturned_loan_is_charged_todays_fine(user, book):
    today = timezone.localdate()
    late = Borrowing.objects.create(
        user=user,
        book=book,
        issue_date=today - timedelta(days=20),
        due_date=today - timedelta(days=4),
    )

    payment = record_payment(late, "4.00", "cash")

    assert payment.total_fine == Decimal("4.00")
    assert payment.payment_status == FinePayment.PaymentStatus.PAID
    late.refresh_from_db()
    assert late.status == Borrowing.BorrowingStatus.OVERDUE
    assert late.fine == Decimal("4.00")


@pytest.mark.django_db
def test_receipt_numbers_are_unique(borrowing):
    first = record_payment(borrowing, "10", "cash")
    second = record_payment(borrowing, "10", "cash")

    assert first.receipt_number != second.receipt_number
    assert first.receipt_number.startswith("REC-")


@pytest.mark.django_db
def test_payment_notification_sent_on_commit(borrowing, django_capture_on_commit_callbacks):
    with patch("payments.services.send_telegram_payment_notification.delay") as mock_delay:
        with django_capture_on_commit_callbacks(execute=True):
            payment = record_payment(borrowing, "30", "cash")

    mock_delay.assert_called_once()
    data = mock_delay.call_args.args[0]
    assert data["receipt"] == payment.receipt_number
    assert data["status"] == "PARTIAL"
    assert data["book"] == "Test Book"


# HTTP layer

@pytest.mark.django_db
def test_staff_records_payment_over_http(staff_client, borrowing):
    response = staff_client.post(
        reverse("payments:payments-list"),
        {"borrowing": borrowing.id, "amount_paid": "30.00", "payment_method": "cash"},
        format="json",
    )

    assert response.status_code == 201
    assert response.data["fine_status"] == "partial"
    assert response.data["payment"]["payment_status"] == "partial"


@pytest.mark.django_db
def test_staff_waives_without_amount(staff_client, borrowing):
    response = staff_client.post(
        reverse("payments:payments-list"),
        {"borrowing": borrowing.id, "payment_method": "waived"},
        format="json",
    )

    assert response.status_code == 201
    assert response.data["fine_status"] == "waived"
    assert response.data["payment"]["amount_paid"] == "50.00"


@pytest.mark.django_db
def test_missing_amount_is_rejected_over_http(staff_client, borrowing):
    response = staff_client.post(
        reverse("payments:payments-list"),
        {"borrowing": borrowing.id, "payment_method": "cash"},
        format="json",
    )
    assert response.status_code == 400


@pytest.mark.django_db
def test_member_cannot_record_payments(api_client, borrowing):
    response = api_client.post(
        reverse("payments:payments-list"),
        {"borrowing": borrowing.id, "amount_paid": "50.00"},
        format="json",
    )
    assert response.status_code == 403


@pytest.mark.django_db
def test_member_sees_only_own_payments(api_client, borrowing, staff, book):
    own = record_payment(borrowing, "10", "cash")
    today = timezone.localdate()
    other_borrowing = Borrowing.objects.create(
        user=staff,
        book=book,
        issue_date=today - timedelta(days=20),
        due_date=today - timedelta(days=5),
        return_date=today - timedelta(days=1),
        status=Borrowing.BorrowingStatus.RETURNED,
        fine=Decimal("4.00"),
    )
    record_payment(other_borrowing, "4", "cash")

    response = api_client.get(reverse("payments:payments-list"))

    assert response.status_code == 200
    assert [item["id"] for item in response.data] == [own.id]


@pytest.mark.django_db
def test_list_filters_by_status(staff_client, borrowing):
    record_payment(borrowing, "10", "cash")
    paid = record_payment(borrowing, "50", "cash")

    response = staff_client.get(reverse("payments:payments-list"), {"status": "paid"})

    assert [item["id"] for item in response.data] == [paid.id]


# Online checkout

@pytest.mark.django_db
@patch("stripe.checkout.Session.create")
def test_checkout_creates_pending_online_payment(mock_stripe_create, api_client, borrowing):
    mock_stripe_create.return_value = Mock(
        id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
    )

    response = api_client.post(
        reverse("payments:payments-checkout"), {"borrowing": borrowing.id}, format="json"
    )

    assert response.status_code == 201
    assert response.data["checkout_url"] == "https://checkout.stripe.com/c/pay/cs_test_123"

    payment = FinePayment.objects.get(session_id="cs_test_123")
    assert payment.payment_status == FinePayment.PaymentStatus.PENDING
    assert payment.payment_method == FinePayment.PaymentMethod.ONLINE
    assert payment.amount_paid == Decimal("50.00")
    borrowing.refresh_from_db()
    assert borrowing.fine_status == Borrowing.FineStatus.PENDING

    line_item = mock_stripe_create.call_args.kwargs["line_items"][0]
    assert line_item["price_data"]["unit_amount"] == 5000
    assert line_item["price_data"]["currency"] == "usd"


@pytest.mark.django_db
@patch("stripe.checkout.Session.create")
def test_checkout_for_someone_elses_loan_is_forbidden(mock_stripe_create, borrowing):
    stranger = User.objects.create_user(email="stranger@example.com", password="password")
    client = APIClient()
    client.force_authenticate(user=stranger)

    response = client.post(
        reverse("payments:payments-checkout"), {"borrowing": borrowing.id}, format="json"
    )

    assert response.status_code == 403
    mock_stripe_create.assert_not_called()


@pytest.fixture
def pending_online_payment(borrowing):
    return FinePayment.objects.create(
        borrowing=borrowing,
        user=borrowing.user,
        amount_paid=Decimal("50.00"),
        total_fine=Decimal("50.00"),
        payment_method=FinePayment.PaymentMethod.ONLINE,
        payment_status=FinePayment.PaymentStatus.PENDING,
        session_id="cs_test_456",
        session_url="https://checkout.stripe.com/c/pay/cs_test_456",
    )


def stripe_event(event_type, session_id):
    return {"type": event_type, "data": {"object": {"id": session_id}}}


@pytest.mark.django_db
@patch("stripe.Webhook.construct_event")
def test_webhook_settles_completed_session(mock_construct_event, pending_online_payment):
    mock_construct_event.return_value = stripe_event(
        "checkout.session.completed", "cs_test_456"
    )

    client = APIClient()
    url = reverse("payments:stripe-webhook")
    response = client.post(url, data=b"{}", content_type="application/json")
    assert response.status_code == 200

    pending_online_payment.refresh_from_db()
    assert pending_online_payment.payment_status == FinePayment.PaymentStatus.PAID
    borrowing = pending_online_payment.borrowing
    borrowing.refresh_from_db()
    assert borrowing.fine_status == Borrowing.FineStatus.PAID

    # replayed event changes nothing
    response = client.post(url, data=b"{}", content_type="application/json")
    assert response.status_code == 200
    assert FinePayment.objects.count() == 1


@pytest.mark.django_db
@patch("stripe.Webhook.construct_event")
def test_webhook_expired_session_zeroes_payment(mock_construct_event, pending_online_payment):
    mock_construct_event.return_value = stripe_event(
        "checkout.session.expired", "cs_test_456"
    )

    response = APIClient().post(
        reverse("payments:stripe-webhook"), data=b"{}", content_type="application/json"
    )

    assert response.status_code == 200
    pending_online_payment.refresh_from_db()
    assert pending_online_payment.amount_paid == Decimal("0.00")
    assert "expired" in pending_online_payment.notes


@pytest.mark.django_db
@patch("stripe.Webhook.construct_event")
def test_webhook_unknown_session(mock_construct_event):
    mock_construct_event.return_value = stripe_event(
        "checkout.session.completed", "cs_missing"
    )

    response = APIClient().post(
        reverse("payments:stripe-webhook"), data=b"{}", content_type="application/json"
    )

    assert response.status_code == 404


@pytest.mark.django_db
@patch("stripe.Webhook.construct_event")
def test_webhook_rejects_bad_signature(mock_construct_event, pending_online_payment):
    mock_construct_event.side_effect = stripe.SignatureVerificationError(
        "Invalid signature", "t=0,v1=bad"
    )

    response = APIClient().post(
        reverse("payments:stripe-webhook"), data=b"{}", content_type="application/json"
    )

    assert response.status_code == 400
    pending_online_payment.refresh_from_db()
    assert pending_online_payment.payment_status == FinePayment.PaymentStatus.PENDING


# Telegram notifications

NOTIFICATION = {
    "user": "testuser@example.com",
    "method": "CASH",
    "status": "PAID",
    "amount": "50.00",
    "total_fine": "50.00",
    "borrowing_id": 1,
    "book": "Test Book",
    "receipt": "REC-20240101000000-ABCDEF",
}


@override_settings(TELEGRAM_BOT_TOKEN="bot-token", TELEGRAM_CHAT_ID="42")
@patch("config.notifications.tasks.requests.post")
def test_telegram_notification_is_sent(mock_post):
    mock_post.return_value = Mock(raise_for_status=Mock())

    assert send_telegram_payment_notification(NOTIFICATION) is True

    url = mock_post.call_args.args[0]
    assert url == "https://api.telegram.org/botbot-token/sendMessage"
    payload = mock_post.call_args.kwargs["data"]
    assert payload["chat_id"] == "42"
    assert "REC-20240101000000-ABCDEF" in payload["text"]


@override_settings(TELEGRAM_BOT_TOKEN="", TELEGRAM_CHAT_ID="")
@patch("config.notifications.tasks.requests.post")
def test_telegram_notification_skipped_without_credentials(mock_post):
    assert send_telegram_payment_notification(NOTIFICATION) is False
    mock_post.assert_not_called()


@override_settings(TELEGRAM_BOT_TOKEN="bot-token", TELEGRAM_CHAT_ID="42")
@patch("config.notifications.tasks.requests.post")
def test_telegram_failure_is_logged_not_raised(mock_post):
    mock_post.side_effect = requests.ConnectionError("network down")

    assert send_telegram_payment_notification(NOTIFICATION) is False
