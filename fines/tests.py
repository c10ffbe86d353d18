from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from books.models import Book
from borrowings.models import Borrowing
from config.exceptions import PolicyValidationError
from fines.calculator import calculate_fine, overdue_days
from fines.models import FinePolicy
from fines.services import get_active_policy, update_policy
from users.models import User


def make_policy(rate="1.00", grace=0, cap="50.00"):
    return FinePolicy(
        rate_per_day=Decimal(rate),
        grace_period=grace,
        max_fine_per_book=Decimal(cap),
        currency_code="USD",
    )


DUE = date(2024, 1, 1)


# Calculator


def test_return_on_due_date_owes_nothing():
    assert calculate_fine(DUE, date(2024, 1, 1), make_policy()) == Decimal("0.00")


def test_one_day_late_owes_one_day():
    assert calculate_fine(DUE, date(2024, 1, 2), make_policy()) == Decimal("1.00")


def test_overdue_days_within_grace_period_are_free():
    policy = make_policy(grace=2)
    assert calculate_fine(DUE, date(2024, 1, 3), policy) == Decimal("0.00")
    assert calculate_fine(DUE, date(2024, 1, 4), policy) == Decimal("1.00")


def test_fine_is_capped():
    assert calculate_fine(DUE, date(2024, 3, 1), make_policy()) == Decimal("50.00")


def test_zero_cap_means_no_fine():
    policy = make_policy(cap="0")
    assert calculate_fine(DUE, date(2025, 1, 1), policy) == Decimal("0.00")


def test_no_fine_before_due_date():
    policy = make_policy(rate="3.75")
    for days_before in range(0, 30):
        assert calculate_fine(DUE, DUE - timedelta(days=days_before), policy) == 0


def test_fine_never_decreases_as_time_passes():
    policy = make_policy(rate="0.35", grace=3, cap="10.00")
    previous = Decimal("0")
    for offset in range(0, 60):
        fine = calculate_fine(DUE, DUE + timedelta(days=offset), policy)
        assert fine >= previous
        assert fine <= policy.max_fine_per_book
        previous = fine


def test_decimal_rates_do_not_drift():
    policy = make_policy(rate="0.10", cap="100.00")
    assert calculate_fine(DUE, DUE + timedelta(days=3), policy) == Decimal("0.30")
    assert calculate_fine(DUE, DUE + timedelta(days=7), policy) == Decimal("0.70")


def test_accepts_datetimes_and_counts_calendar_days():
    policy = make_policy()
    due = datetime(2024, 1, 1, 23, 59)
    reference = datetime(2024, 1, 2, 0, 1)
    assert overdue_days(due, reference) == 1
    assert calculate_fine(due, reference, policy) == Decimal("1.00")


def test_accepts_float_policy_values():
    policy = make_policy()
    policy.rate_per_day = 0.5
    assert calculate_fine(DUE, date(2024, 1, 5), policy) == Decimal("2.00")


def test_rejects_non_date_input():
    with pytest.raises(TypeError):
        calculate_fine("2024-01-01", date(2024, 1, 2), make_policy())


# Policy store


@pytest.mark.django_db
def test_defaults_when_no_policy_saved():
    policy = get_active_policy()
    assert policy.pk is None
    assert policy.rate_per_day == Decimal("1.00")
    assert policy.grace_period == 0
    assert policy.max_fine_per_book == Decimal("50.00")
    assert policy.currency_code == "USD"


@pytest.mark.django_db
def test_newest_policy_wins_and_old_versions_are_kept():
    update_policy({"rate_per_day": "1.00"})
    update_policy({"rate_per_day": "2.50", "grace_period": 1, "max_fine_per_book": "20"})

    assert FinePolicy.objects.count() == 2
    active = get_active_policy()
    assert active.rate_per_day == Decimal("2.50")
    assert active.grace_period == 1
    assert active.max_fine_per_book == Decimal("20.00")


@pytest.mark.django_db
def test_update_policy_fills_defaults():
    policy = update_policy({"rate_per_day": 2})
    assert policy.grace_period == 0
    assert policy.max_fine_per_book == Decimal("50.00")
    assert policy.currency_code == "USD"


@pytest.mark.django_db
def test_policies_are_append_only():
    policy = update_policy({"rate_per_day": "1.00"})
    policy.rate_per_day = Decimal("9.99")
    with pytest.raises(PolicyValidationError):
        policy.save()
    with pytest.raises(PolicyValidationError):
        policy.delete()
    policy.refresh_from_db()
    assert policy.rate_per_day == Decimal("1.00")


@pytest.mark.django_db
@pytest.mark.parametrize(
    "data",
    [
        {},
        {"rate_per_day": "-1"},
        {"rate_per_day": "abc"},
        {"rate_per_day": "1.00", "grace_period": -2},
        {"rate_per_day": "1.00", "grace_period": "1.5"},
        {"rate_per_day": "1.00", "max_fine_per_book": "-5"},
        {"rate_per_day": "1.001"},
        {"rate_per_day": "1.00", "currency_code": "DOLLARS"},
    ],
)
def test_update_policy_rejects_malformed_values(data):
    with pytest.raises(PolicyValidationError):
        update_policy(data)
    assert FinePolicy.objects.count() == 0


# HTTP layer


@pytest.fixture
def staff(db):
    return User.objects.create_user(email="staff@example.com", password="pass", is_staff=True)


@pytest.fixture
def member(db):
    return User.objects.create_user(email="member@example.com", password="pass")


def client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.mark.django_db
def test_settings_get_returns_defaults(member):
    response = client_for(member).get(reverse("fines:settings"))
    assert response.status_code == 200
    assert Decimal(response.data["settings"]["rate_per_day"]) == Decimal("1.00")


@pytest.mark.django_db
def test_staff_saves_new_settings(staff):
    response = client_for(staff).post(
        reverse("fines:settings"),
        {"rate_per_day": "0.50", "grace_period": 2, "max_fine_per_book": "10.00"},
        format="json",
    )
    assert response.status_code == 201
    policy = get_active_policy()
    assert policy.rate_per_day == Decimal("0.50")
    assert policy.updated_by == staff


@pytest.mark.django_db
def test_member_cannot_save_settings(member):
    response = client_for(member).post(
        reverse("fines:settings"), {"rate_per_day": "0.50"}, format="json"
    )
    assert response.status_code == 403
    assert FinePolicy.objects.count() == 0


@pytest.mark.django_db
def test_negative_rate_is_rejected_over_http(staff):
    response = client_for(staff).post(
        reverse("fines:settings"), {"rate_per_day": "-1"}, format="json"
    )
    assert response.status_code == 400


@pytest.mark.django_db
def test_settings_history_lists_all_versions(staff):
    update_policy({"rate_per_day": "1.00"})
    update_policy({"rate_per_day": "2.00"})
    response = client_for(staff).get(reverse("fines:settings-history"))
    assert response.status_code == 200
    assert len(response.data) == 2
    assert Decimal(response.data[0]["rate_per_day"]) == Decimal("2.00")


@pytest.fixture
def overdue_borrowing(member):
    book = Book.objects.create(
        title="Dune", author="Frank Herbert", isbn="9780441013593",
        copies_total=2, copies_available=1,
    )
    today = timezone.localdate()
    return Borrowing.objects.create(
        book=book,
        user=member,
        issue_date=today - timedelta(days=20),
        due_date=today - timedelta(days=4),
    )


@pytest.mark.django_db
def test_recalculate_endpoint_updates_overdue_borrowings(staff, overdue_borrowing):
    response = client_for(staff).post(reverse("fines:recalculate"))
    assert response.status_code == 200
    assert response.data["updated"] == 1

    overdue_borrowing.refresh_from_db()
    assert overdue_borrowing.status == Borrowing.BorrowingStatus.OVERDUE
    assert overdue_borrowing.fine == Decimal("4.00")
    assert overdue_borrowing.fine_status == Borrowing.FineStatus.PENDING

    # nothing left to change on a second run
    response = client_for(staff).post(reverse("fines:recalculate"))
    assert response.data["updated"] == 0


@pytest.mark.django_db
def test_recalculate_endpoint_is_staff_only(member, overdue_borrowing):
    response = client_for(member).post(reverse("fines:recalculate"))
    assert response.status_code == 403


@pytest.mark.django_db
def test_recalculate_command(overdue_borrowing):
    out = StringIO()
    as_of = (overdue_borrowing.due_date + timedelta(days=2)).isoformat()
    call_command("recalculate_fines", "--date", as_of, stdout=out)

    overdue_borrowing.refresh_from_db()
    assert overdue_borrowing.fine == Decimal("2.00")
    assert "Successfully updated 1 overdue borrowings" in out.getvalue()
