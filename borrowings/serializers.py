from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework import serializers

from books.models import Book
from borrowings.models import Borrowing
from reservations.models import Reservation


class BorrowingSerializer(serializers.ModelSerializer):
    class Meta:
        model = Borrowing
        fields = (
            "id",
            "book",
            "user",
            "issue_date",
            "due_date",
            "return_date",
            "fine",
            "fine_status",
            "status",
        )
        read_only_fields = fields


class BorrowingCreateSerializer(serializers.Serializer):
    book = serializers.PrimaryKeyRelatedField(queryset=Book.objects.all())
    user = serializers.PrimaryKeyRelatedField(
        queryset=get_user_model().objects.all(), required=False
    )
    due_date = serializers.DateField(required=False)
    reservation = serializers.PrimaryKeyRelatedField(
        queryset=Reservation.objects.all(), required=False
    )
    fulfill_reservation = serializers.BooleanField(default=False)

    def validate(self, data):
        due_date = data.get("due_date")
        if due_date is not None and due_date < timezone.localdate():
            raise serializers.ValidationError(
                "Due date cannot be before the issue date"
            )

        request_user = self.context["request"].user
        user = data.get("user")
        if user is not None and user != request_user and not request_user.is_staff:
            raise serializers.ValidationError(
                "Only staff users can issue books to other users."
            )

        if data.get("fulfill_reservation") and data.get("reservation") is None:
            raise serializers.ValidationError(
                "A reservation is required to fulfill a reservation."
            )

        return data


class BorrowingReturnSerializer(serializers.Serializer):
    return_date = serializers.DateField(required=False)
