from django.contrib.auth import get_user_model
from rest_framework import serializers

from books.models import Book
from reservations.models import Reservation


class ReservationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Reservation
        fields = ("id", "book", "user", "reservation_date", "expiry_date", "status")
        read_only_fields = fields


class ReservationCreateSerializer(serializers.Serializer):
    book = serializers.PrimaryKeyRelatedField(queryset=Book.objects.all())
    user = serializers.PrimaryKeyRelatedField(
        queryset=get_user_model().objects.all(), required=False
    )
    expiry_date = serializers.DateTimeField(required=False)

    def validate(self, data):
        request_user = self.context["request"].user
        user = data.get("user")
        if user is not None and user != request_user and not request_user.is_staff:
            raise serializers.ValidationError(
                "Only staff users can reserve books for other users."
            )
        return data
