from django.db import transaction
from rest_framework import serializers

from books.models import Book
from books.services import set_copies_total


class BookSerializer(serializers.ModelSerializer):
    class Meta:
        model = Book
        fields = ("id", "title", "author", "isbn", "copies_total", "copies_available")
        read_only_fields = ("id", "copies_available")

    def create(self, validated_data):
        validated_data["copies_available"] = validated_data["copies_total"]
        return super().create(validated_data)

    @transaction.atomic
    def update(self, instance, validated_data):
        copies_total = validated_data.pop("copies_total", None)
        if copies_total is not None:
            set_copies_total(instance, copies_total)

        # stock columns only move through books.services
        for field, value in validated_data.items():
            setattr(instance, field, value)
        if validated_data:
            instance.save(update_fields=list(validated_data))
        return instance
