from rest_framework import serializers

from fines.models import FinePolicy


class FinePolicySerializer(serializers.ModelSerializer):
    class Meta:
        model = FinePolicy
        fields = (
            "id",
            "rate_per_day",
            "grace_period",
            "max_fine_per_book",
            "currency_code",
            "updated_by",
            "created_at",
        )
        read_only_fields = fields


class FinePolicyInputSerializer(serializers.Serializer):
    """Documents the settings payload; values are validated by ``update_policy``."""

    rate_per_day = serializers.DecimalField(max_digits=8, decimal_places=2)
    grace_period = serializers.IntegerField(required=False)
    max_fine_per_book = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False
    )
    currency_code = serializers.CharField(max_length=3, required=False)
