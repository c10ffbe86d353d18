from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="FinePolicy",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("rate_per_day", models.DecimalField(decimal_places=2, default=Decimal("1.00"), max_digits=8)),
                ("grace_period", models.PositiveIntegerField(default=0)),
                ("max_fine_per_book", models.DecimalField(decimal_places=2, default=Decimal("50.00"), max_digits=10)),
                ("currency_code", models.CharField(default="USD", max_length=3)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="fine_policies",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "verbose_name_plural": "fine policies",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(rate_per_day__gte=0),
                        name="fine_rate_not_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(max_fine_per_book__gte=0),
                        name="fine_cap_not_negative",
                    ),
                ],
            },
        ),
    ]
