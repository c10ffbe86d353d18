from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("books", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Borrowing",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("issue_date", models.DateField()),
                ("due_date", models.DateField()),
                ("return_date", models.DateField(blank=True, null=True)),
                ("fine", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10)),
                (
                    "fine_status",
                    models.CharField(
                        choices=[
                            ("none", "None"),
                            ("pending", "Pending"),
                            ("partial", "Partial"),
                            ("paid", "Paid"),
                            ("waived", "Waived"),
                        ],
                        default="none",
                        max_length=10,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("borrowed", "Borrowed"),
                            ("overdue", "Overdue"),
                            ("returned", "Returned"),
                        ],
                        default="borrowed",
                        max_length=10,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "book",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="borrowings",
                        to="books.book",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="borrowings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-issue_date", "-id"],
                "indexes": [
                    models.Index(fields=["book", "status"], name="borrowing_book_status_idx"),
                    models.Index(fields=["user", "status"], name="borrowing_user_status_idx"),
                    models.Index(fields=["due_date", "status"], name="borrowing_due_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status__in=["borrowed", "overdue"]),
                        fields=("user", "book"),
                        name="unique_active_borrowing",
                    ),
                    models.CheckConstraint(
                        condition=(
                            models.Q(status="returned", return_date__isnull=False)
                            | (~models.Q(status="returned") & models.Q(return_date__isnull=True))
                        ),
                        name="returned_iff_return_date",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(fine__gte=0),
                        name="borrowing_fine_not_negative",
                    ),
                ],
            },
        ),
    ]
