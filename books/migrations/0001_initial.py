from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Book",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("author", models.CharField(max_length=255)),
                ("isbn", models.CharField(max_length=20, unique=True)),
                ("copies_total", models.PositiveIntegerField()),
                ("copies_available", models.PositiveIntegerField()),
            ],
            options={
                "ordering": ["title", "author"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(copies_available__gte=0),
                        name="copies_available_not_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(copies_available__lte=models.F("copies_total")),
                        name="copies_available_within_total",
                    ),
                ],
            },
        ),
    ]
