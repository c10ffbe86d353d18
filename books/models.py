from django.db import models


class Book(models.Model):
    title = models.CharField(max_length=255)
    author = models.CharField(max_length=255)
    isbn = models.CharField(max_length=20, unique=True)
    copies_total = models.PositiveIntegerField()
    copies_available = models.PositiveIntegerField()

    class Meta:
        ordering = ["title", "author"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(copies_available__gte=0),
                name="copies_available_not_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(copies_available__lte=models.F("copies_total")),
                name="copies_available_within_total",
            ),
        ]

    def __str__(self):
        return f"{self.title} by {self.author}"

    @property
    def is_available(self):
        return self.copies_available > 0
