from datetime import date

from django.core.management.base import BaseCommand, CommandError

from borrowings.services import recalculate_all


class Command(BaseCommand):
    help = "Promote overdue borrowings and recompute their fines against the current policy."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            dest="as_of",
            help="Evaluate as of this date (YYYY-MM-DD) instead of today.",
        )

    def handle(self, *args, **options):
        as_of = options.get("as_of")
        today = None
        if as_of:
            try:
                today = date.fromisoformat(as_of)
            except ValueError:
                raise CommandError(f"Invalid date: {as_of}")

        updated = recalculate_all(today=today)
        self.stdout.write(
            self.style.SUCCESS(f"Successfully updated {updated} overdue borrowings")
        )
