from django.contrib import admin

from fines.models import FinePolicy


@admin.register(FinePolicy)
class FinePolicyAdmin(admin.ModelAdmin):
    list_display = ("created_at", "rate_per_day", "grace_period", "max_fine_per_book", "currency_code", "updated_by")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
