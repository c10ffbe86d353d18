from django.urls import path

from fines.views import FinePolicyHistoryView, FinePolicyView, RecalculateFinesView

app_name = "fines"

urlpatterns = [
    path("settings/", FinePolicyView.as_view(), name="settings"),
    path("settings/history/", FinePolicyHistoryView.as_view(), name="settings-history"),
    path("recalculate/", RecalculateFinesView.as_view(), name="recalculate"),
]
