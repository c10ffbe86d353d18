from rest_framework.routers import DefaultRouter

from borrowings.views import BorrowingViewSet

app_name = "borrowing"

router = DefaultRouter()
router.register(r"", BorrowingViewSet, basename="borrowings")

urlpatterns = router.urls
