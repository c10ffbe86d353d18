from django.utils import timezone
from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from borrowings.models import Borrowing
from borrowings.serializers import (
    BorrowingCreateSerializer,
    BorrowingReturnSerializer,
    BorrowingSerializer,
)
from borrowings.services import evaluate_borrowing, issue_book, return_borrowing
from config.permissions import IsStaffUser
from fines.services import get_active_policy


class BorrowingViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    GenericViewSet,
):
    """
    ViewSet to manage borrowings of books.

    Permissions:
    - Staff users have full access.
    - Regular authenticated users can only view and manage their own borrowings.

    Filtering:
    - `is_active` query param: filter active borrowings (not returned) or inactive (returned).
    - `status` query param: borrowed, overdue or returned.
    - `user_id` filter is restricted to staff users only.

    Reads refresh overdue status and fines before responding.

    Create:
    - Issues the book, taking one available copy.
    - Optionally fulfils the borrower's pending reservation for the book.

    Custom action `return_book`:
    - Marks borrowing as returned with its final fine.
    - Returns the copy to the available count.
    """

    queryset = Borrowing.objects.all()
    serializer_class = BorrowingSerializer

    def get_permissions(self):
        if self.request.user.is_staff:
            return [IsStaffUser()]
        return [IsAuthenticated()]

    def get_serializer_class(self):
        if self.action == "create":
            return BorrowingCreateSerializer
        if self.action == "return_book":
            return BorrowingReturnSerializer
        return BorrowingSerializer

    def get_queryset(self):
        user = self.request.user
        queryset = Borrowing.objects.select_related("book", "user")

        if not user.is_staff:
            # Non-staff users see only their borrowings
            queryset = queryset.filter(user=user)

        # Filter by active/inactive borrowings if requested
        is_active = self.request.query_params.get("is_active")
        if is_active is not None:
            if is_active.lower() in ["true", "1"]:
                queryset = queryset.filter(return_date__isnull=True)
            elif is_active.lower() in ["false", "0"]:
                queryset = queryset.filter(return_date__isnull=False)

        # Staff-only filter by user_id
        user_id = self.request.query_params.get("user_id")
        if user_id:
            if not user.is_staff:
                raise ValidationError("Only staff users can filter by user_id.")
            queryset = queryset.filter(user_id=user_id)

        return queryset

    def list(self, request, *args, **kwargs):
        queryset = self.get_queryset()

        # Overdue promotion happens before the status filter is applied
        today = timezone.localdate()
        policy = get_active_policy()
        for borrowing in queryset.filter(
            status__in=Borrowing.ACTIVE_STATUSES, due_date__lt=today
        ):
            evaluate_borrowing(borrowing, today, policy)

        status_filter = request.query_params.get("status")
        if status_filter:
            if status_filter not in Borrowing.BorrowingStatus.values:
                raise ValidationError(f"Unknown borrowing status: {status_filter}")
            queryset = queryset.filter(status=status_filter)

        serializer = BorrowingSerializer(queryset, many=True)
        return Response(serializer.data)

    def retrieve(self, request, *args, **kwargs):
        borrowing = self.get_object()
        evaluate_borrowing(borrowing)
        return Response(BorrowingSerializer(borrowing).data)

    @extend_schema(
        request=BorrowingCreateSerializer,
        responses={201: BorrowingSerializer},
    )
    def create(self, request, *args, **kwargs):
        """
        Override create to:
        - Validate data.
        - Issue the book (copy availability is checked atomically).
        - Fulfil the given reservation when requested.
        """
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        borrowing = issue_book(
            book=data["book"],
            user=data.get("user") or request.user,
            due_date=data.get("due_date"),
            reservation=data.get("reservation") if data["fulfill_reservation"] else None,
        )

        return Response(
            {
                "message": "Book issued successfully",
                "borrowing": BorrowingSerializer(borrowing).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(request=BorrowingReturnSerializer, responses={200: BorrowingSerializer})
    @action(detail=True, methods=["post"], url_path="return")
    def return_book(self, request, pk=None):
        """
        Custom action to return a borrowed book:
        - Checks if book is already returned.
        - Updates return date, status and final fine.
        - Increments available copies.
        """
        borrowing = self.get_object()

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        borrowing = return_borrowing(
            borrowing, return_date=serializer.validated_data.get("return_date")
        )

        return Response(
            {
                "message": "Book returned successfully",
                "borrowing": BorrowingSerializer(borrowing).data,
                "fine_amount": str(borrowing.fine),
            }
        )
