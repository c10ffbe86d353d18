from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from config.permissions import IsStaffUser
from reservations.models import Reservation
from reservations.serializers import ReservationCreateSerializer, ReservationSerializer
from reservations.services import (
    cancel_reservation,
    expire_stale_reservations,
    fulfill_reservation,
    reserve_book,
)


class ReservationViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    GenericViewSet,
):
    """
    ViewSet to manage book reservations (holds).

    - Members see and manage only their own reservations; staff see all.
    - Lapsed holds are expired, and their copies released, before every read.
    - `cancel` is open to the owner and staff, `fulfill` to staff only.
    """

    queryset = Reservation.objects.all()
    serializer_class = ReservationSerializer
    permission_classes = [IsAuthenticated]

    def get_permissions(self):
        if self.action == "fulfill":
            return [IsStaffUser()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == "create":
            return ReservationCreateSerializer
        return ReservationSerializer

    def get_queryset(self):
        user = self.request.user
        queryset = Reservation.objects.select_related("book", "user")

        if not user.is_staff:
            queryset = queryset.filter(user=user)

        status_filter = self.request.query_params.get("status")
        if status_filter:
            if status_filter not in Reservation.ReservationStatus.values:
                raise ValidationError(f"Unknown reservation status: {status_filter}")
            queryset = queryset.filter(status=status_filter)

        book_id = self.request.query_params.get("book_id")
        if book_id:
            queryset = queryset.filter(book_id=book_id)

        return queryset

    def list(self, request, *args, **kwargs):
        expire_stale_reservations()
        return super().list(request, *args, **kwargs)

    def retrieve(self, request, *args, **kwargs):
        expire_stale_reservations()
        return super().retrieve(request, *args, **kwargs)

    @extend_schema(request=ReservationCreateSerializer, responses={201: ReservationSerializer})
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        reservation = reserve_book(
            book=data["book"],
            user=data.get("user") or request.user,
            expiry_date=data.get("expiry_date"),
        )

        return Response(
            {
                "message": "Book reserved successfully",
                "reservation": ReservationSerializer(reservation).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(request=None, responses={200: ReservationSerializer})
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        expire_stale_reservations()
        reservation = cancel_reservation(self.get_object())
        return Response(
            {
                "message": "Reservation cancelled successfully",
                "reservation": ReservationSerializer(reservation).data,
            }
        )

    @extend_schema(request=None, responses={200: ReservationSerializer})
    @action(detail=True, methods=["post"])
    def fulfill(self, request, pk=None):
        expire_stale_reservations()
        reservation = fulfill_reservation(self.get_object())
        return Response(
            {
                "message": "Reservation marked as fulfilled",
                "reservation": ReservationSerializer(reservation).data,
            }
        )
