from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import viewsets
from rest_framework.permissions import SAFE_METHODS, AllowAny

from books.models import Book
from books.serializers import BookSerializer
from config.permissions import IsStaffUser


@extend_schema(
    summary="Retrieve, create, update, or delete books",
    description=(
        "Endpoint to manage books in the library.\n\n"
        "- Safe methods (GET, HEAD, OPTIONS) are accessible to anyone.\n"
        "- Unsafe methods (POST, PUT, PATCH, DELETE) require staff user permissions.\n"
        "- `copies_available` is maintained by borrowings and reservations and "
        "cannot be written directly."
    ),
    parameters=[
        OpenApiParameter(
            name="search",
            description="Search books by title or author (query parameter).",
            required=False,
            type=str,
        ),
    ],
)
class BookViewSet(viewsets.ModelViewSet):
    """
    ViewSet for handling Books.

    Permissions:
    - SAFE_METHODS: AllowAny (read-only access for everyone)
    - Other methods: IsStaffUser (restricted to staff)
    """

    queryset = Book.objects.all()
    serializer_class = BookSerializer

    def get_permissions(self):
        if self.request.method in SAFE_METHODS:
            return [AllowAny()]
        return [IsStaffUser()]

    def get_queryset(self):
        queryset = Book.objects.all()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(title__icontains=search) | queryset.filter(
                author__icontains=search
            )
        return queryset
