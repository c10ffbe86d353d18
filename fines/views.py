import logging

from drf_spectacular.utils import extend_schema, inline_serializer
from rest_framework import generics, serializers, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from borrowings.services import recalculate_all
from config.permissions import IsStaffUser
from fines.models import FinePolicy
from fines.serializers import FinePolicyInputSerializer, FinePolicySerializer
from fines.services import get_active_policy, update_policy

logger = logging.getLogger(__name__)


class FinePolicyView(APIView):
    """
    Current fine settings.

    - GET: the policy in force (built-in defaults when none has been saved).
    - POST: staff only; stores a new policy version, leaving older ones intact.
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [IsStaffUser()]
        return [IsAuthenticated()]

    @extend_schema(responses={200: FinePolicySerializer})
    def get(self, request):
        return Response({"settings": FinePolicySerializer(get_active_policy()).data})

    @extend_schema(request=FinePolicyInputSerializer, responses={201: FinePolicySerializer})
    def post(self, request):
        policy = update_policy(request.data, actor=request.user)
        return Response(
            {
                "message": "Fine settings updated successfully",
                "settings": FinePolicySerializer(policy).data,
            },
            status=status.HTTP_201_CREATED,
        )


class FinePolicyHistoryView(generics.ListAPIView):
    """Every stored fine policy version, newest first (staff only)."""

    queryset = FinePolicy.objects.select_related("updated_by").order_by("-created_at", "-id")
    serializer_class = FinePolicySerializer
    permission_classes = [IsStaffUser]


class RecalculateFinesView(APIView):
    """Re-evaluate every unreturned overdue borrowing against the current policy."""

    permission_classes = [IsStaffUser]

    @extend_schema(
        request=None,
        responses={
            200: inline_serializer(
                name="RecalculateFinesResponse",
                fields={"message": serializers.CharField(), "updated": serializers.IntegerField()},
            )
        },
    )
    def post(self, request):
        updated = recalculate_all()
        logger.info(f"Fine recalculation requested by user id={request.user.pk}: {updated} updated")
        return Response(
            {
                "message": f"Successfully updated {updated} overdue borrowings",
                "updated": updated,
            }
        )
