from rest_framework import generics
from rest_framework.permissions import AllowAny, IsAuthenticated

from users.serializers import UserSerializer


class CreateUserView(generics.CreateAPIView):
    """
    Register a new library member with email and password.

    Open to anonymous callers. Staff accounts are only created through
    `createsuperuser` or the admin site.
    """

    serializer_class = UserSerializer
    permission_classes = (AllowAny,)


class ManageUserView(generics.RetrieveUpdateAPIView):
    """
    Retrieve and update the calling member's own profile.

    Members use this to look up the id their borrowings, reservations and
    fine payments are filed under.
    """

    serializer_class = UserSerializer
    permission_classes = (IsAuthenticated,)

    def get_object(self):
        return self.request.user
