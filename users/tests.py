from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from users.models import User


class UserApiTests(APITestCase):
    def test_register_creates_member(self):
        response = self.client.post(
            reverse("users:create"),
            {"email": "new@example.com", "password": "secret1"},
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertNotIn("password", response.data)
        user = User.objects.get(email="new@example.com")
        self.assertTrue(user.check_password("secret1"))
        self.assertFalse(user.is_staff)

    def test_register_cannot_grant_staff(self):
        self.client.post(
            reverse("users:create"),
            {"email": "sneaky@example.com", "password": "secret1", "is_staff": True},
        )
        self.assertFalse(User.objects.get(email="sneaky@example.com").is_staff)

    def test_token_and_profile(self):
        User.objects.create_user(email="reader@example.com", password="secret1")

        response = self.client.post(
            reverse("users:token_obtain_pair"),
            {"email": "reader@example.com", "password": "secret1"},
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        response = self.client.get(reverse("users:manage"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["email"], "reader@example.com")

    def test_profile_requires_authentication(self):
        response = self.client.get(reverse("users:manage"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
