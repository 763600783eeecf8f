from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APIRequestFactory

from apps.accounts.models import Role, User
from apps.accounts.permissions import IsBuyer, IsVendor
from apps.orders.testing import make_buyer, make_vendor


class UserManagerTests(TestCase):

    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email="Someone@EXAMPLE.com", password="testpass123")
        self.assertEqual(user.email, "Someone@example.com")
        self.assertEqual(user.role, Role.BUYER)
        self.assertTrue(user.check_password("testpass123"))

    def test_email_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email="", password="x")

    def test_superuser_is_admin(self):
        admin = User.objects.create_superuser(email="root@example.com", password="x")
        self.assertTrue(admin.is_staff)
        self.assertEqual(admin.role, Role.ADMIN)

    def test_vendor_can_sell_only_when_approved_and_active(self):
        vendor = make_vendor(approved=False)
        self.assertFalse(vendor.vendor_profile.can_sell)

        vendor.vendor_profile.is_approved = True
        self.assertTrue(vendor.vendor_profile.can_sell)

        vendor.is_active = False
        self.assertFalse(vendor.vendor_profile.can_sell)


class RolePermissionTests(TestCase):

    def setUp(self):
        self.factory = APIRequestFactory()

    def request_for(self, user):
        request = self.factory.get("/")
        request.user = user
        return request

    def test_roles(self):
        buyer, vendor = make_buyer(), make_vendor()
        self.assertTrue(IsBuyer().has_permission(self.request_for(buyer), None))
        self.assertFalse(IsBuyer().has_permission(self.request_for(vendor), None))
        self.assertTrue(IsVendor().has_permission(self.request_for(vendor), None))
        self.assertFalse(IsVendor().has_permission(self.request_for(buyer), None))


class AuthAPITests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.vendor = make_vendor(shop_name="Vanilla House")

    def test_token_then_me(self):
        response = self.client.post(
            reverse("token-obtain"), {"email": "vendor@example.com", "password": "testpass123"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        me = self.client.get(reverse("me"))

        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.data["role"], Role.VENDOR)
        self.assertEqual(me.data["shop_name"], "Vanilla House")

    def test_me_requires_authentication(self):
        response = self.client.get(reverse("me"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
