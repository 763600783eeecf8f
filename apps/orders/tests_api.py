import uuid
from decimal import Decimal

from django.core.cache import cache
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.orders.models import Order, OrderStatus
from apps.orders.testing import ADDRESS, advance, fill_cart, make_buyer, make_product, make_vendor, place_order


class CartAPITests(APITestCase):

    def setUp(self):
        cache.clear()
        self.buyer = make_buyer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, "Vanilla", price="12.50", stock=2)
        self.client.force_authenticate(self.buyer)

    def test_add_and_list(self):
        response = self.client.post(
            reverse("cart-add"), {"product_id": str(self.product.pk), "quantity": 2}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["items"][0]["quantity"], 2)

        response = self.client.get(reverse("cart-list"))
        self.assertEqual(str(response.data["estimated_total"]), "25.00")

    def test_validate_reports_invalid_lines(self):
        fill_cart(self.buyer, (self.product, 3))

        response = self.client.post(reverse("cart-validate"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data["valid"])
        self.assertEqual(response.data["invalid_lines"][0]["reason"], "INSUFFICIENT_STOCK")

    def test_validate_empty_cart(self):
        response = self.client.post(reverse("cart-validate"))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "CART_EMPTY")

    def test_vendor_has_no_cart(self):
        self.client.force_authenticate(self.vendor)
        response = self.client.get(reverse("cart-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class CheckoutAPITests(APITestCase):

    def setUp(self):
        cache.clear()
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com")
        self.vendor_b = make_vendor("b@example.com")
        self.p1 = make_product(self.vendor_a, "Vanilla", price="10.00", stock=5)
        self.p2 = make_product(self.vendor_b, "Raffia bag", price="4.00", stock=5)
        self.client.force_authenticate(self.buyer)
        self.url = reverse("checkout")

    def checkout(self, key="key-1", **data):
        payload = {"shipping_address": ADDRESS, **data}
        extra = {"HTTP_X_IDEMPOTENCY_KEY": key} if key else {}
        return self.client.post(self.url, payload, format="json", **extra)

    def test_checkout_creates_order(self):
        fill_cart(self.buyer, (self.p1, 2), (self.p2, 1))

        response = self.checkout()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], OrderStatus.PENDING)
        self.assertEqual(str(response.data["total"]), "24.00")
        self.assertEqual(len(response.data["sub_orders"]), 2)
        self.assertEqual(len(response.data["items"]), 2)

    def test_missing_idempotency_key(self):
        fill_cart(self.buyer, (self.p1, 1))
        response = self.checkout(key=None)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "IDEMPOTENCY_KEY_REQUIRED")
        self.assertEqual(Order.objects.count(), 0)

    def test_duplicate_request(self):
        fill_cart(self.buyer, (self.p1, 1))
        first = self.checkout()
        fill_cart(self.buyer, (self.p1, 1))
        second = self.checkout()

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.data["code"], "DUPLICATE_REQUEST")
        self.assertEqual(second.data["data"]["previous"], first.data["number"])
        self.assertEqual(Order.objects.count(), 1)

    def test_failed_checkout_releases_key(self):
        fill_cart(self.buyer, (self.p1, 9))
        failed = self.checkout()
        self.assertEqual(failed.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(failed.data["code"], "CART_INVALID")
        self.assertEqual(failed.data["data"]["invalid_lines"][0]["detail"]["available"], 5)

        self.client.post(reverse("cart-clear"))
        fill_cart(self.buyer, (self.p1, 1))
        retried = self.checkout()
        self.assertEqual(retried.status_code, status.HTTP_201_CREATED)

    def test_address_required(self):
        fill_cart(self.buyer, (self.p1, 1))
        response = self.client.post(
            self.url, {"shipping_address": {"city": "Toamasina"}}, format="json", HTTP_X_IDEMPOTENCY_KEY="k"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "ADDRESS_REQUIRED")
        self.assertIn("street", response.data["data"]["fields"])


class BuyerOrderAPITests(APITestCase):

    def setUp(self):
        cache.clear()
        self.buyer = make_buyer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, "Vanilla", stock=10)
        self.order = place_order(self.buyer, (self.product, 2))
        self.client.force_authenticate(self.buyer)

    def test_list_only_own_orders(self):
        other = make_buyer("other@example.com")
        place_order(other, (self.product, 1))

        response = self.client.get(reverse("order-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        row = response.data["results"][0]
        self.assertEqual(row["number"], self.order.number)
        self.assertEqual(row["vendor_count"], 1)
        self.assertFalse(row["can_pay"])

    def test_not_found_vs_forbidden(self):
        missing = self.client.get(reverse("order-detail", args=[uuid.uuid4()]))
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(missing.data["code"], "ORDER_NOT_FOUND")

        self.client.force_authenticate(make_buyer("other@example.com"))
        forbidden = self.client.get(reverse("order-detail", args=[self.order.pk]))
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(forbidden.data["code"], "ORDER_NOT_OWNER")

    def test_detail_hides_vendor_notes(self):
        self.client.force_authenticate(self.vendor)
        self.client.post(reverse("vendor-order-notes", args=[self.order.pk]), {"content": "fragile"}, format="json")

        self.client.force_authenticate(self.buyer)
        self.client.post(reverse("order-notes", args=[self.order.pk]), {"content": "call first"}, format="json")
        response = self.client.get(reverse("order-detail", args=[self.order.pk]))

        self.assertEqual([n["content"] for n in response.data["notes"]], ["call first"])

    def test_tracking(self):
        advance(self.vendor, self.order, OrderStatus.CONFIRMED)

        response = self.client.get(reverse("order-tracking", args=[self.order.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], OrderStatus.CONFIRMED)
        [vendor] = response.data["vendors"]
        self.assertEqual([h["status"] for h in vendor["history"]], [OrderStatus.PENDING, OrderStatus.CONFIRMED])
        self.assertEqual(vendor["history"][-1]["actor"], "vendor")

    def test_cancel(self):
        response = self.client.post(reverse("order-cancel", args=[self.order.pk]), {"reason": "oops"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], OrderStatus.CANCELLED)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 10)

    def test_cancel_conflict_reports_state(self):
        advance(self.vendor, self.order, OrderStatus.CONFIRMED)
        response = self.client.post(reverse("order-cancel", args=[self.order.pk]), format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "CANCELLATION_NOT_ALLOWED")
        self.assertEqual(response.data["data"]["current_status"], OrderStatus.CONFIRMED)

    def test_reception_then_payment(self):
        advance(self.vendor, self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.SHIPPED)

        early = self.client.post(reverse("order-pay", args=[self.order.pk]), format="json")
        self.assertEqual(early.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(early.data["code"], "PAYMENT_NOT_ELIGIBLE")

        confirmed = self.client.post(reverse("order-confirm-reception", args=[self.order.pk]), format="json")
        self.assertEqual(confirmed.status_code, status.HTTP_200_OK)
        self.assertEqual(confirmed.data["status"], OrderStatus.DELIVERED)
        self.assertTrue(confirmed.data["can_pay"])

        paid = self.client.post(reverse("order-pay", args=[self.order.pk]), {"reference": "CASH-1"}, format="json")
        self.assertEqual(paid.status_code, status.HTTP_200_OK)
        self.assertEqual(str(paid.data["amount"]), "20.00")
        self.assertEqual(paid.data["order"]["payment_status"], "paid")

    def test_blank_note_rejected(self):
        response = self.client.post(reverse("order-notes", args=[self.order.pk]), {"content": " "}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "NOTE_REQUIRED")


class VendorOrderAPITests(APITestCase):

    def setUp(self):
        cache.clear()
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com", shop_name="Shop A")
        self.vendor_b = make_vendor("b@example.com", shop_name="Shop B")
        self.p1 = make_product(self.vendor_a, "Vanilla", price="10.00", stock=10)
        self.p2 = make_product(self.vendor_b, "Raffia bag", price="4.00", stock=10)
        self.order = place_order(self.buyer, (self.p1, 1), (self.p2, 2))
        self.client.force_authenticate(self.vendor_a)

    def test_vendor_sees_only_own_sub_order(self):
        response = self.client.get(reverse("vendor-order-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        row = response.data["results"][0]
        self.assertEqual(row["order_number"], self.order.number)
        self.assertEqual([i["product_name"] for i in row["items"]], ["Vanilla"])
        self.assertEqual(str(row["total"]), "10.00")
        self.assertEqual(row["buyer"]["email"], self.buyer.email)

    def test_detail_of_foreign_order(self):
        other_order = place_order(make_buyer("x@example.com"), (self.p2, 1))

        forbidden = self.client.get(reverse("vendor-order-detail", args=[other_order.pk]))
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(forbidden.data["code"], "SUB_ORDER_NOT_OWNER")

        missing = self.client.get(reverse("vendor-order-detail", args=[uuid.uuid4()]))
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_status(self):
        url = reverse("vendor-order-update-status", args=[self.order.pk])

        response = self.client.patch(url, {"status": "confirmed", "comment": "on it"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], OrderStatus.CONFIRMED)
        # The other vendor is still pending
        self.assertEqual(response.data["order_status"], OrderStatus.PENDING)

    def test_invalid_transition(self):
        url = reverse("vendor-order-update-status", args=[self.order.pk])

        response = self.client.patch(url, {"status": "delivered"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "INVALID_TRANSITION")
        self.assertEqual(response.data["data"]["allowed_transitions"], ["confirmed", "cancelled", "out_of_stock"])

    def test_unknown_status_value(self):
        url = reverse("vendor-order-update-status", args=[self.order.pk])
        response = self.client.patch(url, {"status": "lost"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_status_filter_and_new(self):
        second = place_order(make_buyer("c@example.com"), (self.p1, 1))
        advance(self.vendor_a, second, OrderStatus.CONFIRMED)

        confirmed = self.client.get(reverse("vendor-order-list"), {"status": "confirmed"})
        self.assertEqual([r["order_number"] for r in confirmed.data["results"]], [second.number])

        new = self.client.get(reverse("vendor-order-new"))
        self.assertEqual([r["order_number"] for r in new.data["results"]], [self.order.number])

    def test_stats(self):
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)

        response = self.client.get(reverse("vendor-order-stats"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["overall"]["orders"], 1)
        self.assertEqual(response.data["overall"]["revenue"], Decimal("10.00"))
        self.assertEqual(response.data["overall"]["by_status"]["confirmed"], 1)
        self.assertEqual(response.data["today"]["orders"], 1)

    def test_buyer_cannot_use_vendor_endpoints(self):
        self.client.force_authenticate(self.buyer)
        response = self.client.get(reverse("vendor-order-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
