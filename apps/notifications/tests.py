# apps/notifications/tests.py
from unittest.mock import patch

from django.core import mail
from django.test import TestCase

from apps.orders.models import OrderStatus
from apps.orders.services import OrderService
from apps.orders.testing import advance, make_buyer, make_product, make_vendor, place_order

from .models import Notification, NotificationChannel, NotificationStatus, NotificationTemplate
from .services import notify_user


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.user = make_buyer()

        self.template = NotificationTemplate.objects.create(
            key="test_event",
            channel=NotificationChannel.IN_APP,
            title_template="Hello ${name}",
            body_template="Hi ${name}, order ${order_number} created. ${unknown}",
        )

    def test_notify_user_creates_notification(self):
        with self.captureOnCommitCallbacks(execute=True):
            notif = notify_user(
                user=self.user,
                event_key="test_event",
                context={"name": "Rina", "order_number": "ORD-20240101-00001"},
            )

        notif.refresh_from_db()
        self.assertEqual(notif.title, "Hello Rina")
        self.assertEqual(notif.body, "Hi Rina, order ORD-20240101-00001 created. ${unknown}")
        self.assertEqual(notif.status, NotificationStatus.SENT)
        self.assertIsNotNone(notif.sent_at)

    def test_disabled_template_skips(self):
        self.template.is_active = False
        self.template.save()

        self.assertIsNone(notify_user(self.user, "test_event"))
        self.assertFalse(Notification.objects.exists())

    def test_missing_template_is_created_from_fallback(self):
        notif = notify_user(
            self.user,
            "brand_new_event",
            {"x": "1"},
            template_fallback_title="T ${x}",
            template_fallback_body="B ${x}",
        )

        self.assertTrue(NotificationTemplate.objects.filter(key="brand_new_event").exists())
        self.assertEqual((notif.title, notif.body), ("T 1", "B 1"))

    def test_email_channel(self):
        with self.captureOnCommitCallbacks(execute=True):
            notif = notify_user(
                self.user, "test_event", {"name": "Rina"}, channel=NotificationChannel.EMAIL
            )

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, [self.user.email])
        self.assertEqual(mail.outbox[0].subject, "Hello Rina")
        notif.refresh_from_db()
        self.assertEqual(notif.status, NotificationStatus.SENT)


class OrderEventNotificationTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com", shop_name="Shop A")
        self.vendor_b = make_vendor("b@example.com", shop_name="Shop B")
        self.p1 = make_product(self.vendor_a, "Vanilla")
        self.p2 = make_product(self.vendor_b, "Raffia bag")

    def test_each_vendor_is_told_about_its_sub_order(self):
        with self.captureOnCommitCallbacks(execute=True):
            order = place_order(self.buyer, (self.p1, 1), (self.p2, 3))

        for vendor, quantity in ((self.vendor_a, 1), (self.vendor_b, 3)):
            notif = Notification.objects.get(user=vendor, template__key="order_placed_vendor")
            self.assertIn(order.number, notif.title)
            self.assertIn(f"{quantity} item(s)", notif.body)
            self.assertEqual(notif.data["order_id"], str(order.pk))

    def test_buyer_hears_about_status_changes(self):
        order = place_order(self.buyer, (self.p1, 1))
        with self.captureOnCommitCallbacks(execute=True):
            advance(self.vendor_a, order, OrderStatus.CONFIRMED)

        notif = Notification.objects.get(user=self.buyer, template__key="sub_order_status_buyer")
        self.assertEqual(notif.body, "Shop A: your items are now confirmed.")

    def test_cancellation_reaches_all_vendors(self):
        order = place_order(self.buyer, (self.p1, 1), (self.p2, 1))
        with self.captureOnCommitCallbacks(execute=True):
            OrderService.cancel(self.buyer, order.pk)

        self.assertEqual(
            Notification.objects.filter(template__key="order_cancelled_vendor").count(), 2
        )

    def test_failing_notification_never_reaches_the_order_flow(self):
        with patch("apps.notifications.receivers.notify_user", side_effect=RuntimeError("smtp down")):
            with self.assertLogs("apps.notifications.receivers", level="ERROR"):
                with self.captureOnCommitCallbacks(execute=True):
                    order = place_order(self.buyer, (self.p1, 1))

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertFalse(Notification.objects.exists())
