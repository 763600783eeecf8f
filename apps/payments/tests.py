from decimal import Decimal

from django.db import IntegrityError
from django.test import TestCase

from apps.orders import signals
from apps.orders.models import OrderStatus, PaymentStatus
from apps.orders.services import OrderService
from apps.orders.testing import SignalRecorder, advance, make_buyer, make_product, make_vendor, place_order
from apps.payments.models import Payment, PaymentRecordStatus
from apps.payments.services import PaymentService
from apps.utils.exceptions import AuthorizationFailure, StateConflict

SHIPPED = (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.SHIPPED)


class PaymentGateTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com", shop_name="Shop A")
        self.vendor_b = make_vendor("b@example.com", shop_name="Shop B")
        p1 = make_product(self.vendor_a, "Vanilla", price="15.00")
        p2 = make_product(self.vendor_b, "Raffia bag", price="5.00")
        self.order = place_order(self.buyer, (p1, 1), (p2, 2))

    def test_not_eligible_until_every_vendor_delivered(self):
        advance(self.vendor_a, self.order, *SHIPPED)
        OrderService.confirm_reception(self.buyer, self.order.pk)

        with self.assertRaises(StateConflict) as ctx:
            PaymentService.pay(self.buyer, self.order.pk)

        self.assertEqual(ctx.exception.code, "PAYMENT_NOT_ELIGIBLE")
        statuses = {row["vendor_name"]: row["status"] for row in ctx.exception.details["sub_order_statuses"]}
        self.assertEqual(statuses, {"Shop A": OrderStatus.DELIVERED, "Shop B": OrderStatus.PENDING})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)
        self.assertFalse(Payment.objects.exists())

    def test_shipped_is_not_enough(self):
        """Vendor shipped both, buyer has not confirmed yet."""
        advance(self.vendor_a, self.order, *SHIPPED)
        advance(self.vendor_b, self.order, *SHIPPED)

        with self.assertRaises(StateConflict) as ctx:
            PaymentService.pay(self.buyer, self.order.pk)
        self.assertEqual(ctx.exception.code, "PAYMENT_NOT_ELIGIBLE")

    def test_pay_after_reception(self):
        advance(self.vendor_a, self.order, *SHIPPED)
        advance(self.vendor_b, self.order, *SHIPPED)
        OrderService.confirm_reception(self.buyer, self.order.pk)
        recorder = SignalRecorder(signals.order_paid, self)

        with self.captureOnCommitCallbacks(execute=True):
            payment = PaymentService.pay(self.buyer, self.order.pk, reference="CASH-42")

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.DELIVERED)
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)
        self.assertIsNotNone(self.order.paid_at)
        self.assertEqual(payment.amount, Decimal("25.00"))
        self.assertEqual(payment.status, PaymentRecordStatus.SUCCESS)
        self.assertEqual(payment.reference, "CASH-42")
        self.assertEqual(recorder.last["payment"], payment)

    def test_pay_twice(self):
        advance(self.vendor_a, self.order, *SHIPPED)
        advance(self.vendor_b, self.order, *SHIPPED)
        OrderService.confirm_reception(self.buyer, self.order.pk)
        PaymentService.pay(self.buyer, self.order.pk)

        with self.assertRaises(StateConflict) as ctx:
            PaymentService.pay(self.buyer, self.order.pk)

        self.assertEqual(ctx.exception.code, "ALREADY_PAID")
        self.assertIn("paid_at", ctx.exception.details)
        self.assertEqual(Payment.objects.filter(order=self.order).count(), 1)

    def test_only_the_buyer_pays(self):
        with self.assertRaises(AuthorizationFailure):
            PaymentService.pay(self.vendor_a, self.order.pk)
        with self.assertRaises(AuthorizationFailure):
            PaymentService.pay(make_buyer("other@example.com"), self.order.pk)

    def test_one_successful_payment_per_order(self):
        Payment.objects.create(order=self.order, user=self.buyer, amount=Decimal("25.00"), method="online")
        with self.assertRaises(IntegrityError):
            Payment.objects.create(order=self.order, user=self.buyer, amount=Decimal("25.00"), method="online")
