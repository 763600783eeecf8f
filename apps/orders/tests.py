# apps/orders/tests.py
import itertools
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from django.test import SimpleTestCase, TestCase, override_settings

from apps.orders import numbering
from apps.orders.assembly import OrderAssembler, partition_by_vendor, LineSnapshot
from apps.orders.models import Order, OrderItem, OrderStatus, OrderTimeline
from apps.orders.models.item import ImmutableSnapshotError
from apps.orders.state_machine import (
    TRANSITIONS,
    InvalidTransition,
    allowed_transitions,
    assert_transition,
    derive_order_status,
    is_terminal,
)
from apps.orders.testing import ADDRESS, make_buyer, make_product, make_vendor, place_order
from apps.utils.exceptions import ConsistencyFailure

S = OrderStatus


class StateMachineTests(SimpleTestCase):

    def test_legal_transitions(self):
        self.assertEqual(allowed_transitions(S.PENDING), [S.CONFIRMED, S.CANCELLED, S.OUT_OF_STOCK])
        self.assertEqual(allowed_transitions(S.CONFIRMED), [S.PREPARING, S.CANCELLED])
        self.assertEqual(allowed_transitions(S.PREPARING), [S.SHIPPED, S.CANCELLED])
        self.assertEqual(allowed_transitions(S.SHIPPED), [S.DELIVERED])

    def test_terminal_states(self):
        for status in (S.DELIVERED, S.CANCELLED, S.OUT_OF_STOCK):
            self.assertTrue(is_terminal(status))
        for status in (S.PENDING, S.CONFIRMED, S.PREPARING, S.SHIPPED):
            self.assertFalse(is_terminal(status))

    def test_every_pair_outside_the_table_is_rejected(self):
        for current, target in itertools.product(S.values, repeat=2):
            with self.subTest(current=current, target=target):
                if target in TRANSITIONS[current]:
                    assert_transition(current, target)
                    continue
                with self.assertRaises(InvalidTransition) as ctx:
                    assert_transition(current, target)
                self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")
                self.assertEqual(ctx.exception.details["current_status"], current)
                self.assertEqual(ctx.exception.details["requested_status"], target)
                self.assertEqual(
                    ctx.exception.details["allowed_transitions"], [str(s) for s in TRANSITIONS[current]]
                )

    def test_derive_all_equal(self):
        for status in S.values:
            self.assertEqual(derive_order_status([status, status]), status)

    def test_derive_out_of_stock_wins(self):
        self.assertEqual(derive_order_status([S.DELIVERED, S.OUT_OF_STOCK]), S.OUT_OF_STOCK)
        self.assertEqual(derive_order_status([S.CANCELLED, S.OUT_OF_STOCK, S.SHIPPED]), S.OUT_OF_STOCK)

    def test_derive_cancelled_over_progress(self):
        self.assertEqual(derive_order_status([S.CANCELLED, S.SHIPPED]), S.CANCELLED)

    def test_derive_least_advanced(self):
        self.assertEqual(derive_order_status([S.PREPARING, S.SHIPPED]), S.PREPARING)
        self.assertEqual(derive_order_status([S.DELIVERED, S.SHIPPED, S.CONFIRMED]), S.CONFIRMED)

    def test_derive_ignores_input_order(self):
        statuses = [S.SHIPPED, S.DELIVERED, S.PREPARING]
        expected = derive_order_status(statuses)
        for permutation in itertools.permutations(statuses):
            self.assertEqual(derive_order_status(permutation), expected)

    def test_derive_requires_sub_orders(self):
        with self.assertRaises(ValueError):
            derive_order_status([])


@override_settings(ORDER_NUMBER_PREFIX="ORD")
class OrderNumberingTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, stock=100)

    def test_prefix_format(self):
        self.assertEqual(numbering.order_number_prefix(date(2024, 3, 9)), "ORD-20240309-")

    def test_sequence_starts_at_one_and_increments(self):
        first = place_order(self.buyer, (self.product, 1))
        second = place_order(self.buyer, (self.product, 1))

        prefix = numbering.order_number_prefix()
        self.assertEqual(first.number, f"{prefix}00001")
        self.assertEqual(second.number, f"{prefix}00002")

    def test_sequence_is_per_day(self):
        place_order(self.buyer, (self.product, 1))
        self.assertEqual(numbering.next_order_number(date(2000, 1, 1)), "ORD-20000101-00001")

    def test_sequence_keeps_increasing_past_padding_width(self):
        first = place_order(self.buyer, (self.product, 1))
        prefix = numbering.order_number_prefix()
        Order.objects.filter(pk=first.pk).update(number=f"{prefix}99999")

        second = place_order(self.buyer, (self.product, 1))
        third = place_order(self.buyer, (self.product, 1))

        self.assertEqual(second.number, f"{prefix}100000")
        self.assertEqual(third.number, f"{prefix}100001")

    def test_concurrent_writer_does_not_produce_duplicate(self):
        """
        A competing request commits the candidate number between our read
        and our insert. The insert must fail on the unique index and the
        retry must pick the next free number.
        """
        first = place_order(self.buyer, (self.product, 1))
        real_next = numbering.next_order_number
        calls = []

        def stale_then_real(day=None):
            calls.append(day)
            if len(calls) == 1:
                return first.number
            return real_next(day)

        with patch("apps.orders.numbering.next_order_number", side_effect=stale_then_real):
            second = place_order(self.buyer, (self.product, 1))

        self.assertEqual(len(calls), 2)
        self.assertEqual(numbering.parse_sequence(second.number), numbering.parse_sequence(first.number) + 1)
        self.assertEqual(Order.objects.count(), 2)
        self.assertEqual(Order.objects.values("number").distinct().count(), 2)

    @override_settings(ORDER_NUMBER_MAX_RETRIES=3)
    def test_gives_up_after_max_retries(self):
        first = place_order(self.buyer, (self.product, 1))
        self.product.refresh_from_db()
        stock_before = self.product.stock

        with patch("apps.orders.numbering.next_order_number", return_value=first.number) as mocked:
            with self.assertRaises(ConsistencyFailure) as ctx:
                place_order(self.buyer, (self.product, 1))

        self.assertEqual(ctx.exception.code, "ORDER_NUMBER_EXHAUSTED")
        self.assertEqual(mocked.call_count, 3)
        self.assertEqual(Order.objects.count(), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, stock_before)


class OrderAssemblyTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com", shop_name="Shop A")
        self.vendor_b = make_vendor("b@example.com", shop_name="Shop B")
        self.promo = make_product(self.vendor_a, "Vanilla", price="10.00", promo_price=Decimal("8.00"), on_promo=True)
        self.plain = make_product(self.vendor_b, "Raffia bag", price="5.00")
        self.other_a = make_product(self.vendor_a, "Cloves", price="3.50")

    def test_totals_and_savings(self):
        order = place_order(self.buyer, (self.promo, 2), (self.plain, 1))

        self.assertEqual(order.subtotal, Decimal("25.00"))
        self.assertEqual(order.total, Decimal("21.00"))
        self.assertEqual(order.savings, Decimal("4.00"))
        self.assertEqual(order.subtotal - order.total, order.savings)
        self.assertEqual(order.total, sum(s.total for s in order.sub_orders.all()))
        self.assertEqual(order.total, sum(i.subtotal for i in order.items.all()))

    def test_partition_is_exhaustive_and_disjoint(self):
        order = place_order(self.buyer, (self.promo, 1), (self.plain, 2), (self.other_a, 3))

        sub_orders = list(order.sub_orders.all())
        self.assertEqual([s.vendor_id for s in sub_orders], [self.vendor_a.pk, self.vendor_b.pk])
        self.assertEqual([s.vendor_name for s in sub_orders], ["Shop A", "Shop B"])

        all_ids = sorted(i.pk for i in order.items.all())
        partitioned = sorted(i.pk for s in sub_orders for i in s.items.all())
        self.assertEqual(all_ids, partitioned)
        for sub_order in sub_orders:
            self.assertTrue(all(i.vendor_id == sub_order.vendor_id for i in sub_order.items.all()))

        # Cart order is kept inside each SubOrder
        self.assertEqual(
            [i.product_name for i in sub_orders[0].items.all()], ["Vanilla", "Cloves"]
        )
        self.assertEqual([i.position for i in order.items.all()], [0, 1, 2])

    def test_partition_helper_keeps_first_occurrence(self):
        snapshots = [
            LineSnapshot(0, self.plain, 1),
            LineSnapshot(1, self.promo, 1),
            LineSnapshot(2, self.other_a, 1),
        ]
        groups = partition_by_vendor(snapshots)
        self.assertEqual([g[0].vendor.pk for g in groups], [self.vendor_b.pk, self.vendor_a.pk])
        self.assertEqual([s.position for s in groups[1]], [1, 2])

    def test_promo_only_snapshotted_when_active_and_lower(self):
        inactive = make_product(self.vendor_a, "Off promo", price="10.00", promo_price=Decimal("7.00"), on_promo=False)
        higher = make_product(self.vendor_a, "Bad promo", price="10.00", promo_price=Decimal("12.00"), on_promo=True)
        order = place_order(self.buyer, (inactive, 1), (higher, 1), (self.promo, 1))

        items = {i.product_name: i for i in order.items.all()}
        self.assertIsNone(items["Off promo"].promo_price)
        self.assertEqual(items["Off promo"].subtotal, Decimal("10.00"))
        self.assertIsNone(items["Bad promo"].promo_price)
        self.assertEqual(items["Vanilla"].promo_price, Decimal("8.00"))
        self.assertEqual(items["Vanilla"].subtotal, Decimal("8.00"))

    def test_initial_status_and_history(self):
        order = place_order(self.buyer, (self.promo, 1), (self.plain, 1))

        self.assertEqual(order.status, OrderStatus.PENDING)
        for sub_order in order.sub_orders.all():
            self.assertEqual(sub_order.status, OrderStatus.PENDING)
            entry = OrderTimeline.objects.get(sub_order=sub_order)
            self.assertEqual(entry.status, OrderStatus.PENDING)
            self.assertEqual(entry.comment, "order received")
        self.assertTrue(OrderTimeline.objects.filter(order=order, sub_order__isnull=True).exists())

    def test_shipping_address_snapshot(self):
        order = place_order(self.buyer, (self.plain, 1))
        self.assertEqual(order.shipping_address["city"], ADDRESS["city"])
        self.assertEqual(order.shipping_address["country"], "Madagascar")

    def test_line_items_are_immutable(self):
        order = place_order(self.buyer, (self.plain, 1))
        item = order.items.get()
        item.unit_price = Decimal("1.00")
        with self.assertRaises(ImmutableSnapshotError):
            item.save()
        self.assertEqual(OrderItem.objects.get(pk=item.pk).unit_price, Decimal("5.00"))

    def test_catalog_changes_do_not_touch_history(self):
        order = place_order(self.buyer, (self.plain, 1))
        self.plain.price = Decimal("99.00")
        self.plain.name = "Renamed"
        self.plain.save()

        item = order.items.get()
        self.assertEqual(item.unit_price, Decimal("5.00"))
        self.assertEqual(item.product_name, "Raffia bag")

    def test_assembler_does_not_touch_stock(self):
        order = OrderAssembler(self.buyer, dict(ADDRESS)).assemble([(self.plain, 2)])
        self.plain.refresh_from_db()
        self.assertEqual(self.plain.stock, 10)
        self.assertEqual(order.items.get().quantity, 2)
