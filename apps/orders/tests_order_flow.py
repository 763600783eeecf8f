from decimal import Decimal

from django.test import TestCase

from apps.inventory.models import StockMovementLog
from apps.inventory.services import StockLedgerService
from apps.orders import signals
from apps.orders.commands import TransitionSubOrderCommand
from apps.orders.models import CartItem, Order, OrderCancellation, OrderNote, OrderStatus, OrderTimeline
from apps.orders.services import CartService, LineRejection, OrderService, VendorOrderService
from apps.orders.state_machine import InvalidTransition
from apps.orders.testing import (
    ADDRESS,
    SignalRecorder,
    advance,
    fill_cart,
    make_buyer,
    make_product,
    make_vendor,
    place_order,
)
from apps.utils.exceptions import AuthorizationFailure, ResourceNotFound, StateConflict, ValidationFailure


class CartValidationTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, "Vanilla", stock=3)

    def test_add_item_accumulates_quantity(self):
        CartService.add_item(self.buyer, self.product.pk, 1)
        CartService.add_item(self.buyer, self.product.pk, 2)
        self.assertEqual(CartItem.objects.get(cart__buyer=self.buyer).quantity, 3)

    def test_add_unknown_product(self):
        with self.assertRaises(ResourceNotFound):
            CartService.add_item(self.buyer, "not-a-uuid", 1)

    def test_empty_cart(self):
        with self.assertRaises(ValidationFailure) as ctx:
            CartService.validate_cart(self.buyer)
        self.assertEqual(ctx.exception.code, "CART_EMPTY")

    def test_valid_cart(self):
        fill_cart(self.buyer, (self.product, 3))
        result = CartService.validate_cart(self.buyer)
        self.assertTrue(result.is_valid)
        self.assertEqual(result.lines, [(self.product, 3)])

    def test_every_invalid_line_is_reported(self):
        closed = make_vendor("closed@example.com", approved=False)
        other = make_product(closed, "Closed shop item")
        inactive = make_product(self.vendor, "Withdrawn", is_active=False)
        fill_cart(self.buyer, (self.product, 5), (other, 1), (inactive, 1))

        result = CartService.validate_cart(self.buyer)

        self.assertFalse(result.is_valid)
        self.assertEqual(result.lines, [])
        reasons = {line["product_name"]: line for line in result.invalid_lines}
        self.assertEqual(reasons["Vanilla"]["reason"], LineRejection.INSUFFICIENT_STOCK)
        self.assertEqual(reasons["Vanilla"]["detail"], {"available": 3, "requested": 5})
        self.assertEqual(reasons["Closed shop item"]["reason"], LineRejection.VENDOR_INACTIVE)
        self.assertEqual(reasons["Withdrawn"]["reason"], LineRejection.PRODUCT_INACTIVE)

    def test_inactive_vendor_account(self):
        self.vendor.is_active = False
        self.vendor.save()
        fill_cart(self.buyer, (self.product, 1))

        result = CartService.validate_cart(self.buyer)
        self.assertEqual(result.invalid_lines[0]["reason"], LineRejection.VENDOR_INACTIVE)


class PlaceOrderTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com")
        self.vendor_b = make_vendor("b@example.com")
        self.p1 = make_product(self.vendor_a, "Vanilla", stock=10)
        self.p2 = make_product(self.vendor_b, "Raffia bag", stock=4)

    def test_stock_is_decremented_once_per_line(self):
        order = place_order(self.buyer, (self.p1, 3), (self.p2, 4))

        self.p1.refresh_from_db()
        self.p2.refresh_from_db()
        self.assertEqual(self.p1.stock, 7)
        self.assertEqual(self.p2.stock, 0)

        logs = StockMovementLog.objects.filter(reference=order.number)
        self.assertEqual(logs.count(), 2)
        self.assertEqual(
            {(str(log.product_id), log.quantity_change) for log in logs},
            {(str(self.p1.pk), -3), (str(self.p2.pk), -4)},
        )

    def test_cart_is_cleared(self):
        place_order(self.buyer, (self.p1, 1))
        self.assertFalse(CartItem.objects.filter(cart__buyer=self.buyer).exists())

    def test_empty_cart_is_rejected(self):
        with self.assertRaises(ValidationFailure) as ctx:
            OrderService.place_order(self.buyer, dict(ADDRESS))
        self.assertEqual(ctx.exception.code, "CART_EMPTY")
        self.assertEqual(Order.objects.count(), 0)

    def test_missing_address_fields(self):
        fill_cart(self.buyer, (self.p1, 1))
        with self.assertRaises(ValidationFailure) as ctx:
            OrderService.place_order(self.buyer, {"full_name": "Rina"})
        self.assertEqual(ctx.exception.code, "ADDRESS_REQUIRED")
        self.assertIn("city", ctx.exception.details["fields"])
        self.assertEqual(Order.objects.count(), 0)

    def test_invalid_cart_leaves_nothing_behind(self):
        fill_cart(self.buyer, (self.p1, 2), (self.p2, 5))

        with self.assertRaises(ValidationFailure) as ctx:
            OrderService.place_order(self.buyer, dict(ADDRESS))

        self.assertEqual(ctx.exception.code, "CART_INVALID")
        [line] = ctx.exception.details["invalid_lines"]
        self.assertEqual(line["product_id"], str(self.p2.pk))
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(StockMovementLog.objects.count(), 0)
        self.p1.refresh_from_db()
        self.assertEqual(self.p1.stock, 10)
        self.assertEqual(CartItem.objects.filter(cart__buyer=self.buyer).count(), 2)

    def test_vendors_notified_after_commit(self):
        recorder = SignalRecorder(signals.order_placed, self)

        with self.captureOnCommitCallbacks(execute=True):
            order = place_order(self.buyer, (self.p1, 1), (self.p2, 1))
            self.assertEqual(recorder.calls, [])

        self.assertEqual(len(recorder.calls), 2)
        notified = {call["sub_order"].vendor_id for call in recorder.calls}
        self.assertEqual(notified, {self.vendor_a.pk, self.vendor_b.pk})
        self.assertTrue(all(call["order"].pk == order.pk for call in recorder.calls))

    def test_failing_receiver_does_not_break_placement(self):
        def broken(**kwargs):
            raise RuntimeError("receiver down")

        signals.order_placed.connect(broken, dispatch_uid="test-broken")
        self.addCleanup(signals.order_placed.disconnect, dispatch_uid="test-broken")

        with self.assertLogs("apps.orders.signals", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                order = place_order(self.buyer, (self.p1, 1))

        self.assertTrue(Order.objects.filter(pk=order.pk).exists())


class SubOrderLifecycleTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com")
        self.vendor_b = make_vendor("b@example.com")
        self.p1 = make_product(self.vendor_a, "Vanilla", stock=10)
        self.p2 = make_product(self.vendor_b, "Raffia bag", stock=10)
        self.order = place_order(self.buyer, (self.p1, 2), (self.p2, 3))

    def sub_order(self, vendor):
        return self.order.sub_orders.get(vendor=vendor)

    def test_full_progression(self):
        for vendor in (self.vendor_a, self.vendor_b):
            advance(vendor, self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING)
        self.assertEqual(self.order.status, OrderStatus.PREPARING)

        advance(self.vendor_a, self.order, OrderStatus.SHIPPED)
        self.assertEqual(self.order.status, OrderStatus.PREPARING)

        advance(self.vendor_b, self.order, OrderStatus.SHIPPED)
        self.assertEqual(self.order.status, OrderStatus.SHIPPED)

    def test_one_vendor_cannot_touch_another(self):
        outsider = make_vendor("c@example.com")
        with self.assertRaises(AuthorizationFailure) as ctx:
            VendorOrderService.update_status(outsider, self.order.pk, OrderStatus.CONFIRMED)
        self.assertEqual(ctx.exception.code, "SUB_ORDER_NOT_OWNER")

        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)
        self.assertEqual(self.sub_order(self.vendor_b).status, OrderStatus.PENDING)

    def test_buyer_cannot_transition(self):
        with self.assertRaises(AuthorizationFailure) as ctx:
            VendorOrderService.update_status(self.buyer, self.order.pk, OrderStatus.CONFIRMED)
        self.assertEqual(ctx.exception.code, "ROLE_NOT_ALLOWED")

    def test_unknown_order(self):
        with self.assertRaises(ResourceNotFound):
            VendorOrderService.update_status(self.vendor_a, "00000000-0000-0000-0000-000000000000", OrderStatus.CONFIRMED)

    def test_illegal_transition_changes_nothing(self):
        with self.assertRaises(InvalidTransition) as ctx:
            VendorOrderService.update_status(self.vendor_a, self.order.pk, OrderStatus.SHIPPED)

        self.assertEqual(ctx.exception.details["current_status"], OrderStatus.PENDING)
        self.assertEqual(self.sub_order(self.vendor_a).status, OrderStatus.PENDING)
        self.assertEqual(OrderTimeline.objects.filter(sub_order__vendor=self.vendor_a).count(), 1)

    def test_unknown_status_is_rejected(self):
        with self.assertRaises(InvalidTransition):
            VendorOrderService.update_status(self.vendor_a, self.order.pk, "teleported")

    def test_every_transition_is_recorded(self):
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)
        VendorOrderService.update_status(self.vendor_a, self.order.pk, OrderStatus.PREPARING, comment="packing")

        entries = list(
            OrderTimeline.objects.filter(sub_order=self.sub_order(self.vendor_a)).values_list("status", "comment")
        )
        self.assertEqual(
            entries,
            [(OrderStatus.PENDING, "order received"), (OrderStatus.CONFIRMED, ""), (OrderStatus.PREPARING, "packing")],
        )

    def test_out_of_stock_restores_only_that_sub_order(self):
        advance(self.vendor_a, self.order, OrderStatus.OUT_OF_STOCK)

        self.p1.refresh_from_db()
        self.p2.refresh_from_db()
        self.assertEqual(self.p1.stock, 10)
        self.assertEqual(self.p2.stock, 7)
        self.assertEqual(self.order.status, OrderStatus.OUT_OF_STOCK)
        self.assertEqual(self.sub_order(self.vendor_b).status, OrderStatus.PENDING)

    def test_second_of_two_racing_transitions_sees_current_status(self):
        confirm = TransitionSubOrderCommand(self.vendor_a, self.order.pk, status=OrderStatus.CONFIRMED)
        out_of_stock = TransitionSubOrderCommand(self.vendor_a, self.order.pk, status=OrderStatus.OUT_OF_STOCK)

        with self.captureOnCommitCallbacks(execute=True):
            confirm.execute()
        with self.assertRaises(InvalidTransition) as ctx:
            out_of_stock.execute()

        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")
        self.assertEqual(ctx.exception.details["current_status"], OrderStatus.CONFIRMED)
        self.assertEqual(self.sub_order(self.vendor_a).status, OrderStatus.CONFIRMED)
        self.p1.refresh_from_db()
        self.assertEqual(self.p1.stock, 8)
        self.assertFalse(
            StockMovementLog.objects.filter(movement_type=StockMovementLog.MovementType.RESTORE).exists()
        )

    def test_vendor_cancellation_after_confirming(self):
        advance(self.vendor_b, self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.CANCELLED)

        self.p2.refresh_from_db()
        self.assertEqual(self.p2.stock, 10)
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)

        # The other vendor keeps going
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)
        self.assertEqual(self.sub_order(self.vendor_a).status, OrderStatus.CONFIRMED)
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)

    def test_restore_is_idempotent(self):
        advance(self.vendor_a, self.order, OrderStatus.CANCELLED)
        sub_order = self.sub_order(self.vendor_a)

        replay = StockLedgerService.restore(sub_order.stock_lines(), reference=sub_order.ledger_reference)

        self.assertEqual(replay, [])
        self.p1.refresh_from_db()
        self.assertEqual(self.p1.stock, 10)
        self.assertEqual(
            StockMovementLog.objects.filter(
                reference=sub_order.ledger_reference, movement_type=StockMovementLog.MovementType.RESTORE
            ).count(),
            1,
        )

    def test_status_change_signal(self):
        recorder = SignalRecorder(signals.sub_order_status_changed, self)

        with self.captureOnCommitCallbacks(execute=True):
            advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)

        self.assertEqual(len(recorder.calls), 1)
        kwargs = recorder.last
        self.assertEqual(kwargs["old_status"], OrderStatus.PENDING)
        self.assertEqual(kwargs["new_status"], OrderStatus.CONFIRMED)
        self.assertEqual(kwargs["actor"], self.vendor_a)

    def test_vendor_note_is_scoped(self):
        note = VendorOrderService.add_note(self.vendor_a, self.order.pk, "  Ships Monday ")
        self.assertEqual(note.content, "Ships Monday")
        self.assertEqual(note.sub_order, self.sub_order(self.vendor_a))

        with self.assertRaises(ValidationFailure) as ctx:
            VendorOrderService.add_note(self.vendor_a, self.order.pk, "   ")
        self.assertEqual(ctx.exception.code, "NOTE_REQUIRED")


class BuyerCancellationTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com")
        self.vendor_b = make_vendor("b@example.com")
        self.p1 = make_product(self.vendor_a, "Vanilla", stock=10)
        self.p2 = make_product(self.vendor_b, "Raffia bag", stock=10)
        self.order = place_order(self.buyer, (self.p1, 2), (self.p2, 3))

    def test_cancel_restores_stock_exactly(self):
        with self.captureOnCommitCallbacks(execute=True):
            cancellation = OrderService.cancel(self.buyer, self.order.pk, reason="Changed my mind")

        self.p1.refresh_from_db()
        self.p2.refresh_from_db()
        self.assertEqual((self.p1.stock, self.p2.stock), (10, 10))

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)
        self.assertTrue(all(s.status == OrderStatus.CANCELLED for s in self.order.sub_orders.all()))

        self.assertEqual(cancellation.cancelled_by, "BUYER")
        self.assertEqual(cancellation.reason, "Changed my mind")
        self.assertEqual(
            sorted(line["quantity"] for line in cancellation.meta["restored"]), [2, 3]
        )

    def test_cancel_twice(self):
        OrderService.cancel(self.buyer, self.order.pk)
        with self.assertRaises(StateConflict) as ctx:
            OrderService.cancel(self.buyer, self.order.pk)
        self.assertEqual(ctx.exception.code, "CANCELLATION_NOT_ALLOWED")
        self.assertEqual(OrderCancellation.objects.count(), 1)

        self.p1.refresh_from_db()
        self.assertEqual(self.p1.stock, 10)

    def test_cannot_cancel_once_a_vendor_acted(self):
        # Order still derives to pending while one vendor has confirmed
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)
        self.assertEqual(self.order.status, OrderStatus.PENDING)

        with self.assertRaises(StateConflict) as ctx:
            OrderService.cancel(self.buyer, self.order.pk)

        self.assertEqual(ctx.exception.code, "CANCELLATION_NOT_ALLOWED")
        statuses = ctx.exception.details["sub_order_statuses"]
        self.assertIn(OrderStatus.CONFIRMED, statuses.values())
        self.p2.refresh_from_db()
        self.assertEqual(self.p2.stock, 7)

    def test_partial_vendor_cancellation_blocks_buyer_cancellation(self):
        advance(self.vendor_a, self.order, OrderStatus.CANCELLED)
        with self.assertRaises(StateConflict):
            OrderService.cancel(self.buyer, self.order.pk)

    def test_only_owner_can_cancel(self):
        stranger = make_buyer("stranger@example.com")
        with self.assertRaises(AuthorizationFailure) as ctx:
            OrderService.cancel(stranger, self.order.pk)
        self.assertEqual(ctx.exception.code, "ORDER_NOT_OWNER")


class ReceptionConfirmationTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor_a = make_vendor("a@example.com")
        self.vendor_b = make_vendor("b@example.com")
        self.p1 = make_product(self.vendor_a, "Vanilla", price="12.00")
        self.p2 = make_product(self.vendor_b, "Raffia bag", price="8.00")
        self.order = place_order(self.buyer, (self.p1, 1), (self.p2, 1))

    def test_not_eligible_before_shipping(self):
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED)
        with self.assertRaises(StateConflict) as ctx:
            OrderService.confirm_reception(self.buyer, self.order.pk)
        self.assertEqual(ctx.exception.code, "RECEPTION_NOT_ELIGIBLE")

    def test_only_shipped_sub_orders_are_delivered(self):
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.SHIPPED)
        advance(self.vendor_b, self.order, OrderStatus.CONFIRMED)

        recorder = SignalRecorder(signals.reception_confirmed, self)

        with self.captureOnCommitCallbacks(execute=True):
            order = OrderService.confirm_reception(self.buyer, self.order.pk)

        self.assertIsNotNone(order.reception_confirmed_at)
        self.assertEqual(order.sub_orders.get(vendor=self.vendor_a).status, OrderStatus.DELIVERED)
        self.assertEqual(order.sub_orders.get(vendor=self.vendor_b).status, OrderStatus.CONFIRMED)
        self.assertEqual(order.status, OrderStatus.CONFIRMED)

        [delivered] = recorder.last["delivered_sub_orders"]
        self.assertEqual(delivered.vendor_id, self.vendor_a.pk)

        entry = OrderTimeline.objects.filter(sub_order=delivered).last()
        self.assertEqual(entry.actor_label, "buyer confirmation")

    def test_confirmation_is_one_shot(self):
        advance(self.vendor_a, self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.SHIPPED)
        OrderService.confirm_reception(self.buyer, self.order.pk)

        with self.assertRaises(StateConflict) as ctx:
            OrderService.confirm_reception(self.buyer, self.order.pk)
        self.assertEqual(ctx.exception.code, "ALREADY_CONFIRMED")

    def test_vendor_cannot_confirm(self):
        with self.assertRaises(AuthorizationFailure):
            OrderService.confirm_reception(self.vendor_a, self.order.pk)


class OrderNoteTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        vendor = make_vendor()
        self.order = place_order(self.buyer, (make_product(vendor, stock=5), 1))

    def test_buyer_note(self):
        note = OrderService.add_note(self.buyer, self.order.pk, "Leave at the gate")
        self.assertIsNone(note.sub_order)
        self.assertEqual(OrderNote.objects.filter(order=self.order).count(), 1)

    def test_blank_note(self):
        with self.assertRaises(ValidationFailure):
            OrderService.add_note(self.buyer, self.order.pk, "")

    def test_buyer_view_totals(self):
        order = OrderService.get_for_buyer(self.buyer, self.order.pk)
        self.assertEqual(order.total, Decimal("10.00"))
        self.assertEqual(order.item_count, 1)
