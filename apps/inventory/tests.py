from io import StringIO

from django.core.management import call_command
from django.test import TestCase

from apps.inventory.models import StockMovementLog
from apps.inventory.services import StockLedgerService
from apps.inventory.tasks import run_ledger_reconciliation
from apps.orders.models import OrderStatus, SubOrder
from apps.orders.testing import advance, make_buyer, make_product, make_vendor, place_order
from apps.utils.exceptions import ConsistencyFailure


class StockLedgerTests(TestCase):

    def setUp(self):
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, stock=5)

    def test_decrement_never_goes_negative(self):
        with self.assertRaises(ConsistencyFailure) as ctx:
            StockLedgerService.decrement_for_order(
                [{"product_id": self.product.pk, "quantity": 6}], reference="ORD-X"
            )

        self.assertEqual(ctx.exception.code, "STOCK_INCONSISTENCY")
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)
        # The ledger row goes with the rejected update
        self.assertFalse(StockMovementLog.objects.exists())

    def test_same_movement_applies_once(self):
        lines = [{"product_id": self.product.pk, "quantity": 2}]

        first = StockLedgerService.decrement_for_order(lines, reference="ORD-1")
        second = StockLedgerService.decrement_for_order(lines, reference="ORD-1")

        self.assertEqual(len(first), 1)
        self.assertEqual(second, [])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertEqual(first[0].balance_after, 3)

    def test_restore_is_keyed_by_reference(self):
        lines = [{"product_id": self.product.pk, "quantity": 2}]
        StockLedgerService.decrement_for_order(lines, reference="ORD-1")

        StockLedgerService.restore(lines, reference="ORD-1:a")
        StockLedgerService.restore(lines, reference="ORD-1:a")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)

    def test_lock_products_keys(self):
        other = make_product(self.vendor, "Other")
        locked = StockLedgerService.lock_products([other.pk, self.product.pk, self.product.pk])
        self.assertEqual(set(locked), {str(self.product.pk), str(other.pk)})


class LedgerReconciliationTests(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.vendor = make_vendor()
        self.product = make_product(self.vendor, stock=10)
        self.order = place_order(self.buyer, (self.product, 2))

    def test_consistent_ledger(self):
        advance(self.vendor, self.order, OrderStatus.CANCELLED)
        self.assertEqual(StockLedgerService.find_ledger_gaps(), [])

    def test_missing_restore_is_reported(self):
        # Status forced without going through the command
        SubOrder.objects.filter(order=self.order).update(status=OrderStatus.CANCELLED)

        gaps = StockLedgerService.find_ledger_gaps()

        self.assertEqual(gaps, [
            {"order_number": self.order.number, "kind": "RESTORE", "product_ids": [str(self.product.pk)]},
        ])

    def test_missing_outbound_is_reported(self):
        StockMovementLog.objects.filter(reference=self.order.number).delete()

        gaps = StockLedgerService.find_ledger_gaps()

        self.assertEqual([g["kind"] for g in gaps], ["OUTBOUND"])

    def test_management_command(self):
        SubOrder.objects.filter(order=self.order).update(status=OrderStatus.OUT_OF_STOCK)
        out = StringIO()

        call_command("reconcile_inventory", stdout=out)

        self.assertIn(f"MISMATCH {self.order.number}", out.getvalue())
        self.assertIn("Found 1 discrepancies", out.getvalue())

    def test_nightly_task(self):
        result = run_ledger_reconciliation.delay().get()
        self.assertIn("Found 0 gaps", result)
