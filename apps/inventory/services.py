import logging
from typing import Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from apps.catalog.models import Product
from apps.utils.exceptions import ConsistencyFailure

from .models import StockMovementLog

logger = logging.getLogger(__name__)


class StockLedgerService:
    """
    Core Logic for stock adjustments.
    ALL stock changes must pass through here, always as relative deltas.
    """

    @staticmethod
    def lock_products(product_ids) -> Dict[str, Product]:
        """
        Locks product rows in deterministic order to prevent deadlocks.
        Must be called inside transaction.atomic().
        """
        ordered_ids = sorted({str(pid) for pid in product_ids})
        products = (
            Product.objects
            .select_for_update()
            .select_related('vendor', 'vendor__vendor_profile')
            .filter(id__in=ordered_ids)
            .order_by('id')
        )
        return {str(p.id): p for p in products}

    @staticmethod
    @transaction.atomic
    def apply_movement(
        product_id,
        delta: int,
        movement_type: str,
        reference: str,
        user=None,
    ) -> Optional[StockMovementLog]:
        """
        Applies one delta to one product, once per (reference, product, type).

        Returns the ledger row, or None when this exact movement was
        already applied. Raises ConsistencyFailure when a decrement would
        take the stock below zero.
        """
        try:
            with transaction.atomic():
                log = StockMovementLog.objects.create(
                    product_id=product_id,
                    quantity_change=delta,
                    movement_type=movement_type,
                    reference=reference,
                    created_by=user,
                )
        except IntegrityError:
            logger.info(
                f"Stock movement {movement_type} [{reference}] already applied for product {product_id}. Skipping.",
                extra={"product_id": product_id},
            )
            return None

        qs = Product.objects.filter(pk=product_id)
        if delta < 0:
            qs = qs.filter(stock__gte=-delta)

        updated = qs.update(stock=F("stock") + delta, updated_at=timezone.now())
        if updated != 1:
            logger.error(
                f"Stock adjustment {delta:+d} rejected for product {product_id} [{reference}]",
                extra={"product_id": product_id, "order_number": reference},
            )
            raise ConsistencyFailure(
                "Stock could not be adjusted.",
                code="STOCK_INCONSISTENCY",
                details={"product_id": str(product_id), "delta": delta, "reference": reference},
            )

        log.balance_after = Product.objects.values_list("stock", flat=True).get(pk=product_id)
        log.save(update_fields=["balance_after"])
        return log

    @staticmethod
    @transaction.atomic
    def decrement_for_order(items: List[Dict[str, int]], reference: str, user=None) -> List[StockMovementLog]:
        """
        Order placed: one OUTBOUND movement per product line.
        """
        logs = []
        for item in sorted(items, key=lambda x: str(x["product_id"])):
            log = StockLedgerService.apply_movement(
                item["product_id"],
                -item["quantity"],
                StockMovementLog.MovementType.OUTBOUND_ORDER,
                reference,
                user=user,
            )
            if log:
                logs.append(log)
        return logs

    @staticmethod
    @transaction.atomic
    def restore(items: List[Dict[str, int]], reference: str, user=None) -> List[StockMovementLog]:
        """
        Reverses an OUTBOUND (cancellation, out of stock).
        Keyed by `reference`, so restoring the same SubOrder twice is a no-op.
        """
        logs = []
        for item in sorted(items, key=lambda x: str(x["product_id"])):
            log = StockLedgerService.apply_movement(
                item["product_id"],
                item["quantity"],
                StockMovementLog.MovementType.RESTORE,
                reference,
                user=user,
            )
            if log:
                logs.append(log)
        return logs

    @staticmethod
    def find_ledger_gaps(since=None) -> List[dict]:
        """
        Orders whose ledger does not match their lines:
        - a line without its OUTBOUND movement
        - a cancelled / out of stock SubOrder without its RESTORE movement
        """
        from apps.orders.models import Order, OrderStatus

        orders = Order.objects.prefetch_related('items', 'sub_orders__items')
        if since is not None:
            orders = orders.filter(created_at__gte=since)

        gaps = []
        for order in orders.iterator(chunk_size=500):
            outbound = set(
                str(pid) for pid in StockMovementLog.objects.filter(
                    reference=order.number,
                    movement_type=StockMovementLog.MovementType.OUTBOUND_ORDER,
                ).values_list('product_id', flat=True)
            )
            missing = [str(i.product_id) for i in order.items.all() if str(i.product_id) not in outbound]
            if missing:
                gaps.append({"order_number": order.number, "kind": "OUTBOUND", "product_ids": missing})

            for sub_order in order.sub_orders.all():
                if sub_order.status not in (OrderStatus.CANCELLED, OrderStatus.OUT_OF_STOCK):
                    continue
                restored = set(
                    str(pid) for pid in StockMovementLog.objects.filter(
                        reference=sub_order.ledger_reference,
                        movement_type=StockMovementLog.MovementType.RESTORE,
                    ).values_list('product_id', flat=True)
                )
                missing = [str(i.product_id) for i in sub_order.items.all() if str(i.product_id) not in restored]
                if missing:
                    gaps.append({"order_number": order.number, "kind": "RESTORE", "product_ids": missing})

        for gap in gaps:
            logger.error(
                f"Ledger gap on order {gap['order_number']}: missing {gap['kind']} for {len(gap['product_ids'])} product(s)",
                extra={"order_number": gap["order_number"]},
            )
        return gaps
