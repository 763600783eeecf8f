import logging
from decimal import Decimal

from .models import Order, OrderItem, OrderStatus, OrderTimeline, PaymentMethod, SubOrder
from .numbering import create_with_order_number

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class LineSnapshot:
    """
    Pricing and product data captured at order time.
    """
    __slots__ = ("position", "product", "vendor", "name", "slug", "unit_price", "promo_price", "quantity")

    def __init__(self, position, product, quantity):
        self.position = position
        self.product = product
        self.vendor = product.vendor
        self.name = product.name
        self.slug = product.slug
        self.unit_price = product.price
        self.promo_price = product.active_promo_price
        self.quantity = quantity

    @property
    def effective_price(self):
        return self.promo_price if self.promo_price is not None else self.unit_price

    @property
    def gross(self):
        return self.unit_price * self.quantity

    @property
    def subtotal(self):
        return self.effective_price * self.quantity


def partition_by_vendor(snapshots):
    """
    Groups lines by vendor id, vendors in first-occurrence order,
    lines in cart order within each group.
    """
    groups = {}
    for snapshot in snapshots:
        groups.setdefault(snapshot.vendor.pk, []).append(snapshot)
    return list(groups.values())


class OrderAssembler:
    """
    Turns validated cart lines into a persisted Order with one SubOrder
    per vendor. Runs inside the caller's transaction; stock is not
    touched here.
    """

    def __init__(self, buyer, shipping_address, payment_method=PaymentMethod.CASH_ON_DELIVERY):
        self.buyer = buyer
        self.shipping_address = shipping_address
        self.payment_method = payment_method

    def assemble(self, lines):
        """
        `lines`: sequence of (Product, quantity), already validated.
        """
        snapshots = [LineSnapshot(i, product, quantity) for i, (product, quantity) in enumerate(lines)]
        groups = partition_by_vendor(snapshots)

        order = create_with_order_number(lambda number: self._persist(number, snapshots, groups))
        logger.info(
            f"Order {order.number} assembled: {len(snapshots)} line(s), {len(groups)} vendor(s), total {order.total}",
            extra={"order_number": order.number, "user_id": self.buyer.pk},
        )
        return order

    def _persist(self, number, snapshots, groups):
        # Totals across lines, never across SubOrders
        subtotal = sum((s.gross for s in snapshots), ZERO)
        total = sum((s.subtotal for s in snapshots), ZERO)

        order = Order.objects.create(
            number=number,
            buyer=self.buyer,
            shipping_address=self.shipping_address,
            subtotal=subtotal,
            total=total,
            savings=subtotal - total,
            payment_method=self.payment_method,
            status=OrderStatus.PENDING,
        )

        items = []
        timeline = [
            OrderTimeline(order=order, status=OrderStatus.PENDING, comment="Order placed", created_by=self.buyer),
        ]
        for index, group in enumerate(groups):
            vendor = group[0].vendor
            profile = getattr(vendor, "vendor_profile", None)
            sub_order = SubOrder.objects.create(
                order=order,
                vendor=vendor,
                vendor_name=profile.shop_name if profile else vendor.full_name or vendor.email,
                position=index,
                subtotal=sum((s.gross for s in group), ZERO),
                total=sum((s.subtotal for s in group), ZERO),
                status=OrderStatus.PENDING,
            )
            timeline.append(
                OrderTimeline(
                    order=order, sub_order=sub_order, status=OrderStatus.PENDING, comment="order received",
                )
            )
            for snapshot in group:
                items.append(
                    OrderItem(
                        order=order,
                        sub_order=sub_order,
                        position=snapshot.position,
                        product=snapshot.product,
                        vendor=vendor,
                        product_name=snapshot.name,
                        product_slug=snapshot.slug,
                        unit_price=snapshot.unit_price,
                        promo_price=snapshot.promo_price,
                        quantity=snapshot.quantity,
                        subtotal=snapshot.subtotal,
                    )
                )

        OrderItem.objects.bulk_create(items)
        OrderTimeline.objects.bulk_create(timeline)
        return order
