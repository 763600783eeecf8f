import uuid
from django.db import models
from django.conf import settings
from apps.utils.models import TimestampedModel

__all__ = ["OrderStatus", "PaymentStatus", "PaymentMethod", "Order", "SubOrder"]


class OrderStatus(models.TextChoices):
    """Shared by Order (derived) and SubOrder (state machine)."""
    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    PREPARING = "preparing", "Preparing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"
    OUT_OF_STOCK = "out_of_stock", "Out of stock"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    CASH_ON_DELIVERY = "cash_on_delivery", "Cash on Delivery"
    ONLINE = "online", "Online"


class Order(TimestampedModel):
    """
    Buyer-facing aggregate. One SubOrder per vendor touched.

    `status` is a projection of the SubOrder statuses: it is only ever
    written by `refresh_status()`, never by callers.
    """
    number = models.CharField(max_length=40, unique=True, editable=False)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')

    # Snapshot of Address (JSON) to prevent historical drift
    shipping_address = models.JSONField()

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    savings = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    payment_method = models.CharField(
        max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH_ON_DELIVERY
    )
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    paid_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING,
        db_index=True, editable=False,
    )
    reception_confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["buyer", "-created_at"], name="order_buyer_created_idx"),
        ]

    def __str__(self):
        return f"{self.number} [{self.status}]"

    def refresh_status(self, sub_orders=None) -> bool:
        """
        Re-derives `status` from the SubOrders. Returns True when it changed.
        Caller saves.
        """
        from apps.orders.state_machine import derive_order_status

        if sub_orders is None:
            sub_orders = self.sub_orders.all()
        new_status = derive_order_status([s.status for s in sub_orders])
        changed = new_status != self.status
        self.status = new_status
        return changed

    @property
    def item_count(self):
        return sum(item.quantity for item in self.items.all())

    @property
    def is_paid(self):
        return self.payment_status == PaymentStatus.PAID

    @property
    def can_pay(self):
        sub_orders = self.sub_orders.all()
        return not self.is_paid and all(s.status == OrderStatus.DELIVERED for s in sub_orders)

    @property
    def can_confirm_reception(self):
        return self.reception_confirmed_at is None and any(
            s.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED) for s in self.sub_orders.all()
        )


class SubOrder(models.Model):
    """
    Vendor-scoped partition of an Order, with its own status machine.
    Created together with the Order, never added or removed afterwards.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='sub_orders')
    vendor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='sub_orders')
    vendor_name = models.CharField(max_length=255, blank=True)

    # First-occurrence order of the vendor in the cart
    position = models.PositiveSmallIntegerField(default=0)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(fields=["order", "vendor"], name="uniq_sub_order_per_vendor"),
        ]
        indexes = [
            models.Index(fields=["vendor", "status"], name="sub_order_vendor_status_idx"),
        ]

    def __str__(self):
        return f"{self.order_id} / {self.vendor_name or self.vendor_id} [{self.status}]"

    @property
    def ledger_reference(self):
        """Idempotency key for stock restored on behalf of this SubOrder."""
        return f"{self.order.number}:{self.id}"

    @property
    def is_terminal(self):
        from apps.orders.state_machine import is_terminal
        return is_terminal(self.status)

    def stock_lines(self):
        return [{"product_id": i.product_id, "quantity": i.quantity} for i in self.items.all()]
