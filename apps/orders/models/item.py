from django.conf import settings
from django.db import models

from apps.catalog.models import Product
from .order import Order, SubOrder

__all__ = ["OrderItem", "ImmutableSnapshotError"]


class ImmutableSnapshotError(Exception):
    pass


class OrderItem(models.Model):
    """
    Line item. Belongs to exactly one Order and exactly one SubOrder.
    """
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    sub_order = models.ForeignKey(SubOrder, on_delete=models.CASCADE, related_name='items')
    position = models.PositiveIntegerField(default=0)

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='order_items')
    vendor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')

    # Snapshot fields (Critical for audit)
    product_name = models.CharField(max_length=255)
    product_slug = models.CharField(max_length=280, blank=True)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    promo_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    quantity = models.PositiveIntegerField()
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["position"]

    def __str__(self):
        return f"{self.quantity}x {self.product_name}"

    def save(self, *args, **kwargs):
        # Historical pricing must never drift once written
        if not self._state.adding:
            raise ImmutableSnapshotError(f"Order line {self.pk} is an immutable snapshot.")
        super().save(*args, **kwargs)

    @property
    def effective_price(self):
        return self.promo_price if self.promo_price is not None else self.unit_price
