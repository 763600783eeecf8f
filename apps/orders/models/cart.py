import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

__all__ = ["Cart", "CartItem"]


class Cart(models.Model):
    """
    Per-buyer cart.
    One active cart per buyer.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    buyer = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        related_name="cart",
        on_delete=models.CASCADE,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "carts"

    def __str__(self):
        return f"Cart for {self.buyer_id}"

    @property
    def estimated_total(self) -> Decimal:
        """Indicative only; prices are re-read at checkout."""
        return sum(
            (item.product.effective_price * item.quantity for item in self.items.select_related("product")),
            Decimal("0.00"),
        )


class CartItem(models.Model):
    """
    One product + quantity inside a cart.
    """

    cart = models.ForeignKey(
        Cart,
        related_name="items",
        on_delete=models.CASCADE,
    )
    product = models.ForeignKey(
        "catalog.Product",
        related_name="cart_items",
        on_delete=models.CASCADE,
    )

    quantity = models.PositiveIntegerField(default=1)

    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "cart_items"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(fields=["cart", "product"], name="uniq_cart_product"),
        ]

    def __str__(self):
        return f"{self.cart_id} -> {self.product_id} x {self.quantity}"
