from django.db import models
from django.conf import settings
from apps.catalog.models import Product
from apps.utils.models import TimestampedModel


class StockMovementLog(TimestampedModel):
    """
    Immutable Ledger of all stock changes.

    (reference, product, movement_type) is unique: the same adjustment
    can be requested twice but is only ever applied once.
    """
    class MovementType(models.TextChoices):
        OUTBOUND_ORDER = "OUTBOUND", "Outbound (Order placed)"
        RESTORE = "RESTORE", "Restore (Cancellation / Out of stock)"

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='stock_movements'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=100, db_index=True, help_text="Order number, SubOrder id, etc.")
    balance_after = models.IntegerField(null=True, help_text="Snapshot of stock after the change")

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['reference', 'product', 'movement_type'],
                name='uniq_stock_movement_per_reference',
            ),
        ]

    def __str__(self):
        return f"{self.movement_type} {self.quantity_change:+d} {self.product_id} [{self.reference}]"
