import uuid

from django.conf import settings
from django.db import models

from .order import Order

__all__ = ["CANCELLED_BY_CHOICES", "OrderCancellation"]


CANCELLED_BY_CHOICES = [
    ("BUYER", "Buyer"),
    ("VENDOR", "Vendor"),
    ("SYSTEM", "System"),
]


class OrderCancellation(models.Model):
    """
    Canonical record of a full-order cancellation.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(
        Order,
        related_name="cancellation",
        on_delete=models.CASCADE,
    )

    reason = models.TextField(blank=True)

    cancelled_by = models.CharField(
        max_length=20, choices=CANCELLED_BY_CHOICES, default="SYSTEM"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    # Restored stock lines, for audit
    meta = models.JSONField(default=dict, blank=True)

    cancelled_by_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name="orders_cancelled",
        on_delete=models.SET_NULL,
    )

    class Meta:
        db_table = "order_cancellations"
        indexes = [
            models.Index(fields=["cancelled_by", "created_at"], name="cancellation_by_created_idx"),
        ]

    def __str__(self):
        return f"Cancellation for {self.order_id} ({self.cancelled_by})"
