from django.db import models
from django.conf import settings
from .order import Order, OrderStatus, SubOrder

__all__ = ["OrderTimeline"]


class OrderTimeline(models.Model):
    """
    Append-only status history.
    sub_order NULL -> Order-level entry, otherwise scoped to that vendor.
    """
    order = models.ForeignKey(Order, related_name="timeline", on_delete=models.CASCADE)
    sub_order = models.ForeignKey(
        SubOrder, related_name="timeline", on_delete=models.CASCADE, null=True, blank=True
    )

    status = models.CharField(max_length=20, choices=OrderStatus.choices)  # Stores the status *after* change
    timestamp = models.DateTimeField(auto_now_add=True)
    comment = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )
    actor_label = models.CharField(max_length=50, blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.order_id} -> {self.status}"
