from django.db import models
from django.conf import settings
from .order import Order, SubOrder

__all__ = ["OrderNote"]


class OrderNote(models.Model):
    """
    Free-text note.
    sub_order NULL -> buyer/platform note on the Order.
    sub_order set  -> vendor note, visible to that vendor only.
    """
    order = models.ForeignKey(Order, related_name="notes", on_delete=models.CASCADE)
    sub_order = models.ForeignKey(
        SubOrder, related_name="notes", on_delete=models.CASCADE, null=True, blank=True
    )
    author = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"Note on {self.order_id} by {self.author_id}"
