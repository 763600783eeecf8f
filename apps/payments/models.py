from django.db import models
from django.conf import settings
from apps.orders.models import Order, PaymentMethod
from apps.utils.models import TimestampedModel


class PaymentRecordStatus(models.TextChoices):
    SUCCESS = "SUCCESS", "Success"
    FAILED = "FAILED", "Failed"


class Payment(TimestampedModel):
    """
    One accepted payment for an Order.
    An Order is paid at most once, so at most one SUCCESS row exists per order.
    """
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payments")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT)

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    status = models.CharField(
        max_length=20, choices=PaymentRecordStatus.choices, default=PaymentRecordStatus.SUCCESS
    )

    # Provider / cashier reference, free text
    reference = models.CharField(max_length=100, blank=True, db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status="SUCCESS"),
                name="uniq_successful_payment_per_order",
            ),
        ]

    def __str__(self):
        return f"{self.order_id} | {self.amount} | {self.status}"
