import logging

from django.utils import timezone

from apps.accounts.models import Role
from apps.orders import signals
from apps.orders.commands import OrderCommand
from apps.orders.models import Order, OrderStatus, PaymentStatus
from apps.utils.exceptions import StateConflict

from .models import Payment, PaymentRecordStatus

logger = logging.getLogger(__name__)


def check_payment_eligibility(order, sub_orders):
    """
    Payment gate. Raises StateConflict unless the order is unpaid and
    every SubOrder is delivered.
    """
    if order.payment_status == PaymentStatus.PAID:
        raise StateConflict(
            "This order has already been paid.",
            code="ALREADY_PAID",
            details={"paid_at": order.paid_at.isoformat() if order.paid_at else None},
        )
    pending = [s for s in sub_orders if s.status != OrderStatus.DELIVERED]
    if pending:
        raise StateConflict(
            "Payment is only possible once every vendor has delivered.",
            code="PAYMENT_NOT_ELIGIBLE",
            details={
                "sub_order_statuses": [
                    {"sub_order_id": str(s.pk), "vendor_name": s.vendor_name, "status": s.status}
                    for s in sub_orders
                ],
            },
        )


class PayOrderCommand(OrderCommand):
    """
    Buyer pays a fully delivered order. One-way: there is no un-pay.
    params: reference
    """
    allowed_roles = (Role.BUYER,)

    def check_preconditions(self):
        check_payment_eligibility(self.order, self.sub_orders)

    def apply(self):
        now = timezone.now()
        self.order.payment_status = PaymentStatus.PAID
        self.order.paid_at = now
        self.order.save(update_fields=["payment_status", "paid_at", "updated_at"])

        payment = Payment.objects.create(
            order=self.order,
            user=self.actor,
            amount=self.order.total,
            method=self.order.payment_method,
            status=PaymentRecordStatus.SUCCESS,
            reference=self.params.get("reference") or "",
        )
        logger.info(
            f"Order {self.order.number} paid ({self.order.total}, {self.order.payment_method})",
            extra={"order_number": self.order.number, "user_id": self.actor.pk},
        )
        self.after_commit(
            lambda: signals.emit(signals.order_paid, sender=Order, order=self.order, payment=payment)
        )
        return payment


class PaymentService:

    @staticmethod
    def pay(buyer, order_id, reference=""):
        return PayOrderCommand(buyer, order_id, reference=reference).execute()
