# apps/notifications/receivers.py
"""
Order events -> notifications. Every receiver swallows its own errors:
a notification problem must never reach the order flow.
"""
import logging

from django.dispatch import receiver

from apps.orders.signals import (
    order_cancelled,
    order_paid,
    order_placed,
    reception_confirmed,
    sub_order_status_changed,
)
from .services import notify_user

logger = logging.getLogger(__name__)


@receiver(order_placed)
def notify_vendor_order_placed(sender, order, sub_order, **kwargs):
    try:
        notify_user(
            user=sub_order.vendor,
            event_key="order_placed_vendor",
            context={
                "order_number": order.number,
                "item_count": sum(i.quantity for i in sub_order.items.all()),
                "total": str(sub_order.total),
            },
            extra_data={"order_id": str(order.id), "sub_order_id": str(sub_order.id)},
            template_fallback_title="New order ${order_number}",
            template_fallback_body="You received order ${order_number}: ${item_count} item(s), ${total}.",
        )
    except Exception:
        logger.exception(f"order_placed notification failed for {order.number}")


@receiver(sub_order_status_changed)
def notify_buyer_status_changed(sender, order, sub_order, old_status, new_status, **kwargs):
    try:
        notify_user(
            user=order.buyer,
            event_key="sub_order_status_buyer",
            context={
                "order_number": order.number,
                "vendor_name": sub_order.vendor_name,
                "status": new_status,
            },
            extra_data={"order_id": str(order.id), "sub_order_id": str(sub_order.id)},
            template_fallback_title="Order ${order_number} update",
            template_fallback_body="${vendor_name}: your items are now ${status}.",
        )
    except Exception:
        logger.exception(f"status notification failed for {order.number}")


def _notify_vendors(order, event_key, title, body):
    for sub_order in order.sub_orders.select_related("vendor"):
        try:
            notify_user(
                user=sub_order.vendor,
                event_key=event_key,
                context={"order_number": order.number, "total": str(sub_order.total)},
                extra_data={"order_id": str(order.id), "sub_order_id": str(sub_order.id)},
                template_fallback_title=title,
                template_fallback_body=body,
            )
        except Exception:
            logger.exception(f"{event_key} notification failed for {order.number}")


@receiver(order_paid)
def notify_vendors_order_paid(sender, order, **kwargs):
    _notify_vendors(
        order,
        "order_paid_vendor",
        "Payment received for ${order_number}",
        "Order ${order_number} has been paid. Your share: ${total}.",
    )


@receiver(reception_confirmed)
def notify_vendors_reception_confirmed(sender, order, **kwargs):
    _notify_vendors(
        order,
        "reception_confirmed_vendor",
        "Reception confirmed for ${order_number}",
        "The buyer confirmed receiving order ${order_number}.",
    )


@receiver(order_cancelled)
def notify_vendors_order_cancelled(sender, order, **kwargs):
    _notify_vendors(
        order,
        "order_cancelled_vendor",
        "Order ${order_number} cancelled",
        "The buyer cancelled order ${order_number}.",
    )
