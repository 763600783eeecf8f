# apps/orders/signals.py
import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)

# Orders app signals. All of them are fired after commit.

# One per SubOrder. args: order, sub_order
order_placed = Signal()

# args: order, sub_order, old_status, new_status, actor
sub_order_status_changed = Signal()

# args: order, payment
order_paid = Signal()

# args: order, delivered_sub_orders
reception_confirmed = Signal()

# args: order, cancellation
order_cancelled = Signal()


def emit(signal, sender, **kwargs):
    """
    Fire-and-forget. A failing receiver is logged, never raised.
    """
    for receiver, response in signal.send_robust(sender=sender, **kwargs):
        if isinstance(response, Exception):
            order = kwargs.get("order")
            logger.error(
                f"Receiver {getattr(receiver, '__qualname__', receiver)} failed: {response}",
                exc_info=(type(response), response, response.__traceback__),
                extra={"order_number": getattr(order, "number", None)},
            )
