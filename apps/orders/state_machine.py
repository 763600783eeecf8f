"""
SubOrder status machine and the Order status projection.

Pure functions over status strings, no database access.
"""
from apps.utils.exceptions import StateConflict

from .models.order import OrderStatus

# Legal SubOrder transitions
TRANSITIONS = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.OUT_OF_STOCK),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    OrderStatus.PREPARING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED,),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
    OrderStatus.OUT_OF_STOCK: (),
}

# Fulfilment progression, least advanced first
PROGRESSION = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

# Reaching one of these gives the SubOrder's stock back
STOCK_RESTORING = frozenset({OrderStatus.CANCELLED, OrderStatus.OUT_OF_STOCK})


class InvalidTransition(StateConflict):
    default_code = "INVALID_TRANSITION"


def allowed_transitions(status):
    return list(TRANSITIONS.get(status, ()))


def is_terminal(status):
    return not TRANSITIONS.get(status)


def is_transition_allowed(current, target):
    return target in TRANSITIONS.get(current, ())


def assert_transition(current, target):
    if not is_transition_allowed(current, target):
        raise InvalidTransition(
            f"Transition from '{current}' to '{target}' is not allowed.",
            details={
                "current_status": current,
                "requested_status": target,
                "allowed_transitions": [str(s) for s in allowed_transitions(current)],
            },
        )


def derive_order_status(statuses):
    """
    Order status from the multiset of SubOrder statuses:

    1. all equal            -> that status
    2. any out_of_stock     -> out_of_stock
    3. any cancelled        -> cancelled
    4. otherwise            -> least advanced status in PROGRESSION

    Depends only on the multiset, never on the input order.
    """
    statuses = list(statuses)
    if not statuses:
        raise ValueError("An order has at least one sub-order.")

    distinct = set(statuses)
    if len(distinct) == 1:
        return OrderStatus(statuses[0])
    if OrderStatus.OUT_OF_STOCK in distinct:
        return OrderStatus.OUT_OF_STOCK
    if OrderStatus.CANCELLED in distinct:
        return OrderStatus.CANCELLED

    return min(
        (OrderStatus(s) for s in distinct if s in PROGRESSION),
        key=PROGRESSION.index,
    )
