"""
Top-level models import shim for the Orders app.

Keeps
    from apps.orders.models import Order
working while the models live in separate modules.
"""

from .order import *          # Order, SubOrder, OrderStatus, PaymentStatus, PaymentMethod
from .item import *           # OrderItem
from .timeline import *       # OrderTimeline
from .note import *           # OrderNote
from .cancellation import *   # OrderCancellation
from .cart import *           # Cart, CartItem
