import logging
from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from apps.catalog.models import Product
from apps.inventory.services import StockLedgerService
from apps.utils.exceptions import AuthorizationFailure, ResourceNotFound, ValidationFailure

from . import signals
from .assembly import OrderAssembler
from .commands import (
    AddOrderNoteCommand,
    AddSubOrderNoteCommand,
    CancelOrderCommand,
    ConfirmReceptionCommand,
    TransitionSubOrderCommand,
)
from .models import Cart, CartItem, Order, OrderStatus, PaymentMethod, SubOrder

logger = logging.getLogger(__name__)


class LineRejection:
    PRODUCT_INACTIVE = "PRODUCT_INACTIVE"
    VENDOR_INACTIVE = "VENDOR_INACTIVE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"


class CartValidation:
    """
    All-or-nothing outcome of a cart check: either every line is valid
    (`lines`) or nothing is (`invalid_lines`).
    """

    def __init__(self, lines, invalid_lines):
        self.invalid_lines = invalid_lines
        self.lines = [] if invalid_lines else lines

    @property
    def is_valid(self):
        return not self.invalid_lines

    def raise_if_invalid(self):
        if self.invalid_lines:
            raise ValidationFailure(
                "Some items in your cart can no longer be ordered.",
                code="CART_INVALID",
                details={"invalid_lines": self.invalid_lines},
            )


class CartService:

    @staticmethod
    def get_cart(buyer, lock=False):
        if lock:
            # Serializes checkouts of the same buyer
            Cart.objects.get_or_create(buyer=buyer)
            return Cart.objects.select_for_update().get(buyer=buyer)
        cart, _ = Cart.objects.get_or_create(buyer=buyer)
        return cart

    @staticmethod
    def get_items(cart):
        return list(cart.items.select_related("product", "product__vendor").order_by("id"))

    @staticmethod
    @transaction.atomic
    def add_item(buyer, product_id, quantity=1):
        """
        Adds to the quantity already in the cart. Availability is only
        advisory here; checkout re-validates everything.
        """
        try:
            product = Product.objects.get(pk=product_id, is_active=True)
        except (Product.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise ResourceNotFound("Product not found.", code="PRODUCT_NOT_FOUND")

        cart = CartService.get_cart(buyer)
        item, created = CartItem.objects.select_for_update().get_or_create(
            cart=cart, product=product, defaults={"quantity": quantity}
        )
        if not created:
            item.quantity += quantity
            item.save(update_fields=["quantity"])
        return cart

    @staticmethod
    def remove_item(buyer, product_id):
        cart = CartService.get_cart(buyer)
        cart.items.filter(product_id=product_id).delete()
        return cart

    @staticmethod
    def clear(buyer):
        Cart.objects.filter(buyer=buyer).update(updated_at=timezone.now())
        return CartItem.objects.filter(cart__buyer=buyer).delete()[0]

    @staticmethod
    def validate_lines(cart_items, products):
        """
        Re-checks every cart line against current product / vendor state.

        `products` maps str(product id) -> Product, typically the rows
        locked by StockLedgerService.lock_products().
        """
        lines, invalid = [], []
        for item in cart_items:
            product = products.get(str(item.product_id))
            rejection = CartService._reject(product, item.quantity)
            if rejection is None:
                lines.append((product, item.quantity))
                continue
            reason, detail = rejection
            invalid.append({
                "product_id": str(item.product_id),
                "product_name": product.name if product else None,
                "reason": reason,
                "detail": detail,
            })
        return CartValidation(lines, invalid)

    @staticmethod
    def _reject(product, quantity):
        if product is None or not product.is_active:
            return LineRejection.PRODUCT_INACTIVE, {}
        vendor = product.vendor
        profile = getattr(vendor, "vendor_profile", None)
        if profile is None or not profile.can_sell:
            return LineRejection.VENDOR_INACTIVE, {"vendor_id": str(vendor.pk)}
        if product.stock < quantity:
            return LineRejection.INSUFFICIENT_STOCK, {"available": product.stock, "requested": quantity}
        return None

    @staticmethod
    def validate_cart(buyer):
        """Read-only check, no locks taken."""
        items = CartService.get_items(CartService.get_cart(buyer))
        if not items:
            raise ValidationFailure("Your cart is empty.", code="CART_EMPTY")
        products = Product.objects.select_related("vendor", "vendor__vendor_profile").in_bulk(
            [i.product_id for i in items]
        )
        return CartService.validate_lines(items, {str(pk): p for pk, p in products.items()})


class OrderService:
    """
    Buyer-side entry points.
    """

    @staticmethod
    def place_order(buyer, shipping_address, payment_method=PaymentMethod.CASH_ON_DELIVERY):
        """
        Cart -> Order, in one transaction:
        lock cart and products, re-validate, assemble, decrement stock,
        clear cart. Vendors are notified after commit.
        """
        from .serializers import ShippingAddressSerializer

        address = ShippingAddressSerializer(data=shipping_address or {})
        if not address.is_valid():
            raise ValidationFailure(
                "A complete shipping address is required.",
                code="ADDRESS_REQUIRED",
                details={"fields": address.errors},
            )

        with transaction.atomic():
            cart = CartService.get_cart(buyer, lock=True)
            cart_items = CartService.get_items(cart)
            if not cart_items:
                raise ValidationFailure("Your cart is empty.", code="CART_EMPTY")

            products = StockLedgerService.lock_products(i.product_id for i in cart_items)
            validation = CartService.validate_lines(cart_items, products)
            validation.raise_if_invalid()

            order = OrderAssembler(buyer, address.validated_data, payment_method).assemble(validation.lines)

            StockLedgerService.decrement_for_order(
                [{"product_id": product.pk, "quantity": qty} for product, qty in validation.lines],
                reference=order.number,
                user=buyer,
            )
            CartService.clear(buyer)

        for sub_order in order.sub_orders.select_related("vendor"):
            transaction.on_commit(
                lambda sub_order=sub_order: signals.emit(
                    signals.order_placed, sender=Order, order=order, sub_order=sub_order
                )
            )
        return order

    @staticmethod
    def buyer_orders(buyer):
        return (
            Order.objects
            .filter(buyer=buyer)
            .prefetch_related("items", "sub_orders", "timeline", "notes")
        )

    @staticmethod
    def get_for_buyer(buyer, order_id):
        try:
            order = Order.objects.prefetch_related(
                "items", "sub_orders__timeline", "timeline", "notes"
            ).get(pk=order_id)
        except (Order.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise ResourceNotFound("Order not found.", code="ORDER_NOT_FOUND")
        if order.buyer_id != buyer.pk:
            raise AuthorizationFailure("You do not own this order.", code="ORDER_NOT_OWNER")
        return order

    @staticmethod
    def cancel(buyer, order_id, reason=""):
        return CancelOrderCommand(buyer, order_id, reason=reason).execute()

    @staticmethod
    def confirm_reception(buyer, order_id):
        return ConfirmReceptionCommand(buyer, order_id).execute()

    @staticmethod
    def add_note(buyer, order_id, content):
        return AddOrderNoteCommand(buyer, order_id, content=content).execute()


class VendorOrderService:
    """
    Vendor-side entry points. A vendor only ever sees its own SubOrder.
    """

    @staticmethod
    def sub_orders(vendor):
        return (
            SubOrder.objects
            .filter(vendor=vendor)
            .select_related("order", "order__buyer")
            .prefetch_related("items", "notes", "timeline")
            .order_by("-created_at")
        )

    @staticmethod
    def get_for_vendor(vendor, order_id):
        try:
            exists = Order.objects.filter(pk=order_id).exists()
        except (DjangoValidationError, ValueError, TypeError):
            exists = False
        if not exists:
            raise ResourceNotFound("Order not found.", code="ORDER_NOT_FOUND")
        sub_order = VendorOrderService.sub_orders(vendor).filter(order_id=order_id).first()
        if sub_order is None:
            raise AuthorizationFailure("You have no sub-order in this order.", code="SUB_ORDER_NOT_OWNER")
        return sub_order

    @staticmethod
    def update_status(vendor, order_id, status, comment=""):
        return TransitionSubOrderCommand(vendor, order_id, status=status, comment=comment).execute()

    @staticmethod
    def add_note(vendor, order_id, content):
        return AddSubOrderNoteCommand(vendor, order_id, content=content).execute()

    @staticmethod
    def stats(vendor, now=None):
        now = timezone.localtime(now or timezone.now())
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_week = start_of_day - timedelta(days=start_of_day.weekday())
        start_of_month = start_of_day.replace(day=1)

        def window(since):
            return {
                "count": Count("id", filter=Q(created_at__gte=since)),
                "revenue": Sum("total", filter=Q(created_at__gte=since), default=Decimal("0.00")),
            }

        qs = SubOrder.objects.filter(vendor=vendor)
        totals = qs.aggregate(
            total_count=Count("id"),
            total_revenue=Sum("total", default=Decimal("0.00")),
            **{f"day_{k}": v for k, v in window(start_of_day).items()},
            **{f"week_{k}": v for k, v in window(start_of_week).items()},
            **{f"month_{k}": v for k, v in window(start_of_month).items()},
        )
        per_status = {status: 0 for status in OrderStatus.values}
        for row in qs.values("status").annotate(n=Count("id")):
            per_status[row["status"]] = row["n"]

        return {
            "overall": {"orders": totals["total_count"], "revenue": totals["total_revenue"], "by_status": per_status},
            "today": {"orders": totals["day_count"], "revenue": totals["day_revenue"]},
            "week": {"orders": totals["week_count"], "revenue": totals["week_revenue"]},
            "month": {"orders": totals["month_count"], "revenue": totals["month_revenue"]},
        }
