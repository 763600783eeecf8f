"""
Order mutations as capability-checked commands.

Each command declares the roles allowed to run it and its
preconditions. `execute()` always runs in this order, inside one
transaction:

    role check -> lock order -> ownership -> lock sub-orders
    -> preconditions -> apply -> re-derive order status

Signals are fired only after commit.
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.accounts.models import Role
from apps.inventory.services import StockLedgerService
from apps.utils.exceptions import AuthorizationFailure, ResourceNotFound, StateConflict, ValidationFailure

from . import signals
from .models import Order, OrderCancellation, OrderNote, OrderStatus, OrderTimeline
from .state_machine import STOCK_RESTORING, assert_transition

logger = logging.getLogger(__name__)


class OrderCommand:
    allowed_roles = ()
    # Vendor commands lock only their own SubOrder
    vendor_scoped = False

    def __init__(self, actor, order_id, **params):
        self.actor = actor
        self.order_id = order_id
        self.params = params
        self.order = None
        self.sub_orders = []
        self._post_commit = []

    @property
    def actor_label(self):
        return self.actor.role.lower()

    def execute(self):
        self.check_role()
        with transaction.atomic():
            self.order = self.load_order()
            self.authorize()
            self.sub_orders = self.load_sub_orders()
            self.check_preconditions()
            result = self.apply()
            self.sync_status()
        for callback in self._post_commit:
            transaction.on_commit(callback)
        return result

    def check_role(self):
        if self.actor.role not in self.allowed_roles:
            raise AuthorizationFailure(
                f"{self.actor.get_role_display()} accounts cannot perform this action.",
                code="ROLE_NOT_ALLOWED",
            )

    def load_order(self):
        try:
            return Order.objects.select_for_update().get(pk=self.order_id)
        except (Order.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise ResourceNotFound("Order not found.", code="ORDER_NOT_FOUND")

    def authorize(self):
        if self.order.buyer_id != self.actor.pk:
            raise AuthorizationFailure("You do not own this order.", code="ORDER_NOT_OWNER")

    def load_sub_orders(self):
        return list(self.order.sub_orders.select_for_update().order_by("position"))

    def check_preconditions(self):
        pass

    def apply(self):
        raise NotImplementedError

    def after_commit(self, callback):
        self._post_commit.append(callback)

    def sync_status(self):
        """
        Order status is re-derived from every SubOrder, never patched.
        """
        sub_orders = list(self.order.sub_orders.all()) if self.vendor_scoped else self.sub_orders
        previous = self.order.status
        if self.order.refresh_status(sub_orders):
            OrderTimeline.objects.create(
                order=self.order,
                status=self.order.status,
                comment=f"Order status {previous} -> {self.order.status}",
                created_by=self.actor,
                actor_label=self.actor_label,
            )
            logger.info(
                f"Order {self.order.number} status {previous} -> {self.order.status}",
                extra={"order_number": self.order.number},
            )
        self.order.save(update_fields=["status", "reception_confirmed_at", "updated_at"])

    def transition(self, sub_order, target, comment="", actor_label=None):
        """Moves one locked SubOrder, restoring its stock when needed."""
        assert_transition(sub_order.status, target)
        previous = sub_order.status
        sub_order.status = target
        sub_order.save(update_fields=["status", "updated_at"])
        OrderTimeline.objects.create(
            order=self.order,
            sub_order=sub_order,
            status=target,
            comment=comment,
            created_by=self.actor,
            actor_label=actor_label or self.actor_label,
        )
        restored = []
        if target in STOCK_RESTORING:
            restored = StockLedgerService.restore(
                sub_order.stock_lines(), reference=sub_order.ledger_reference, user=self.actor
            )
        logger.info(
            f"SubOrder {sub_order.pk} of {self.order.number}: {previous} -> {target}",
            extra={"order_number": self.order.number, "sub_order_id": str(sub_order.pk)},
        )
        self.after_commit(
            lambda: signals.emit(
                signals.sub_order_status_changed,
                sender=self.__class__,
                order=self.order,
                sub_order=sub_order,
                old_status=previous,
                new_status=target,
                actor=self.actor,
            )
        )
        return restored


class VendorSubOrderCommand(OrderCommand):
    allowed_roles = (Role.VENDOR,)
    vendor_scoped = True

    def authorize(self):
        if not self.order.sub_orders.filter(vendor=self.actor).exists():
            raise AuthorizationFailure(
                "You have no sub-order in this order.", code="SUB_ORDER_NOT_OWNER"
            )

    def load_sub_orders(self):
        return list(self.order.sub_orders.select_for_update().filter(vendor=self.actor))

    @property
    def sub_order(self):
        return self.sub_orders[0]


class TransitionSubOrderCommand(VendorSubOrderCommand):
    """
    Vendor moves their SubOrder along the state machine.
    params: status, comment
    """

    def check_preconditions(self):
        assert_transition(self.sub_order.status, self.params["status"])

    def apply(self):
        self.transition(self.sub_order, self.params["status"], comment=self.params.get("comment", ""))
        return self.sub_order


class AddSubOrderNoteCommand(VendorSubOrderCommand):
    """params: content"""

    def check_preconditions(self):
        if not (self.params.get("content") or "").strip():
            raise ValidationFailure("Note content is required.", code="NOTE_REQUIRED")

    def apply(self):
        return OrderNote.objects.create(
            order=self.order,
            sub_order=self.sub_order,
            author=self.actor,
            content=self.params["content"].strip(),
        )


class AddOrderNoteCommand(OrderCommand):
    """Buyer note on the whole order. params: content"""
    allowed_roles = (Role.BUYER,)

    def check_preconditions(self):
        if not (self.params.get("content") or "").strip():
            raise ValidationFailure("Note content is required.", code="NOTE_REQUIRED")

    def apply(self):
        return OrderNote.objects.create(
            order=self.order, author=self.actor, content=self.params["content"].strip()
        )


class CancelOrderCommand(OrderCommand):
    """
    Buyer cancels the whole order. Only while no vendor has acted:
    the order and every SubOrder must still be pending.
    params: reason
    """
    allowed_roles = (Role.BUYER,)

    def check_preconditions(self):
        statuses = [s.status for s in self.sub_orders]
        if self.order.status != OrderStatus.PENDING or any(s != OrderStatus.PENDING for s in statuses):
            raise StateConflict(
                "This order can no longer be cancelled.",
                code="CANCELLATION_NOT_ALLOWED",
                details={
                    "current_status": self.order.status,
                    "sub_order_statuses": {str(s.pk): s.status for s in self.sub_orders},
                },
            )

    def apply(self):
        reason = (self.params.get("reason") or "").strip()
        restored = []
        for sub_order in self.sub_orders:
            for log in self.transition(
                sub_order, OrderStatus.CANCELLED, comment=reason or "Cancelled by buyer"
            ):
                restored.append({"product_id": str(log.product_id), "quantity": log.quantity_change})

        cancellation = OrderCancellation.objects.create(
            order=self.order,
            reason=reason,
            cancelled_by="BUYER",
            cancelled_by_user=self.actor,
            meta={"restored": restored},
        )
        self.after_commit(
            lambda: signals.emit(
                signals.order_cancelled, sender=self.__class__, order=self.order, cancellation=cancellation
            )
        )
        return cancellation


class ConfirmReceptionCommand(OrderCommand):
    """
    Buyer confirms receipt. Every shipped SubOrder becomes delivered.
    """
    allowed_roles = (Role.BUYER,)

    def check_preconditions(self):
        if self.order.reception_confirmed_at is not None:
            raise StateConflict(
                "Reception has already been confirmed.",
                code="ALREADY_CONFIRMED",
                details={"reception_confirmed_at": self.order.reception_confirmed_at.isoformat()},
            )
        if not any(s.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED) for s in self.sub_orders):
            raise StateConflict(
                "Nothing has been shipped yet.",
                code="RECEPTION_NOT_ELIGIBLE",
                details={"sub_order_statuses": {str(s.pk): s.status for s in self.sub_orders}},
            )

    def apply(self):
        self.order.reception_confirmed_at = timezone.now()
        delivered = []
        for sub_order in self.sub_orders:
            if sub_order.status == OrderStatus.SHIPPED:
                self.transition(
                    sub_order,
                    OrderStatus.DELIVERED,
                    comment="Reception confirmed by buyer",
                    actor_label="buyer confirmation",
                )
                delivered.append(sub_order)
        self.after_commit(
            lambda: signals.emit(
                signals.reception_confirmed,
                sender=self.__class__,
                order=self.order,
                delivered_sub_orders=delivered,
            )
        )
        return self.order
