import logging

from django.conf import settings
from django.core.cache import cache
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts.permissions import IsBuyer, IsVendor
from apps.payments.services import PaymentService
from apps.utils.exceptions import StateConflict, ValidationFailure
from apps.utils.throttle import BurstRateThrottle, SustainedRateThrottle

from .models import OrderStatus
from .serializers import (
    AddToCartSerializer,
    CancelOrderSerializer,
    CartSerializer,
    CheckoutSerializer,
    NoteCreateSerializer,
    NoteSerializer,
    OrderDetailSerializer,
    OrderListSerializer,
    OrderTrackingSerializer,
    RemoveFromCartSerializer,
    StatusUpdateSerializer,
    VendorSubOrderSerializer,
)
from .services import CartService, OrderService, VendorOrderService

logger = logging.getLogger(__name__)

UUID_PATTERN = r"[0-9a-fA-F-]{36}"


class CartViewSet(viewsets.ViewSet):
    permission_classes = [IsBuyer]

    def list(self, request):
        return Response(CartSerializer(CartService.get_cart(request.user)).data)

    @action(detail=False, methods=["post"])
    def add(self, request):
        serializer = AddToCartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.add_item(request.user, **serializer.validated_data)
        return Response(CartSerializer(cart).data)

    @action(detail=False, methods=["post"])
    def remove(self, request):
        serializer = RemoveFromCartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.remove_item(request.user, serializer.validated_data["product_id"])
        return Response(CartSerializer(cart).data)

    @action(detail=False, methods=["post"])
    def clear(self, request):
        CartService.clear(request.user)
        return Response({"status": "cleared"})

    @action(detail=False, methods=["post"])
    def validate(self, request):
        """
        Dry run of checkout validation. Always 200 unless the cart is empty.
        """
        result = CartService.validate_cart(request.user)
        return Response({
            "valid": result.is_valid,
            "lines": [
                {"product_id": str(product.pk), "product_name": product.name, "quantity": qty}
                for product, qty in result.lines
            ],
            "invalid_lines": result.invalid_lines,
        })


class CheckoutView(APIView):
    """
    Cart -> Order.

    Requires X-Idempotency-Key. The key is held for
    CHECKOUT_IDEMPOTENCY_TTL seconds once an order has been created;
    a business failure releases it so the buyer can fix the cart and retry.
    """
    permission_classes = [IsBuyer]
    throttle_classes = [BurstRateThrottle, SustainedRateThrottle]

    def post(self, request):
        idempotency_key = request.headers.get("X-Idempotency-Key")
        if not idempotency_key:
            raise ValidationFailure("X-Idempotency-Key header is required.", code="IDEMPOTENCY_KEY_REQUIRED")

        cache_key = f"checkout_idempotency_{request.user.pk}_{idempotency_key}"
        if not cache.add(cache_key, "processing", timeout=settings.CHECKOUT_IDEMPOTENCY_TTL):
            raise StateConflict(
                "Duplicate checkout request.",
                code="DUPLICATE_REQUEST",
                details={"previous": cache.get(cache_key)},
            )

        serializer = CheckoutSerializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
            order = OrderService.place_order(
                buyer=request.user,
                shipping_address=serializer.validated_data["shipping_address"],
                payment_method=serializer.validated_data["payment_method"],
            )
        except Exception:
            cache.delete(cache_key)
            raise

        cache.set(cache_key, order.number, timeout=settings.CHECKOUT_IDEMPOTENCY_TTL)
        return Response(OrderDetailSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Buyer's orders. Vendor-internal notes are never exposed here.
    """
    permission_classes = [IsBuyer]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        return OrderService.buyer_orders(self.request.user)

    def get_serializer_class(self):
        if self.action == "list":
            return OrderListSerializer
        return OrderDetailSerializer

    def get_object(self):
        # 404 when missing, 403 when it belongs to someone else
        return OrderService.get_for_buyer(self.request.user, self.kwargs["pk"])

    @action(detail=True, methods=["get"])
    def tracking(self, request, pk=None):
        return Response(OrderTrackingSerializer(self.get_object()).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        OrderService.cancel(request.user, pk, reason=serializer.validated_data["reason"])
        return Response(OrderDetailSerializer(self.get_object()).data)

    @action(detail=True, methods=["post"], url_path="confirm-reception")
    def confirm_reception(self, request, pk=None):
        OrderService.confirm_reception(request.user, pk)
        return Response(OrderDetailSerializer(self.get_object()).data)

    @action(detail=True, methods=["post"])
    def pay(self, request, pk=None):
        payment = PaymentService.pay(request.user, pk, reference=request.data.get("reference", ""))
        return Response({
            "payment_id": str(payment.pk),
            "amount": payment.amount,
            "order": OrderDetailSerializer(self.get_object()).data,
        })

    @action(detail=True, methods=["post"])
    def notes(self, request, pk=None):
        serializer = NoteCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = OrderService.add_note(request.user, pk, serializer.validated_data["content"])
        return Response(NoteSerializer(note).data, status=status.HTTP_201_CREATED)


class VendorOrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Vendor side. Rows are the vendor's SubOrders, addressed by order id.
    """
    permission_classes = [IsVendor]
    serializer_class = VendorSubOrderSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["status"]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        return VendorOrderService.sub_orders(self.request.user)

    def get_object(self):
        return VendorOrderService.get_for_vendor(self.request.user, self.kwargs["pk"])

    @action(detail=False, methods=["get"])
    def new(self, request):
        queryset = self.get_queryset().filter(status=OrderStatus.PENDING)
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(queryset, many=True).data)

    @action(detail=False, methods=["get"])
    def stats(self, request):
        return Response(VendorOrderService.stats(request.user))

    @action(detail=True, methods=["patch", "post"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        VendorOrderService.update_status(request.user, pk, **serializer.validated_data)
        return Response(self.get_serializer(self.get_object()).data)

    @action(detail=True, methods=["post"])
    def notes(self, request, pk=None):
        serializer = NoteCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = VendorOrderService.add_note(request.user, pk, serializer.validated_data["content"])
        return Response(NoteSerializer(note).data, status=status.HTTP_201_CREATED)
