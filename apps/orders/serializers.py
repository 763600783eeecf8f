from rest_framework import serializers

from .models import Cart, CartItem, Order, OrderItem, OrderNote, OrderStatus, OrderTimeline, PaymentMethod, SubOrder


class ShippingAddressSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=255)
    street = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=120)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    postal_code = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    country = serializers.CharField(max_length=120, required=False, default="Madagascar")
    instructions = serializers.CharField(required=False, allow_blank=True, default="")


# --- Cart ---

class CartItemSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(source="product.id", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    unit_price = serializers.DecimalField(source="product.effective_price", max_digits=12, decimal_places=2, read_only=True)
    available_stock = serializers.IntegerField(source="product.stock", read_only=True)

    class Meta:
        model = CartItem
        fields = ["id", "product_id", "product_name", "unit_price", "quantity", "available_stock", "added_at"]


class CartSerializer(serializers.ModelSerializer):
    items = CartItemSerializer(many=True, read_only=True)
    estimated_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Cart
        fields = ["id", "items", "estimated_total", "updated_at"]


class AddToCartSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class RemoveFromCartSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()


class CheckoutSerializer(serializers.Serializer):
    # Address is validated by the service so a bad one maps to ADDRESS_REQUIRED
    shipping_address = serializers.DictField(required=False, default=dict)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH_ON_DELIVERY)


# --- Orders ---

class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            "id", "product", "vendor", "product_name", "product_slug",
            "unit_price", "promo_price", "quantity", "subtotal",
        ]


class TimelineSerializer(serializers.ModelSerializer):
    actor = serializers.SerializerMethodField()

    class Meta:
        model = OrderTimeline
        fields = ["status", "timestamp", "comment", "actor"]

    def get_actor(self, obj):
        return obj.actor_label or None


class NoteSerializer(serializers.ModelSerializer):
    author = serializers.CharField(source="author.email", read_only=True)

    class Meta:
        model = OrderNote
        fields = ["id", "author", "content", "created_at"]


class NoteCreateSerializer(serializers.Serializer):
    # Emptiness is checked by the command so it maps to NOTE_REQUIRED
    content = serializers.CharField(allow_blank=True, required=False, default="")


class SubOrderSummarySerializer(serializers.ModelSerializer):
    """Buyer's view of one vendor's part; vendor notes are never included."""
    history = serializers.SerializerMethodField()

    class Meta:
        model = SubOrder
        fields = ["id", "vendor", "vendor_name", "subtotal", "total", "status", "history"]

    def get_history(self, obj):
        return TimelineSerializer(obj.timeline.all(), many=True).data


class OrderListSerializer(serializers.ModelSerializer):
    item_count = serializers.IntegerField(read_only=True)
    vendor_count = serializers.SerializerMethodField()
    can_pay = serializers.BooleanField(read_only=True)
    can_confirm_reception = serializers.BooleanField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "number", "status", "payment_status", "payment_method",
            "total", "item_count", "vendor_count", "can_pay", "can_confirm_reception",
            "created_at",
        ]

    def get_vendor_count(self, obj):
        return len(obj.sub_orders.all())


class OrderDetailSerializer(OrderListSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    sub_orders = SubOrderSummarySerializer(many=True, read_only=True)
    history = serializers.SerializerMethodField()
    notes = serializers.SerializerMethodField()

    class Meta(OrderListSerializer.Meta):
        fields = OrderListSerializer.Meta.fields + [
            "shipping_address", "subtotal", "savings", "paid_at", "reception_confirmed_at",
            "items", "sub_orders", "history", "notes",
        ]

    def get_history(self, obj):
        return TimelineSerializer([t for t in obj.timeline.all() if t.sub_order_id is None], many=True).data

    def get_notes(self, obj):
        # Order-level notes only
        return NoteSerializer([n for n in obj.notes.all() if n.sub_order_id is None], many=True).data


class OrderTrackingSerializer(serializers.ModelSerializer):
    history = serializers.SerializerMethodField()
    vendors = SubOrderSummarySerializer(source="sub_orders", many=True, read_only=True)

    class Meta:
        model = Order
        fields = ["number", "status", "payment_status", "reception_confirmed_at", "history", "vendors"]

    def get_history(self, obj):
        return TimelineSerializer([t for t in obj.timeline.all() if t.sub_order_id is None], many=True).data


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


# --- Vendor ---

class VendorSubOrderSerializer(serializers.ModelSerializer):
    """
    One vendor's SubOrder plus the order context it needs to ship:
    buyer contact, shipping address, derived global status.
    """
    order_id = serializers.UUIDField(source="order.id", read_only=True)
    order_number = serializers.CharField(source="order.number", read_only=True)
    order_status = serializers.CharField(source="order.status", read_only=True)
    payment_status = serializers.CharField(source="order.payment_status", read_only=True)
    shipping_address = serializers.JSONField(source="order.shipping_address", read_only=True)
    buyer = serializers.SerializerMethodField()
    items = OrderItemSerializer(many=True, read_only=True)
    notes = NoteSerializer(many=True, read_only=True)
    history = TimelineSerializer(source="timeline", many=True, read_only=True)

    class Meta:
        model = SubOrder
        fields = [
            "id", "order_id", "order_number", "order_status", "payment_status",
            "status", "subtotal", "total", "buyer", "shipping_address",
            "items", "notes", "history", "created_at", "updated_at",
        ]

    def get_buyer(self, obj):
        buyer = obj.order.buyer
        return {"full_name": buyer.full_name, "email": buyer.email, "phone_number": buyer.phone_number}


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    comment = serializers.CharField(required=False, allow_blank=True, default="")
