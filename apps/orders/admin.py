import json
from django.contrib import admin
from django.utils.safestring import mark_safe
from .models import (
    Order, SubOrder, OrderItem, OrderTimeline, OrderNote,
    Cart, CartItem, OrderCancellation
)


class ReadOnlyInline(admin.TabularInline):
    extra = 0

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderItemInline(ReadOnlyInline):
    model = OrderItem
    readonly_fields = ('product', 'vendor', 'product_name', 'unit_price', 'promo_price', 'quantity', 'subtotal')


class SubOrderInline(ReadOnlyInline):
    model = SubOrder
    readonly_fields = ('vendor', 'vendor_name', 'subtotal', 'total', 'status', 'updated_at')


class OrderTimelineInline(ReadOnlyInline):
    model = OrderTimeline
    readonly_fields = ('timestamp', 'sub_order', 'status', 'comment', 'actor_label', 'created_by')


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Orders are read-only here: every mutation goes through the order
    commands so status, stock and history stay consistent.
    """
    list_display = ('number', 'buyer', 'status', 'payment_status', 'total', 'created_at')
    list_filter = ('status', 'payment_status', 'payment_method', 'created_at')
    search_fields = ('number', 'id', 'buyer__email')

    inlines = [SubOrderInline, OrderItemInline, OrderTimelineInline]

    readonly_fields = (
        'id',
        'number',
        'buyer',
        'status',
        'subtotal',
        'total',
        'savings',
        'payment_method',
        'payment_status',
        'paid_at',
        'reception_confirmed_at',
        'formatted_shipping_address',
        'created_at',
        'updated_at',
    )
    exclude = ('shipping_address',)

    def has_add_permission(self, request):
        return False

    def formatted_shipping_address(self, obj):
        if not obj.shipping_address:
            return "-"
        content = json.dumps(obj.shipping_address, indent=2, ensure_ascii=False)
        return mark_safe(f"<pre>{content}</pre>")

    formatted_shipping_address.short_description = "Shipping Address Snapshot"


@admin.register(OrderNote)
class OrderNoteAdmin(admin.ModelAdmin):
    list_display = ('order', 'sub_order', 'author', 'created_at')
    search_fields = ('order__number', 'content')


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    readonly_fields = ('product', 'quantity', 'added_at')
    can_delete = False


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ('id', 'buyer', 'updated_at')
    search_fields = ('buyer__email',)
    readonly_fields = ('buyer', 'created_at', 'updated_at')
    inlines = [CartItemInline]

    def has_add_permission(self, request):
        return False


@admin.register(OrderCancellation)
class OrderCancellationAdmin(admin.ModelAdmin):
    list_display = ('order', 'cancelled_by', 'created_at')
    list_filter = ('cancelled_by',)
    search_fields = ('order__number', 'reason')
    readonly_fields = ('order', 'reason', 'cancelled_by', 'meta', 'created_at', 'cancelled_by_user')
