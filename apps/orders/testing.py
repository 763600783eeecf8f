"""
Fixtures shared by the order, payment and notification tests.
"""
from decimal import Decimal

from django.utils import timezone

from apps.accounts.models import Role, User, VendorProfile
from apps.catalog.models import Product

from .models import Cart, CartItem
from .services import OrderService, VendorOrderService

ADDRESS = {
    "full_name": "Rina Rakoto",
    "street": "Lot II A 12 Analakely",
    "city": "Antananarivo",
    "phone": "+261340000000",
}


def make_buyer(email="buyer@example.com", **extra):
    return User.objects.create_user(
        email=email, password="testpass123", role=Role.BUYER, full_name="Test Buyer", **extra
    )


def make_vendor(email="vendor@example.com", shop_name=None, approved=True):
    vendor = User.objects.create_user(email=email, password="testpass123", role=Role.VENDOR)
    VendorProfile.objects.create(
        user=vendor,
        shop_name=shop_name or email.split("@")[0].title(),
        is_approved=approved,
        approved_at=timezone.now() if approved else None,
    )
    return vendor


def make_product(vendor, name="Product", price="10.00", stock=10, **extra):
    return Product.objects.create(vendor=vendor, name=name, price=Decimal(price), stock=stock, **extra)


def fill_cart(buyer, *lines):
    cart, _ = Cart.objects.get_or_create(buyer=buyer)
    for product, quantity in lines:
        CartItem.objects.create(cart=cart, product=product, quantity=quantity)
    return cart


def place_order(buyer, *lines, address=None, payment_method="cash_on_delivery"):
    fill_cart(buyer, *lines)
    return OrderService.place_order(buyer, dict(address or ADDRESS), payment_method)


def advance(vendor, order, *statuses):
    """Walks the vendor's SubOrder through `statuses`, in order."""
    for status in statuses:
        VendorOrderService.update_status(vendor, order.pk, status)
    order.refresh_from_db()
    return order


class SignalRecorder:
    """Receiver that keeps the kwargs of every call."""

    def __init__(self, signal, testcase):
        self.calls = []
        signal.connect(self, dispatch_uid=f"recorder-{id(self)}")
        testcase.addCleanup(signal.disconnect, dispatch_uid=f"recorder-{id(self)}")

    def __call__(self, sender, **kwargs):
        self.calls.append(kwargs)

    @property
    def last(self):
        return self.calls[-1]
