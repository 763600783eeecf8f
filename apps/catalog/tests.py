# apps/catalog/tests.py
from decimal import Decimal

from django.db import IntegrityError
from django.test import TestCase

from apps.orders.testing import make_vendor

from .models import Product


class ProductModelTests(TestCase):
    def setUp(self):
        self.vendor = make_vendor()

    def test_slug_auto_generated_and_unique(self):
        p1 = Product.objects.create(vendor=self.vendor, name="Pink Pepper", price=Decimal("3.00"))
        p2 = Product.objects.create(vendor=self.vendor, name="Pink Pepper", price=Decimal("3.00"))

        self.assertEqual(p1.slug, "pink-pepper")
        self.assertNotEqual(p1.slug, p2.slug)
        self.assertTrue(p2.slug.startswith("pink-pepper"))

    def test_promo_price_rules(self):
        product = Product(vendor=self.vendor, name="Vanilla", price=Decimal("10.00"), promo_price=Decimal("8.00"))
        self.assertIsNone(product.active_promo_price)
        self.assertEqual(product.effective_price, Decimal("10.00"))

        product.on_promo = True
        self.assertEqual(product.active_promo_price, Decimal("8.00"))
        self.assertEqual(product.effective_price, Decimal("8.00"))

        # A "promo" that is not cheaper is ignored
        product.promo_price = Decimal("10.00")
        self.assertIsNone(product.active_promo_price)

    def test_stock_cannot_be_negative(self):
        with self.assertRaises(IntegrityError):
            Product.objects.create(vendor=self.vendor, name="Broken", price=Decimal("1.00"), stock=-1)
