# apps/catalog/models.py
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils.text import slugify


class Product(models.Model):
    """
    Sellable item owned by one vendor.

    NOTE:
    - Orders only ever read this model (price, promo, active flags) and
      snapshot what they need; stock moves exclusively through
      apps.inventory.services.StockLedgerService.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='products',
        limit_choices_to={'role': 'VENDOR'},
    )

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=280, unique=True, blank=True, db_index=True)
    description = models.TextField(blank=True)

    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Regular unit price",
    )
    promo_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Promotional unit price, used only while on_promo is set",
    )
    on_promo = models.BooleanField(default=False)

    stock = models.IntegerField(default=0)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["vendor", "is_active"], name="product_vendor_active_idx"),
            models.Index(fields=["created_at"], name="product_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0),
                name='product_stock_non_negative'
            ),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.name) or "product"
            slug = base
            i = 1
            while Product.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base}-{i}"
                i += 1
            self.slug = slug
        super().save(*args, **kwargs)

    @property
    def active_promo_price(self):
        """
        Promo price only counts while the promo is on AND it actually
        undercuts the regular price. Otherwise None.
        """
        if self.on_promo and self.promo_price is not None and self.promo_price < self.price:
            return self.promo_price
        return None

    @property
    def effective_price(self) -> Decimal:
        promo = self.active_promo_price
        return promo if promo is not None else self.price
