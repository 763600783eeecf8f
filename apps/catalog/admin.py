# apps/catalog/admin.py
from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "vendor",
        "price",
        "promo_price",
        "on_promo",
        "stock",
        "is_active",
    )
    search_fields = ("name", "slug", "vendor__email")
    list_filter = ("is_active", "on_promo")
    list_editable = ("price", "promo_price", "on_promo", "is_active")
    # Stock is ledger-managed, never edited by hand here
    readonly_fields = ("stock", "created_at", "updated_at")
