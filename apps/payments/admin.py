from django.contrib import admin
from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('order', 'amount', 'status', 'method', 'reference', 'created_at')
    list_filter = ('status', 'method', 'created_at')
    search_fields = ('reference', 'order__number')
    readonly_fields = ('order', 'user', 'amount', 'method', 'status', 'reference', 'created_at')

    def has_add_permission(self, request):
        return False
