"""
Django Admin configuration for sale models.
"""
from django.contrib import admin
from .models import Sale


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    list_display = ['id', 'sale_number', 'date', 'product_name', 'quantity',
                    'total_price', 'integration_status', 'integration_attempts']
    list_filter = ['integration_status', 'integration_failure_kind', 'payment_method',
                   'category', 'date']
    search_fields = ['sale_number', 'product_name', 'notes']
    ordering = ['-created_at']
    raw_id_fields = ['customer']
    readonly_fields = ['sale_number', 'total_price', 'integration_status', 'integration_warning',
                       'integration_failure_kind', 'integration_attempts',
                       'integration_previous_stock', 'integration_new_stock',
                       'integration_updated_at', 'created_at', 'updated_at']
