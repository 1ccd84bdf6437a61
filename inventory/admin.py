"""
Django Admin configuration for inventory models.

Stock levels are read-only in the admin; movements cannot be added,
edited or deleted.
"""
from django.contrib import admin
from .models import Product, StockMovement


class StockMovementInline(admin.TabularInline):
    model = StockMovement
    extra = 0
    can_delete = False
    fields = ['movement_type', 'quantity', 'previous_quantity', 'new_quantity',
              'reference_type', 'reference_id', 'created_at']
    readonly_fields = fields
    ordering = ['-created_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'sku', 'category', 'price', 'stock_quantity',
                    'min_stock_level', 'is_low_stock', 'is_active']
    list_filter = ['category', 'is_active']
    search_fields = ['name', 'sku', 'barcode']
    ordering = ['name']
    readonly_fields = ['stock_quantity', 'created_at', 'updated_at']
    inlines = [StockMovementInline]

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ['id', 'product', 'movement_type', 'quantity', 'previous_quantity',
                    'new_quantity', 'reference_type', 'reference_id', 'created_at']
    list_filter = ['movement_type', 'reference_type', 'created_at']
    search_fields = ['product__name', 'reference_id']
    ordering = ['-created_at']
    raw_id_fields = ['product']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
