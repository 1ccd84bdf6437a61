"""
Django Admin configuration for customer models.
"""
from django.contrib import admin
from .models import Customer, WishlistItem


class WishlistItemInline(admin.TabularInline):
    model = WishlistItem
    extra = 0
    fields = ['product', 'product_name', 'quantity', 'unit_price', 'total_price', 'status', 'priority']
    readonly_fields = ['total_price']
    raw_id_fields = ['product']


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'email', 'phone', 'customer_type', 'is_active', 'created_at']
    list_filter = ['customer_type', 'is_active']
    search_fields = ['name', 'email', 'phone']
    ordering = ['name']
    inlines = [WishlistItemInline]


@admin.register(WishlistItem)
class WishlistItemAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer', 'product_name', 'quantity', 'unit_price',
                    'total_price', 'status', 'priority', 'created_at']
    list_filter = ['status', 'priority']
    search_fields = ['product_name', 'customer__name']
    raw_id_fields = ['customer', 'product']
    readonly_fields = ['total_price', 'created_at', 'updated_at']
