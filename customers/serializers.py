"""
Serializers for customer and wishlist models.
"""
from decimal import Decimal

from rest_framework import serializers

from inventory.models import Product
from .models import Customer, WishlistItem


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = [
            'id', 'name', 'email', 'phone', 'address', 'customer_type',
            'is_active', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']


class WishlistItemSerializer(serializers.ModelSerializer):
    """
    Wishlist item representation.

    status is accepted here but transitions are checked in
    customers.services.update_wishlist_item.
    """
    product_id = serializers.PrimaryKeyRelatedField(
        source='product',
        queryset=Product.objects.all(),
        required=False,
        allow_null=True,
    )
    customer_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = WishlistItem
        fields = [
            'id', 'customer_id', 'product_id', 'product_name', 'quantity',
            'unit_price', 'total_price', 'status', 'priority', 'notes',
            'requested_date', 'estimated_delivery_date', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'customer_id', 'total_price', 'created_at', 'updated_at']
        extra_kwargs = {
            'quantity': {'min_value': 1},
            'unit_price': {'min_value': Decimal('0.01')},
        }


class WishlistConvertSerializer(serializers.Serializer):
    """Request body for POST /customers/{id}/wishlist/convert/"""
    wishlistIds = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
