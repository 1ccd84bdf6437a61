"""
Serializers for sale models.

Input validation and total computation live in sales.services so the same
rules apply to the API, the reconciliation job and wishlist conversion;
these serializers only shape responses.
"""
from rest_framework import serializers

from .models import Sale


class SaleSerializer(serializers.ModelSerializer):
    """Full sale representation including integration state."""
    productName = serializers.CharField(source='product_name', read_only=True)
    customer_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Sale
        fields = [
            'id', 'sale_number', 'date', 'product_id', 'productName', 'category',
            'price', 'quantity', 'discount', 'tax_amount', 'total_price',
            'payment_method', 'customer_id', 'notes',
            'integration_status', 'integration_warning', 'integration_failure_kind',
            'integration_attempts', 'integration_new_stock', 'integration_updated_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class SaleListSerializer(serializers.ModelSerializer):
    """Compact representation for listings."""
    productName = serializers.CharField(source='product_name', read_only=True)

    class Meta:
        model = Sale
        fields = [
            'id', 'sale_number', 'date', 'productName', 'category',
            'quantity', 'total_price', 'payment_method', 'integration_status',
        ]


class SaleCreateResponseSerializer(SaleSerializer):
    """
    Response for POST /sales/

    Exactly one of inventory_integration / integration_warning is set when
    integration was requested, so the caller always knows whether stock moved.
    """

    def __init__(self, instance=None, inventory_update=None, warning=None, **kwargs):
        self.inventory_update = inventory_update
        self.warning = warning
        super().__init__(instance, **kwargs)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if self.inventory_update is not None:
            data['inventory_integration'] = self.inventory_update
        if self.warning:
            data['integration_warning'] = self.warning
        return data
