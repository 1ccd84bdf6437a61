"""
Serializers for inventory models.

stock_quantity is read-only everywhere; stock only moves through the
ledger endpoints.
"""
from rest_framework import serializers

from .models import Product, StockMovement


class ProductSerializer(serializers.ModelSerializer):
    """Full product representation; stock fields are read-only."""
    is_available = serializers.BooleanField(read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'description', 'sku', 'barcode', 'category',
            'price', 'cost', 'stock_quantity', 'min_stock_level',
            'max_stock_level', 'unit', 'is_active',
            'is_available', 'is_low_stock',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'stock_quantity', 'created_at', 'updated_at']
        extra_kwargs = {
            # Uniqueness is checked by the service so it can answer 409
            'sku': {'validators': []},
            'barcode': {'validators': []},
        }

    def validate(self, attrs):
        minimum = attrs.get('min_stock_level', getattr(self.instance, 'min_stock_level', 0))
        maximum = attrs.get('max_stock_level', getattr(self.instance, 'max_stock_level', None))
        if maximum is not None and minimum > maximum:
            raise serializers.ValidationError(
                "min_stock_level cannot be greater than max_stock_level"
            )
        return attrs


class ProductCreateSerializer(ProductSerializer):
    """Accepts an opening stock level, recorded as the first movement."""
    stock_quantity = serializers.IntegerField(min_value=0, required=False, default=0)

    class Meta(ProductSerializer.Meta):
        read_only_fields = ['id', 'created_at', 'updated_at']


class ReferenceSerializer(serializers.Serializer):
    type = serializers.CharField(max_length=50)
    id = serializers.CharField(max_length=64, required=False, allow_null=True)


class StockUpdateSerializer(serializers.Serializer):
    """
    Request body for PUT /products/{id}/stock/

    For movement_type 'adjustment', quantity is the new absolute level.
    """
    quantity = serializers.IntegerField(min_value=0)
    movement_type = serializers.ChoiceField(choices=StockMovement.MovementType.choices)
    reference = ReferenceSerializer(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['movement_type'] != StockMovement.MovementType.ADJUSTMENT and attrs['quantity'] <= 0:
            raise serializers.ValidationError(
                {'quantity': 'Quantity must be positive for in/out movements'}
            )
        return attrs


class IntegrationStockUpdateSerializer(serializers.Serializer):
    """Request body for POST /integration/products/{id}/update-stock/"""
    OPERATIONS = {
        'subtract': StockMovement.MovementType.OUT,
        'add': StockMovement.MovementType.IN,
    }

    quantity = serializers.IntegerField(min_value=1)
    operation = serializers.ChoiceField(choices=list(OPERATIONS))
    reference = ReferenceSerializer(required=False, allow_null=True)

    @property
    def movement_type(self):
        return self.OPERATIONS[self.validated_data['operation']]


class StockMovementSerializer(serializers.ModelSerializer):
    net_change = serializers.IntegerField(read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            'id', 'product', 'movement_type', 'quantity',
            'previous_quantity', 'new_quantity', 'net_change',
            'reference_type', 'reference_id', 'notes', 'created_at',
        ]
        read_only_fields = fields


class IntegrationProductSerializer(serializers.ModelSerializer):
    """Canonical product snapshot returned to the sales service."""
    selling_price = serializers.DecimalField(source='price', max_digits=10, decimal_places=2, read_only=True)
    remaining_stock = serializers.IntegerField(source='stock_quantity', read_only=True)
    is_available = serializers.BooleanField(read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'description', 'category', 'price', 'selling_price',
            'stock_quantity', 'remaining_stock', 'min_stock_level', 'unit',
            'sku', 'barcode', 'is_active', 'is_available', 'is_low_stock',
        ]


class LowStockProductSerializer(serializers.ModelSerializer):
    current_stock = serializers.IntegerField(source='stock_quantity', read_only=True)
    selling_price = serializers.DecimalField(source='price', max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'category', 'current_stock', 'stock_quantity',
            'min_stock_level', 'selling_price', 'unit',
        ]
