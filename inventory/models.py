"""
Inventory Models - Stock ledger entities.

Models:
    - Product: Items held in stock; owns the authoritative stock_quantity
    - StockMovement: Append-only audit trail, one row per ledger mutation

stock_quantity is never assigned from client input. It only changes through
inventory.services, which writes the quantity and its movement together.
"""
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class Product(models.Model):
    """
    Product entity with its current stock level and thresholds.
    """
    name = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Product name for display and search"
    )
    description = models.TextField(blank=True, default='')
    sku = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Stock keeping unit (unique when set)"
    )
    barcode = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text="Barcode (unique when set)"
    )
    category = models.CharField(max_length=100, db_index=True, default='General')
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Selling price"
    )
    cost = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Purchase cost"
    )
    stock_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Current stock quantity (ledger-managed)"
    )
    min_stock_level = models.PositiveIntegerField(
        default=5,
        help_text="Low stock threshold (inclusive)"
    )
    max_stock_level = models.PositiveIntegerField(default=100)
    unit = models.CharField(max_length=50, default='unit')
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for sale"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'products'
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock_quantity__gte=0),
                name='product_stock_quantity_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['name', 'is_active']),
            models.Index(fields=['stock_quantity']),
        ]

    def __str__(self):
        return f"{self.name} ({self.stock_quantity} {self.unit})"

    @property
    def is_available(self) -> bool:
        return self.stock_quantity > 0

    @property
    def is_low_stock(self) -> bool:
        """Stock at or below the minimum level."""
        return self.stock_quantity <= self.min_stock_level


class StockMovementQuerySet(models.QuerySet):
    """Bulk mutation is refused so the audit trail stays append-only."""

    def update(self, **kwargs):
        raise ValidationError("StockMovement records are immutable")

    def delete(self):
        raise ValidationError("StockMovement records are immutable and cannot be deleted")


class StockMovement(models.Model):
    """
    Immutable ledger entry.

    quantity means a delta for IN and OUT, and the absolute target level for
    ADJUSTMENT. previous_quantity/new_quantity are always recorded so the
    net effect of any row is new_quantity - previous_quantity.
    """

    class MovementType(models.TextChoices):
        IN = 'in', 'Stock In'
        OUT = 'out', 'Stock Out'
        ADJUSTMENT = 'adjustment', 'Adjustment'

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='stock_movements',
    )
    movement_type = models.CharField(
        max_length=20,
        choices=MovementType.choices,
        db_index=True,
    )
    quantity = models.PositiveIntegerField()
    previous_quantity = models.PositiveIntegerField()
    new_quantity = models.PositiveIntegerField()
    reference_type = models.CharField(max_length=50, blank=True, default='')
    reference_id = models.CharField(max_length=64, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = StockMovementQuerySet.as_manager()

    class Meta:
        db_table = 'stock_movements'
        verbose_name = 'Stock Movement'
        verbose_name_plural = 'Stock Movements'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['product', 'created_at']),
            models.Index(fields=['reference_type', 'reference_id']),
        ]
        constraints = [
            # One movement per referenced event; adjust_stock_once relies on it
            models.UniqueConstraint(
                fields=['product', 'movement_type', 'reference_type', 'reference_id'],
                condition=~models.Q(reference_type='') & ~models.Q(reference_id=''),
                name='stock_movement_unique_reference',
            ),
        ]

    def __str__(self):
        return f"{self.product_id} | {self.movement_type} | {self.quantity}"

    @property
    def net_change(self) -> int:
        return self.new_quantity - self.previous_quantity

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("StockMovement records are immutable")
        if self.movement_type != self.MovementType.ADJUSTMENT and self.quantity <= 0:
            raise ValidationError("quantity must be greater than zero")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("StockMovement records are immutable and cannot be deleted")
