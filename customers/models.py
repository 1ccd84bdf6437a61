"""
Customer Models - Customers and their wishlists.

Wishlist Status Flow:
    PENDING -> CONFIRMED (customer confirmed the request)
    PENDING | CONFIRMED -> CANCELLED (terminal)
    PENDING | CONFIRMED -> CONVERTED (terminal, only through wishlist conversion)
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from inventory.models import Product


class Customer(models.Model):
    """Customer entity that sales and wishlist items can point at."""

    class CustomerType(models.TextChoices):
        INDIVIDUAL = 'individual', 'Individual'
        BUSINESS = 'business', 'Business'

    name = models.CharField(max_length=255, db_index=True)
    email = models.EmailField(unique=True, null=True, blank=True)
    phone = models.CharField(max_length=50, blank=True, default='')
    address = models.TextField(blank=True, default='')
    customer_type = models.CharField(
        max_length=20,
        choices=CustomerType.choices,
        default=CustomerType.INDIVIDUAL,
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'customers'
        verbose_name = 'Customer'
        verbose_name_plural = 'Customers'
        ordering = ['name']

    def __str__(self):
        return self.name


class WishlistItem(models.Model):
    """
    A product a customer would like to buy later.

    total_price is derived from quantity and unit_price on every save.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        CONVERTED = 'converted', 'Converted'
        CANCELLED = 'cancelled', 'Cancelled'

    class Priority(models.TextChoices):
        LOW = 'low', 'Low'
        MEDIUM = 'medium', 'Medium'
        HIGH = 'high', 'High'
        URGENT = 'urgent', 'Urgent'

    # Transitions allowed through the edit endpoints
    TRANSITIONS = {
        Status.PENDING: {Status.CONFIRMED, Status.CANCELLED},
        Status.CONFIRMED: {Status.CANCELLED},
        Status.CONVERTED: set(),
        Status.CANCELLED: set(),
    }
    CONVERTIBLE = (Status.PENDING, Status.CONFIRMED)

    customer = models.ForeignKey(
        Customer,
        on_delete=models.CASCADE,
        related_name='wishlist_items',
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='wishlist_items',
        help_text="Inventory product, if the item is stocked"
    )
    product_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    priority = models.CharField(
        max_length=10,
        choices=Priority.choices,
        default=Priority.MEDIUM,
    )
    notes = models.TextField(blank=True, default='')
    requested_date = models.DateField(null=True, blank=True)
    estimated_delivery_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'customer_wishlist'
        verbose_name = 'Wishlist Item'
        verbose_name_plural = 'Wishlist Items'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['customer', 'status']),
        ]

    def __str__(self):
        return f"{self.customer_id}: {self.quantity}x {self.product_name} ({self.status})"

    def save(self, *args, **kwargs):
        self.total_price = (Decimal(self.unit_price) * self.quantity).quantize(Decimal('0.01'))
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and {'quantity', 'unit_price'} & set(update_fields):
            kwargs['update_fields'] = {*update_fields, 'total_price'}
        super().save(*args, **kwargs)

    def can_transition_to(self, status: str) -> bool:
        return status == self.status or status in self.TRANSITIONS[self.status]

    @property
    def is_convertible(self) -> bool:
        return self.status in self.CONVERTIBLE
