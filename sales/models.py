"""
Sale Models - Sale records and their inventory integration status.

Integration Status Flow:
    NOT_REQUESTED (no inventory call asked for)
    PENDING (decrement requested; stored with the sale before the call is made)
    PENDING -> SUCCEEDED (remote decrement applied; integration_new_stock holds the snapshot)
    PENDING -> FAILED_WARNING (sale kept; decrement failed and awaits reconciliation)
    FAILED_WARNING -> SUCCEEDED (after a successful retry)

A sale left PENDING (the process died before recording the outcome) is
picked up by the reconciliation sweep once it is older than
INTEGRATION_PENDING_GRACE seconds.
"""
import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


def generate_sale_number() -> str:
    return f"SALE-{timezone.now():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8].upper()}"


class Sale(models.Model):
    """
    A single-line sale.

    product_id is a plain integer, not a foreign key: a sale may name an item
    from another catalog that this inventory does not hold.
    """

    class PaymentMethod(models.TextChoices):
        CASH = 'cash', 'Cash'
        CREDIT = 'credit', 'Credit'
        CHECK = 'check', 'Check'
        BANK_TRANSFER = 'bank_transfer', 'Bank Transfer'

    class IntegrationStatus(models.TextChoices):
        NOT_REQUESTED = 'not_requested', 'Not Requested'
        PENDING = 'pending', 'Pending'
        SUCCEEDED = 'succeeded', 'Succeeded'
        FAILED_WARNING = 'failed_warning', 'Failed (warning)'

    class FailureKind(models.TextChoices):
        CONNECTION = 'connection', 'Connection'
        APPLICATION = 'application', 'Application'
        SERVER = 'server', 'Server'

    sale_number = models.CharField(
        max_length=100,
        unique=True,
        default=generate_sale_number,
        editable=False,
    )
    date = models.DateField(db_index=True)
    product_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    product_name = models.CharField(max_length=255, db_index=True)
    category = models.CharField(max_length=100, db_index=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    discount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CASH,
    )
    customer = models.ForeignKey(
        'customers.Customer',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sales',
    )
    notes = models.TextField(blank=True, default='')

    integration_status = models.CharField(
        max_length=20,
        choices=IntegrationStatus.choices,
        default=IntegrationStatus.NOT_REQUESTED,
        db_index=True,
    )
    integration_warning = models.TextField(blank=True, default='')
    integration_failure_kind = models.CharField(
        max_length=20,
        choices=FailureKind.choices,
        blank=True,
        default='',
    )
    integration_attempts = models.PositiveIntegerField(default=0)
    integration_previous_stock = models.IntegerField(null=True, blank=True)
    integration_new_stock = models.IntegerField(null=True, blank=True)
    integration_updated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sales'
        verbose_name = 'Sale'
        verbose_name_plural = 'Sales'
        ordering = ['-date', '-created_at']
        indexes = [
            models.Index(fields=['integration_status', 'integration_failure_kind']),
            models.Index(fields=['customer', 'date']),
        ]

    def __str__(self):
        return f"{self.sale_number} - {self.quantity}x {self.product_name}"

    @property
    def needs_reconciliation(self) -> bool:
        if self.integration_status == self.IntegrationStatus.PENDING:
            return True
        return (
            self.integration_status == self.IntegrationStatus.FAILED_WARNING
            and self.integration_failure_kind != self.FailureKind.APPLICATION
        )
