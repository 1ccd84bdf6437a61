"""
Customer Service Layer - Wishlist management and wishlist conversion.

Conversion Flow:
1. Lock the requested wishlist items that belong to the customer and are
   still pending or confirmed (SELECT FOR UPDATE, ordered by id)
2. For each item insert a Sale and mark the item converted
3. Optionally decrement stock through the ledger for each stocked item
4. Commit; any failure rolls the whole batch back
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Case, Count, IntegerField, Q, Sum, Value, When
from django.utils import timezone

from core.exceptions import (
    InputValidationError,
    NoEligibleItemsError,
    NotFoundError,
    TransactionFailure,
)
from inventory.models import StockMovement
from inventory.services import adjust_stock
from sales.models import Sale
from sales.services import compute_total
from .models import Customer, WishlistItem

logger = logging.getLogger(__name__)

CONVERSION_CATEGORY = 'Wishlist Conversion'


@dataclass
class ConversionResult:
    sales: List[Sale] = field(default_factory=list)
    converted_count: int = 0

    @property
    def sale_ids(self) -> List[int]:
        return [sale.id for sale in self.sales]


def get_customer(customer_id: int) -> Customer:
    try:
        return Customer.objects.get(pk=customer_id)
    except Customer.DoesNotExist:
        raise NotFoundError(f"Customer {customer_id} not found")


def _parse_ids(wishlist_ids: Iterable) -> List[int]:
    if isinstance(wishlist_ids, (str, bytes)) or not wishlist_ids:
        raise InputValidationError("wishlistIds must be a non-empty array")
    try:
        ids = [int(value) for value in wishlist_ids]
    except (TypeError, ValueError):
        raise InputValidationError("wishlistIds must contain integers")
    return ids


def convert_wishlist(
    customer_id: int,
    wishlist_ids: Iterable,
    *,
    decrement_stock: Optional[bool] = None,
) -> ConversionResult:
    """
    Convert wishlist items into sales as one all-or-nothing batch.

    Args:
        customer_id: Owner of the wishlist items
        wishlist_ids: Requested item IDs; items of other customers and
            items already cancelled or converted are skipped
        decrement_stock: Also record an 'out' movement per stocked item.
            Defaults to settings.WISHLIST_CONVERSION_DECREMENTS_STOCK.

    Returns:
        ConversionResult with the created sales

    Raises:
        InputValidationError: wishlist_ids empty or not integers, or an
            eligible item has no unit price (nothing is converted)
        NoEligibleItemsError: None of the requested items qualify
        InsufficientStockError: A decrement failed (batch rolled back)
        TransactionFailure: The batch could not be committed
    """
    ids = _parse_ids(wishlist_ids)
    if decrement_stock is None:
        decrement_stock = settings.WISHLIST_CONVERSION_DECREMENTS_STOCK

    try:
        with transaction.atomic():
            items = list(
                WishlistItem.objects.select_for_update()
                .filter(
                    id__in=ids,
                    customer_id=customer_id,
                    status__in=WishlistItem.CONVERTIBLE,
                )
                .order_by('id')
            )
            if not items:
                raise NoEligibleItemsError()
            unpriced = [item.id for item in items if item.unit_price <= 0]
            if unpriced:
                raise InputValidationError(
                    f"Wishlist items {unpriced} have no unit price and cannot become sales"
                )

            result = ConversionResult()
            sale_date = timezone.localdate()
            for item in items:
                sale = Sale.objects.create(
                    date=sale_date,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    category=CONVERSION_CATEGORY,
                    price=item.unit_price,
                    quantity=item.quantity,
                    total_price=compute_total(item.unit_price, item.quantity),
                    customer_id=customer_id,
                    notes=f"Converted from wishlist item #{item.id}",
                )
                if decrement_stock and item.product_id:
                    adjust_stock(
                        item.product_id,
                        item.quantity,
                        StockMovement.MovementType.OUT,
                        reference=('wishlist_conversion', item.id),
                        notes=f"Sale {sale.sale_number}",
                    )
                item.status = WishlistItem.Status.CONVERTED
                item.save(update_fields=['status', 'updated_at'])
                result.sales.append(sale)

            result.converted_count = len(items)
    except DatabaseError as e:
        logger.exception(f"Wishlist conversion for customer {customer_id} rolled back: {e}")
        raise TransactionFailure("Failed to convert wishlist to sale") from e

    logger.info(
        f"Converted {result.converted_count} wishlist items for customer {customer_id} "
        f"into sales {result.sale_ids}"
    )
    return result


def add_wishlist_item(customer: Customer, **fields) -> WishlistItem:
    """New items always start pending or confirmed."""
    status = fields.get('status') or WishlistItem.Status.PENDING
    if status not in (WishlistItem.Status.PENDING, WishlistItem.Status.CONFIRMED):
        raise InputValidationError("New wishlist items must be pending or confirmed")
    fields['status'] = status

    item = WishlistItem.objects.create(customer=customer, **fields)
    logger.info(f"Added wishlist item #{item.id} for customer {customer.id}")
    return item


def update_wishlist_item(item: WishlistItem, **fields) -> WishlistItem:
    """
    Update a wishlist item through the edit endpoints.

    Raises:
        InputValidationError: Nothing to update, a forbidden status
            transition, or an edit of a converted or cancelled item
        NotFoundError: The item was deleted meanwhile
    """
    if not fields:
        raise InputValidationError("No fields to update")

    with transaction.atomic():
        # Checks run against the committed row, never a copy loaded before
        # a conversion or cancellation
        try:
            current = WishlistItem.objects.select_for_update().get(pk=item.pk)
        except WishlistItem.DoesNotExist:
            raise NotFoundError(f"Wishlist item {item.pk} not found")

        status = fields.get('status')
        if status is not None and not current.can_transition_to(status):
            raise InputValidationError(
                f"Cannot change wishlist item status from {current.status} to {status}"
            )
        if not current.is_convertible and set(fields) - {'status', 'notes'}:
            raise InputValidationError(f"A {current.status} wishlist item can no longer be edited")

        for name, value in fields.items():
            setattr(current, name, value)
        current.save(update_fields=[*fields.keys(), 'updated_at'])

    logger.info(f"Updated wishlist item #{current.id}")
    return current


def delete_wishlist_item(item: WishlistItem) -> None:
    logger.info(f"Deleting wishlist item #{item.id}")
    item.delete()


def wishlist_stats(customer_id: int) -> Dict:
    """Counts per status plus value (excluding cancelled) and quantity."""
    Status = WishlistItem.Status
    stats = WishlistItem.objects.filter(customer_id=customer_id).aggregate(
        total_items=Count('id'),
        pending_items=Count('id', filter=Q(status=Status.PENDING)),
        confirmed_items=Count('id', filter=Q(status=Status.CONFIRMED)),
        cancelled_items=Count('id', filter=Q(status=Status.CANCELLED)),
        converted_items=Count('id', filter=Q(status=Status.CONVERTED)),
        total_value=Sum('total_price', filter=~Q(status=Status.CANCELLED)),
        total_quantity=Sum('quantity'),
    )
    stats['total_value'] = stats['total_value'] or Decimal('0.00')
    stats['total_quantity'] = stats['total_quantity'] or 0
    return stats


def ordered_wishlist(customer_id: int):
    """Open items first, then by priority (urgent first), newest first."""
    Status, Priority = WishlistItem.Status, WishlistItem.Priority
    status_rank = Case(
        *[When(status=value, then=Value(rank)) for rank, value in enumerate(
            [Status.PENDING, Status.CONFIRMED, Status.CANCELLED, Status.CONVERTED]
        )],
        output_field=IntegerField(),
    )
    priority_rank = Case(
        *[When(priority=value, then=Value(rank)) for rank, value in enumerate(
            [Priority.URGENT, Priority.HIGH, Priority.MEDIUM, Priority.LOW]
        )],
        output_field=IntegerField(),
    )
    return (
        WishlistItem.objects.filter(customer_id=customer_id)
        .annotate(status_rank=status_rank, priority_rank=priority_rank)
        .order_by('status_rank', 'priority_rank', '-created_at')
    )
