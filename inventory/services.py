"""
Stock Ledger Service Layer - the only writer of Product.stock_quantity.

Every mutation runs inside one transaction that both changes the quantity
and appends a StockMovement row, so either both land or neither does.

Concurrency:
    - OUT is a single conditional UPDATE
      (stock_quantity = stock_quantity - q WHERE stock_quantity >= q),
      evaluated by the database against the current row. Two concurrent
      decrements can never both pass a check that only one can satisfy.
    - IN is a single F() increment.
    - ADJUSTMENT sets an absolute level and locks the row with
      select_for_update() to capture the previous value.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import (
    ConflictError,
    DuplicateReferenceError,
    InputValidationError,
    InsufficientStockError,
    NotFoundError,
)
from .models import Product, StockMovement

logger = logging.getLogger(__name__)

MovementType = StockMovement.MovementType

Reference = Union[Tuple[str, object], Dict, None]


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    movement_type: str
    previous_quantity: int
    new_quantity: int
    movement: StockMovement
    replayed: bool = False

    def as_dict(self) -> Dict:
        return {
            'previous_quantity': self.previous_quantity,
            'new_quantity': self.new_quantity,
        }


@dataclass
class LedgerReconciliation:
    """Result of replaying a product's movements against its stock level."""
    product_id: int
    stock_quantity: int
    total_in: int = 0
    total_out: int = 0
    net_adjustments: int = 0
    movement_count: int = 0

    @property
    def ledger_quantity(self) -> int:
        return self.total_in - self.total_out + self.net_adjustments

    @property
    def drift(self) -> int:
        return self.stock_quantity - self.ledger_quantity

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


@dataclass
class ReconciliationReport:
    checked: int = 0
    inconsistent: List[LedgerReconciliation] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.inconsistent


def _parse_quantity(value, movement_type: str) -> int:
    if value is None or value == '' or isinstance(value, bool):
        raise InputValidationError("quantity is required and must be an integer")
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise InputValidationError("quantity must be an integer")
    if quantity != value and not isinstance(value, str):
        # Reject 2.5 and the like instead of truncating
        raise InputValidationError("quantity must be an integer")

    if movement_type == MovementType.ADJUSTMENT:
        if quantity < 0:
            raise InputValidationError("adjustment quantity must be zero or greater")
    elif quantity <= 0:
        raise InputValidationError("Quantity must be positive for in/out movements")
    return quantity


def _parse_reference(reference: Reference) -> Tuple[str, str]:
    if not reference:
        return '', ''
    if isinstance(reference, dict):
        ref_type, ref_id = reference.get('type'), reference.get('id')
    else:
        ref_type, ref_id = reference
    return str(ref_type or '')[:50], '' if ref_id is None else str(ref_id)[:64]


def adjust_stock(
    product_id: int,
    quantity,
    movement_type: str,
    reference: Reference = None,
    notes: str = '',
) -> StockAdjustment:
    """
    Apply one ledger movement to a product.

    Args:
        product_id: Product to adjust
        quantity: Units moved for 'in'/'out' (> 0); for 'adjustment' the
            NEW ABSOLUTE stock level (>= 0), not a delta
        movement_type: 'in', 'out' or 'adjustment'
        reference: (type, id) tuple or {'type': ..., 'id': ...} linking the
            movement to the sale, purchase order or conversion behind it

    Returns:
        StockAdjustment with previous and new quantities

    Raises:
        InputValidationError: Bad movement type or quantity
        NotFoundError: Product does not exist
        InsufficientStockError: An 'out' would drive stock below zero
        DuplicateReferenceError: The same product, movement type and
            reference is already recorded (nothing is applied)
    """
    if movement_type not in MovementType.values:
        raise InputValidationError(
            "Invalid movement_type. Must be: in, out, or adjustment"
        )
    quantity = _parse_quantity(quantity, movement_type)
    ref_type, ref_id = _parse_reference(reference)

    try:
        with transaction.atomic():
            previous_quantity, new_quantity, movement = _apply_movement(
                product_id, quantity, movement_type, ref_type, ref_id, notes
            )
    except IntegrityError as e:
        if not (ref_type and ref_id):
            raise
        logger.warning(
            f"Duplicate stock {movement_type} for product {product_id} ({ref_type} {ref_id})"
        )
        raise DuplicateReferenceError(
            f"Stock {movement_type} for {ref_type} {ref_id} is already recorded"
        ) from e

    logger.info(
        f"Stock {movement_type} for product {product_id}: "
        f"{previous_quantity} -> {new_quantity}"
        + (f" ({ref_type} {ref_id})" if ref_type else "")
    )
    return StockAdjustment(
        product_id=product_id,
        movement_type=movement_type,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        movement=movement,
    )


def _apply_movement(product_id, quantity, movement_type, ref_type, ref_id, notes):
    """Quantity change plus movement insert; caller owns the transaction."""
    products = Product.objects.filter(pk=product_id)
    now = timezone.now()

    if movement_type == MovementType.OUT:
        updated = products.filter(stock_quantity__gte=quantity).update(
            stock_quantity=F('stock_quantity') - quantity,
            updated_at=now,
        )
        if not updated:
            available = products.values_list('stock_quantity', flat=True).first()
            if available is None:
                raise NotFoundError(f"Product {product_id} not found")
            logger.warning(
                f"Rejected stock out for product {product_id}: "
                f"requested {quantity}, available {available}"
            )
            raise InsufficientStockError(product_id, quantity, available)
        new_quantity = products.values_list('stock_quantity', flat=True).get()
        previous_quantity = new_quantity + quantity

    elif movement_type == MovementType.IN:
        updated = products.update(
            stock_quantity=F('stock_quantity') + quantity,
            updated_at=now,
        )
        if not updated:
            raise NotFoundError(f"Product {product_id} not found")
        new_quantity = products.values_list('stock_quantity', flat=True).get()
        previous_quantity = new_quantity - quantity

    else:
        try:
            product = products.select_for_update().get()
        except Product.DoesNotExist:
            raise NotFoundError(f"Product {product_id} not found")
        previous_quantity = product.stock_quantity
        new_quantity = quantity
        products.update(stock_quantity=new_quantity, updated_at=now)

    movement = StockMovement.objects.create(
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        reference_type=ref_type,
        reference_id=ref_id,
        notes=notes or '',
    )

    return previous_quantity, new_quantity, movement


def adjust_stock_once(
    product_id: int,
    quantity,
    movement_type: str,
    reference: Reference,
    notes: str = '',
) -> StockAdjustment:
    """
    adjust_stock, idempotent on reference.

    A repeated request carrying the same (type, id) reference for the same
    product and movement type returns the movement already recorded instead
    of applying it twice. Used by the integration endpoint, whose callers
    retry after timeouts.
    """
    ref_type, ref_id = _parse_reference(reference)
    if not (ref_type and ref_id):
        return adjust_stock(product_id, quantity, movement_type, reference=reference, notes=notes)

    existing = _find_referenced_movement(product_id, movement_type, ref_type, ref_id)
    if existing is None:
        try:
            return adjust_stock(product_id, quantity, movement_type, reference=reference, notes=notes)
        except DuplicateReferenceError:
            # A concurrent request with the same reference committed first
            existing = _find_referenced_movement(product_id, movement_type, ref_type, ref_id)
            if existing is None:
                raise

    logger.info(f"Replayed stock {movement_type} for product {product_id} ({ref_type} {ref_id})")
    return StockAdjustment(
        product_id=product_id,
        movement_type=movement_type,
        previous_quantity=existing.previous_quantity,
        new_quantity=existing.new_quantity,
        movement=existing,
        replayed=True,
    )


def _find_referenced_movement(product_id, movement_type, ref_type, ref_id) -> Optional[StockMovement]:
    return StockMovement.objects.filter(
        product_id=product_id,
        movement_type=movement_type,
        reference_type=ref_type,
        reference_id=ref_id,
    ).first()


def get_availability(product_id: int) -> Dict:
    """
    Current availability of a product, read from the committed row.

    Raises:
        NotFoundError: Product does not exist
    """
    try:
        product = Product.objects.get(pk=product_id)
    except Product.DoesNotExist:
        raise NotFoundError(f"Product {product_id} not found")

    return {
        'product_id': product.id,
        'product_name': product.name,
        'current_stock': product.stock_quantity,
        'min_stock_level': product.min_stock_level,
        'selling_price': str(product.price),
        'is_available': product.is_available,
        'is_low_stock': product.is_low_stock,
        'is_active': product.is_active,
    }


def low_stock_products():
    """Active products at or below their minimum stock level."""
    return Product.objects.filter(
        is_active=True,
        stock_quantity__lte=F('min_stock_level'),
    ).order_by('stock_quantity', 'name')


def _check_identifiers(sku, barcode, exclude_pk=None):
    for field_name, value in (('sku', sku), ('barcode', barcode)):
        if not value:
            continue
        clash = Product.objects.filter(**{field_name: value})
        if exclude_pk is not None:
            clash = clash.exclude(pk=exclude_pk)
        if clash.exists():
            raise ConflictError(f"A product with {field_name} '{value}' already exists")


def create_product(stock_quantity: int = 0, **fields) -> Product:
    """
    Create a product and record its opening stock as an 'in' movement.

    Raises:
        ConflictError: Duplicate SKU or barcode
    """
    fields['sku'] = fields.get('sku') or None
    fields['barcode'] = fields.get('barcode') or None
    _check_identifiers(fields['sku'], fields['barcode'])
    opening = int(stock_quantity or 0)
    if opening < 0:
        raise InputValidationError("stock_quantity cannot be negative")

    try:
        with transaction.atomic():
            product = Product.objects.create(**fields)
            if opening:
                adjust_stock(
                    product.id, opening, MovementType.IN,
                    reference=('opening_balance', product.id),
                    notes='Opening stock',
                )
                product.refresh_from_db(fields=['stock_quantity', 'updated_at'])
    except IntegrityError as e:
        raise ConflictError(f"Product could not be created: {e}") from e

    logger.info(f"Created product #{product.id} '{product.name}' with stock {opening}")
    return product


def update_product(product: Product, **fields) -> Product:
    """Update descriptive fields. stock_quantity is ignored here."""
    fields.pop('stock_quantity', None)
    if 'sku' in fields:
        fields['sku'] = fields['sku'] or None
    if 'barcode' in fields:
        fields['barcode'] = fields['barcode'] or None
    _check_identifiers(fields.get('sku'), fields.get('barcode'), exclude_pk=product.pk)

    for name, value in fields.items():
        setattr(product, name, value)
    try:
        product.save(update_fields=[*fields.keys(), 'updated_at'])
    except IntegrityError as e:
        raise ConflictError(f"Product could not be updated: {e}") from e
    return product


def reconcile_product(product: Product) -> LedgerReconciliation:
    """Replay a product's movements and compare with its stock_quantity."""
    result = LedgerReconciliation(product_id=product.id, stock_quantity=product.stock_quantity)
    rows = StockMovement.objects.filter(product_id=product.id).values_list(
        'movement_type', 'quantity', 'previous_quantity', 'new_quantity'
    )
    for movement_type, quantity, previous_quantity, new_quantity in rows:
        result.movement_count += 1
        if movement_type == MovementType.IN:
            result.total_in += quantity
        elif movement_type == MovementType.OUT:
            result.total_out += quantity
        else:
            result.net_adjustments += new_quantity - previous_quantity
    return result


def reconcile_all(product_ids: Optional[List[int]] = None) -> ReconciliationReport:
    """Reconcile every product (or the given subset) against the ledger."""
    report = ReconciliationReport()
    queryset = Product.objects.all().order_by('id')
    if product_ids:
        queryset = queryset.filter(id__in=product_ids)

    for product in queryset.iterator():
        result = reconcile_product(product)
        report.checked += 1
        if not result.is_consistent:
            logger.error(
                f"Ledger drift on product {product.id}: stock {result.stock_quantity}, "
                f"ledger {result.ledger_quantity}"
            )
            report.inconsistent.append(result)
    return report
