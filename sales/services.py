"""
Sale Recorder Service Layer.

Sale durability takes precedence over stock consistency:
1. Validate input, compute totals from sanitized numbers
2. Persist the sale and commit; a sale that asks for inventory integration
   is stored PENDING so an interrupted call is never lost
3. Ask the inventory service to decrement stock
4. On success record the new stock snapshot; on ANY integration failure keep
   the sale, mark it FAILED_WARNING and return a warning to the caller

Retryable failures are queued on sales.tasks.retry_failed_integration;
sales.tasks.reconcile_failed_integrations sweeps whatever is left.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date
from kombu.exceptions import OperationalError as BrokerUnavailable

from core.exceptions import IntegrationFailure, InputValidationError, NotFoundError
from .integration import InventoryGateway, get_inventory_gateway
from .models import Sale
from .tasks import retry_failed_integration

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')

REQUIRED_FIELDS = ('date', 'productName', 'price', 'quantity', 'category')


@dataclass
class SaleResult:
    sale: Sale
    inventory_update: Optional[Dict] = None
    warning: Optional[str] = None


def to_decimal(value) -> Decimal:
    """Absent, non-numeric, NaN or infinite input counts as 0."""
    if value is None or value == '' or isinstance(value, bool):
        return Decimal('0')
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal('0')
    if not number.is_finite():
        return Decimal('0')
    return number


def to_int(value) -> int:
    number = to_decimal(value)
    if number != number.to_integral_value():
        return 0
    return int(number)


def compute_total(price, quantity, discount=0, tax_amount=0) -> Decimal:
    """total = price * quantity - discount + tax, on sanitized inputs."""
    total = to_decimal(price) * to_int(quantity) - to_decimal(discount) + to_decimal(tax_amount)
    return total.quantize(TWO_PLACES)


def _parse_sale_date(value) -> date:
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value)) if value else None
    if parsed is None:
        raise InputValidationError("date must be a valid ISO date (YYYY-MM-DD)")
    return parsed


def _optional_int(value, field_name):
    if value in (None, ''):
        return None
    number = to_int(value)
    if number <= 0:
        raise InputValidationError(f"{field_name} must be a positive integer")
    return number


def validate_sale_input(data: Dict) -> Dict:
    """
    Validate and normalise a sale payload.

    Raises:
        InputValidationError: Missing required fields, price or quantity not > 0
    """
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, '')]
    if missing:
        raise InputValidationError(
            "Missing required fields: date, productName, price, quantity, category"
        )

    price = to_decimal(data.get('price'))
    quantity = to_int(data.get('quantity'))
    if price <= 0 or quantity <= 0:
        raise InputValidationError("Price and quantity must be greater than 0")

    product_name = str(data['productName']).strip()
    category = str(data['category']).strip()
    if not product_name or not category:
        raise InputValidationError("productName and category cannot be blank")

    payment_method = data.get('payment_method') or Sale.PaymentMethod.CASH
    if payment_method not in Sale.PaymentMethod.values:
        raise InputValidationError(
            f"payment_method must be one of: {', '.join(Sale.PaymentMethod.values)}"
        )

    discount = to_decimal(data.get('discount'))
    tax_amount = to_decimal(data.get('tax_amount'))

    return {
        'date': _parse_sale_date(data['date']),
        'product_id': _optional_int(data.get('product_id'), 'product_id'),
        'product_name': product_name,
        'category': category,
        'price': price.quantize(TWO_PLACES),
        'quantity': quantity,
        'discount': discount.quantize(TWO_PLACES),
        'tax_amount': tax_amount.quantize(TWO_PLACES),
        'total_price': compute_total(price, quantity, discount, tax_amount),
        'payment_method': payment_method,
        'customer_id': _optional_int(data.get('customer_id'), 'customer_id'),
        'notes': str(data.get('notes') or '').strip(),
    }


def _wants_integration(data: Dict) -> bool:
    flag = data.get('use_inventory_integration', False)
    if isinstance(flag, str):
        return flag.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(flag)


def _apply_integration(sale: Sale, gateway: InventoryGateway) -> SaleResult:
    """
    Decrement stock for a persisted sale and record the outcome on it.

    Never raises IntegrationFailure; the failure is stored and returned as
    a warning instead.
    """
    reference = {'type': 'sale', 'id': sale.sale_number}
    attempts = sale.integration_attempts + 1
    now = timezone.now()

    try:
        update = gateway.decrement_stock(sale.product_id, sale.quantity, reference=reference)
    except IntegrationFailure as e:
        warning = f"Sale created but inventory integration failed: {e.message}"
        logger.warning(
            f"Inventory integration failed for {sale.sale_number} "
            f"(attempt {attempts}, {e.kind}): {e.message}"
        )
        fields = {
            'integration_status': Sale.IntegrationStatus.FAILED_WARNING,
            'integration_warning': warning,
            'integration_failure_kind': e.kind,
            'integration_attempts': attempts,
            'integration_updated_at': now,
        }
        Sale.objects.filter(pk=sale.pk).update(**fields)
        for name, value in fields.items():
            setattr(sale, name, value)
        return SaleResult(sale=sale, warning=warning)

    fields = {
        'integration_status': Sale.IntegrationStatus.SUCCEEDED,
        'integration_warning': '',
        'integration_failure_kind': '',
        'integration_attempts': attempts,
        'integration_previous_stock': update.get('previous_stock'),
        'integration_new_stock': update.get('new_stock'),
        'integration_updated_at': now,
    }
    Sale.objects.filter(pk=sale.pk).update(**fields)
    for name, value in fields.items():
        setattr(sale, name, value)

    logger.info(
        f"Inventory updated for {sale.sale_number}: product {sale.product_id} "
        f"{update.get('previous_stock')} -> {update.get('new_stock')}"
    )
    return SaleResult(sale=sale, inventory_update=update)


def create_sale(data: Dict, *, gateway: InventoryGateway = None) -> SaleResult:
    """
    Persist a sale and, if asked, decrement inventory through the gateway.

    Args:
        data: Request payload (productName, price, quantity, ...)
        gateway: Inventory gateway for this unit of work; built from
            settings when integration is requested and none is given

    Returns:
        SaleResult; warning is set when the inventory call failed

    Raises:
        InputValidationError: Invalid payload (nothing is written)
        NotFoundError: customer_id does not exist
    """
    fields = validate_sale_input(data)

    customer_id = fields['customer_id']
    if customer_id is not None:
        from customers.models import Customer
        if not Customer.objects.filter(pk=customer_id).exists():
            raise NotFoundError(f"Customer {customer_id} not found")

    integrate = _wants_integration(data) and fields['product_id'] is not None
    if integrate:
        fields['integration_status'] = Sale.IntegrationStatus.PENDING

    with transaction.atomic():
        sale = Sale.objects.create(**fields)

    logger.info(f"Created sale {sale.sale_number}: {sale.quantity}x {sale.product_name}, total {sale.total_price}")

    if not integrate:
        return SaleResult(sale=sale)

    if gateway is not None:
        result = _apply_integration(sale, gateway)
    else:
        with get_inventory_gateway() as owned_gateway:
            result = _apply_integration(sale, owned_gateway)

    if result.sale.needs_reconciliation:
        schedule_integration_retry(result.sale)
    return result


def schedule_integration_retry(sale: Sale) -> bool:
    """
    Queue retry_failed_integration for a sale whose decrement failed.

    A broker outage is logged and otherwise ignored; the periodic sweep
    still finds the sale.

    Returns:
        True if the task was queued
    """
    if not settings.INTEGRATION_RETRY_ASYNC:
        return False
    try:
        retry_failed_integration.apply_async(
            (sale.id,), countdown=retry_failed_integration.default_retry_delay
        )
    except BrokerUnavailable as e:
        logger.warning(f"Could not queue integration retry for {sale.sale_number}: {e}")
        return False
    logger.info(f"Queued integration retry for {sale.sale_number}")
    return True


def update_sale(sale: Sale, data: Dict) -> Sale:
    """
    Explicit update of a sale's descriptive and pricing fields.

    The total is recomputed with the sale's discount and tax. Integration
    state and stock are not touched.
    """
    merged = {
        'date': sale.date,
        'productName': sale.product_name,
        'price': sale.price,
        'quantity': sale.quantity,
        'category': sale.category,
        'discount': sale.discount,
        'tax_amount': sale.tax_amount,
        'payment_method': sale.payment_method,
        'notes': sale.notes,
        'customer_id': sale.customer_id,
        'product_id': sale.product_id,
    }
    merged.update({key: value for key, value in data.items() if key in merged})
    fields = validate_sale_input(merged)

    names = ['date', 'product_name', 'category', 'price', 'quantity', 'discount',
             'tax_amount', 'total_price', 'payment_method', 'notes']
    for name in names:
        setattr(sale, name, fields[name])
    sale.save(update_fields=[*names, 'updated_at'])
    logger.info(f"Updated sale {sale.sale_number}")
    return sale


def delete_sale(sale: Sale) -> None:
    logger.info(f"Deleting sale {sale.sale_number}")
    sale.delete()


def retry_sale_integration(sale: Sale, *, gateway: InventoryGateway = None) -> SaleResult:
    """
    Re-attempt the inventory decrement of a PENDING or FAILED_WARNING sale.

    The sale row is locked for the duration of the call, so the sweep, the
    retry task and the retry endpoint never run it concurrently. Succeeded
    or never-requested sales are returned unchanged.
    """
    retryable = (Sale.IntegrationStatus.PENDING, Sale.IntegrationStatus.FAILED_WARNING)

    with transaction.atomic():
        try:
            sale = Sale.objects.select_for_update().get(pk=sale.pk)
        except Sale.DoesNotExist:
            raise NotFoundError(f"Sale {sale.pk} not found")
        if sale.integration_status not in retryable or not sale.product_id:
            return SaleResult(sale=sale)

        if gateway is not None:
            return _apply_integration(sale, gateway)
        with get_inventory_gateway() as owned_gateway:
            return _apply_integration(sale, owned_gateway)
