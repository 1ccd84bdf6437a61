"""
Celery tasks for inventory integration reconciliation.

Tasks:
    - retry_failed_integration: Re-attempt one sale's stock decrement
    - reconcile_failed_integrations: Periodic sweep over FAILED_WARNING sales
      and sales left PENDING by an interrupted request

Only connection and server failures are retried. Application failures
(insufficient stock, unknown product) need a person to decide and are left
for manual review via POST /sales/{id}/retry-integration/.
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

logger = logging.getLogger(__name__)


class IntegrationStillFailing(Exception):
    """Raised inside the retry task so Celery's autoretry backs off."""


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(IntegrationStillFailing,),
    retry_backoff=True,
)
def retry_failed_integration(self, sale_id: int):
    """
    Re-attempt the inventory decrement of a single sale.

    Args:
        sale_id: ID of a sale in PENDING or FAILED_WARNING

    Returns:
        Dict with the outcome
    """
    from sales.models import Sale
    from sales.services import retry_sale_integration

    try:
        sale = Sale.objects.get(id=sale_id)
    except Sale.DoesNotExist:
        logger.error(f"Sale #{sale_id} not found for integration retry")
        return {'status': 'error', 'message': f'Sale {sale_id} not found'}

    if not sale.needs_reconciliation:
        return {'status': 'skipped', 'sale_id': sale_id, 'integration_status': sale.integration_status}

    if sale.integration_attempts >= settings.INTEGRATION_MAX_ATTEMPTS:
        logger.warning(
            f"[CELERY] Sale {sale.sale_number} reached {sale.integration_attempts} "
            "integration attempts, leaving for manual review"
        )
        return {'status': 'exhausted', 'sale_id': sale_id}

    result = retry_sale_integration(sale)
    if result.warning:
        if result.sale.needs_reconciliation:
            raise IntegrationStillFailing(result.warning)
        return {'status': 'rejected', 'sale_id': sale_id, 'message': result.warning}

    logger.info(f"[CELERY] Reconciled inventory for sale {sale.sale_number}")
    return {
        'status': 'success',
        'sale_id': sale_id,
        'new_stock': result.inventory_update.get('new_stock') if result.inventory_update else None,
    }


@shared_task
def reconcile_failed_integrations(limit: int = 200):
    """
    Periodic sweep re-attempting sales whose inventory update failed.

    Scheduled through CELERY_BEAT_SCHEDULE. Runs retries in-process, one
    shared gateway per sweep.
    """
    from sales.integration import get_inventory_gateway
    from sales.models import Sale
    from sales.services import retry_sale_integration

    stale_before = timezone.now() - timedelta(seconds=settings.INTEGRATION_PENDING_GRACE)
    failed = (
        Q(integration_status=Sale.IntegrationStatus.FAILED_WARNING)
        & ~Q(integration_failure_kind=Sale.FailureKind.APPLICATION)
    )
    interrupted = Q(integration_status=Sale.IntegrationStatus.PENDING, created_at__lt=stale_before)
    pending = (
        Sale.objects.filter(failed | interrupted)
        .filter(
            integration_attempts__lt=settings.INTEGRATION_MAX_ATTEMPTS,
            product_id__isnull=False,
        )
        .order_by('created_at')[:limit]
    )

    stats = {'checked': 0, 'succeeded': 0, 'failed': 0}
    sales = list(pending)
    if not sales:
        return stats

    with get_inventory_gateway() as gateway:
        for sale in sales:
            stats['checked'] += 1
            result = retry_sale_integration(sale, gateway=gateway)
            if result.warning:
                stats['failed'] += 1
            else:
                stats['succeeded'] += 1

    level = logging.WARNING if stats['failed'] else logging.INFO
    logger.log(
        level,
        f"[CELERY] Integration reconciliation: {stats['succeeded']} succeeded, "
        f"{stats['failed']} still failing of {stats['checked']}",
    )
    return stats
