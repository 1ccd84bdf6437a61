"""
Celery tasks for the stock ledger.

Tasks:
    - verify_stock_ledger: Periodic replay of movements against stock levels
"""
import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def verify_stock_ledger():
    """
    Replay every product's movements and log any drift from stock_quantity.

    Drift means something wrote stock_quantity outside the ledger service.
    """
    from inventory.services import reconcile_all

    report = reconcile_all()
    if report.is_consistent:
        logger.info(f"[CELERY] Stock ledger consistent for {report.checked} products")
    else:
        logger.error(
            f"[CELERY] Stock ledger drift on {len(report.inconsistent)} of "
            f"{report.checked} products"
        )

    return {
        'checked': report.checked,
        'inconsistent': [
            {
                'product_id': r.product_id,
                'stock_quantity': r.stock_quantity,
                'ledger_quantity': r.ledger_quantity,
            }
            for r in report.inconsistent
        ],
    }
