"""
Management command to verify stock levels against the movement ledger.

Usage:
    python manage.py check_stock_ledger
    python manage.py check_stock_ledger --product 7 --product 9

Exits with status 1 when any product drifts from its ledger.
"""
from django.core.management.base import BaseCommand, CommandError

from inventory.services import reconcile_all


class Command(BaseCommand):
    help = 'Replay stock movements and compare the result with each product stock level'

    def add_arguments(self, parser):
        parser.add_argument(
            '--product',
            type=int,
            action='append',
            dest='products',
            help='Only check this product ID (repeatable)',
        )

    def handle(self, *args, **options):
        report = reconcile_all(product_ids=options['products'])

        for result in report.inconsistent:
            self.stdout.write(self.style.ERROR(
                f'Product {result.product_id}: stock {result.stock_quantity}, '
                f'ledger {result.ledger_quantity} (in {result.total_in}, out {result.total_out}, '
                f'adjustments {result.net_adjustments:+d}, drift {result.drift:+d})'
            ))

        if not report.is_consistent:
            raise CommandError(
                f'{len(report.inconsistent)} of {report.checked} products drift from the ledger'
            )

        self.stdout.write(self.style.SUCCESS(f'Stock ledger consistent for {report.checked} products'))
