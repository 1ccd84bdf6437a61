"""
Tests for the stock ledger.

Test Cases:
1. Adjustment sets an absolute level, in/out are deltas
2. Two decrements of 6 on a stock of 10: exactly one succeeds
3. Insufficient stock and failed movement inserts leave stock unchanged
4. Low stock boundary is inclusive
5. Ledger reconciliation and movement immutability
6. Stock, product and integration API endpoints
7. Concurrent decrements, adjustments and replayed references
"""
import threading
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.test import APIClient

from core.exceptions import (
    ConflictError,
    DuplicateReferenceError,
    InputValidationError,
    InsufficientStockError,
    NotFoundError,
)
from inventory import services
from inventory.models import Product, StockMovement
from inventory.tasks import verify_stock_ledger


def make_product(name='Test Product', stock=0, **fields):
    fields.setdefault('price', Decimal('10.00'))
    return services.create_product(name=name, stock_quantity=stock, **fields)


class StockLedgerTestCase(TestCase):
    """Test cases for adjust_stock."""

    def setUp(self):
        self.product = make_product('Claw Hammer', stock=12, sku='HAM-001')

    def test_opening_stock_recorded_as_movement(self):
        movement = StockMovement.objects.get(product=self.product)

        self.assertEqual(movement.movement_type, StockMovement.MovementType.IN)
        self.assertEqual(movement.quantity, 12)
        self.assertEqual(movement.reference_type, 'opening_balance')
        self.assertEqual(self.product.stock_quantity, 12)

    def test_adjustment_sets_absolute_quantity(self):
        """
        Test: adjustment of 5 on a product at 12 leaves exactly 5.

        Given: stock 12
        When: adjust_stock(quantity=5, movement_type='adjustment')
        Then: stock is 5, not 7
        """
        result = services.adjust_stock(self.product.id, 5, 'adjustment')

        self.assertEqual(result.previous_quantity, 12)
        self.assertEqual(result.new_quantity, 5)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertEqual(result.movement.net_change, -7)

    def test_adjustment_to_zero_allowed(self):
        result = services.adjust_stock(self.product.id, 0, 'adjustment')
        self.assertEqual(result.new_quantity, 0)

    def test_in_and_out_are_deltas(self):
        services.adjust_stock(self.product.id, 8, 'in', reference=('purchase_order', 3))
        result = services.adjust_stock(self.product.id, 5, 'out')

        self.assertEqual(result.previous_quantity, 20)
        self.assertEqual(result.new_quantity, 15)
        movement = StockMovement.objects.filter(reference_type='purchase_order').get()
        self.assertEqual(movement.reference_id, '3')

    def test_second_decrement_rejected(self):
        """
        Test: stock 10, two requests to subtract 6.

        Then: the first leaves 4, the second raises InsufficientStockError
        """
        product = make_product('Limited Product', stock=10)

        first = services.adjust_stock(product.id, 6, 'out')
        self.assertEqual(first.new_quantity, 4)

        with self.assertRaises(InsufficientStockError) as context:
            services.adjust_stock(product.id, 6, 'out')

        self.assertEqual(context.exception.available, 4)
        self.assertEqual(context.exception.requested, 6)
        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 4)
        self.assertEqual(
            StockMovement.objects.filter(product=product, movement_type='out').count(), 1
        )

    def test_exact_stock_decrement(self):
        result = services.adjust_stock(self.product.id, 12, 'out')
        self.assertEqual(result.new_quantity, 0)

    def test_unknown_product(self):
        for movement_type in ('in', 'out', 'adjustment'):
            with self.assertRaises(NotFoundError):
                services.adjust_stock(99999, 1, movement_type)

    def test_invalid_quantity(self):
        for quantity in (0, -3, 2.5, 'abc', None, True):
            with self.assertRaises(InputValidationError):
                services.adjust_stock(self.product.id, quantity, 'out')

        with self.assertRaises(InputValidationError):
            services.adjust_stock(self.product.id, -1, 'adjustment')

    def test_invalid_movement_type(self):
        with self.assertRaises(InputValidationError):
            services.adjust_stock(self.product.id, 1, 'transfer')

    def test_failed_movement_insert_rolls_back_quantity(self):
        """
        Test: the quantity change does not survive a failed movement insert.
        """
        with patch.object(StockMovement.objects, 'create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                services.adjust_stock(self.product.id, 5, 'out')

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 12)
        self.assertEqual(StockMovement.objects.filter(product=self.product).count(), 1)

    def test_adjust_stock_once_replays_reference(self):
        reference = {'type': 'sale', 'id': 'SALE-1'}

        first = services.adjust_stock_once(self.product.id, 4, 'out', reference=reference)
        second = services.adjust_stock_once(self.product.id, 4, 'out', reference=reference)

        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(second.new_quantity, 8)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)

    def test_duplicate_reference_rejected(self):
        services.adjust_stock(self.product.id, 8, 'in', reference=('purchase_order', 3))

        with self.assertRaises(DuplicateReferenceError):
            services.adjust_stock(self.product.id, 8, 'in', reference=('purchase_order', 3))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 20)
        self.assertTrue(services.reconcile_product(self.product).is_consistent)

    def test_adjust_stock_once_replays_after_lost_race(self):
        """
        Test: the duplicate check misses a movement committed meanwhile.

        Given: a sale decrement already recorded by another request
        When: adjust_stock_once does not see it on its first lookup
        Then: the insert is refused and the recorded movement is replayed
        """
        reference = {'type': 'sale', 'id': 'SALE-2'}
        recorded = services.adjust_stock(self.product.id, 4, 'out', reference=reference)

        with patch.object(
            services, '_find_referenced_movement', side_effect=[None, recorded.movement]
        ):
            result = services.adjust_stock_once(self.product.id, 4, 'out', reference=reference)

        self.assertTrue(result.replayed)
        self.assertEqual(result.new_quantity, 8)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)

    def test_availability(self):
        availability = services.get_availability(self.product.id)

        self.assertEqual(availability['current_stock'], 12)
        self.assertTrue(availability['is_available'])
        self.assertFalse(availability['is_low_stock'])

        services.adjust_stock(self.product.id, 0, 'adjustment')
        availability = services.get_availability(self.product.id)
        self.assertEqual(availability['current_stock'], 0)
        self.assertFalse(availability['is_available'])
        self.assertTrue(availability['is_low_stock'])


class LowStockTestCase(TestCase):

    def test_boundary_is_inclusive(self):
        """
        Test: min_stock_level 10 and stock exactly 10 is low stock.
        """
        at_minimum = make_product('At Minimum', stock=10, min_stock_level=10)
        above_minimum = make_product('Above Minimum', stock=11, min_stock_level=10)
        empty = make_product('Empty', stock=0, min_stock_level=10)
        inactive = make_product('Inactive', stock=1, min_stock_level=10, is_active=False)

        low = list(services.low_stock_products())

        self.assertIn(at_minimum, low)
        self.assertIn(empty, low)
        self.assertNotIn(above_minimum, low)
        self.assertNotIn(inactive, low)
        self.assertEqual(low[0], empty)
        self.assertTrue(at_minimum.is_low_stock)


class LedgerReconciliationTestCase(TestCase):

    def setUp(self):
        self.product = make_product('Wood Screws', stock=50)

    def test_ledger_reconciles_after_mixed_movements(self):
        services.adjust_stock(self.product.id, 20, 'in')
        services.adjust_stock(self.product.id, 15, 'out')
        services.adjust_stock(self.product.id, 40, 'adjustment')
        services.adjust_stock(self.product.id, 3, 'out')
        self.product.refresh_from_db()

        result = services.reconcile_product(self.product)

        self.assertEqual(self.product.stock_quantity, 37)
        self.assertEqual(result.total_in, 70)
        self.assertEqual(result.total_out, 18)
        self.assertEqual(result.net_adjustments, -15)
        self.assertEqual(result.ledger_quantity, 37)
        self.assertTrue(result.is_consistent)

    def test_direct_write_detected_as_drift(self):
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=99)

        report = services.reconcile_all()

        self.assertFalse(report.is_consistent)
        self.assertEqual(report.inconsistent[0].product_id, self.product.id)
        self.assertEqual(report.inconsistent[0].drift, 49)

    def test_verify_task_reports_drift(self):
        self.assertEqual(verify_stock_ledger()['inconsistent'], [])

        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)
        result = verify_stock_ledger()

        self.assertEqual(result['inconsistent'][0]['ledger_quantity'], 50)

    def test_check_stock_ledger_command(self):
        out = StringIO()
        call_command('check_stock_ledger', stdout=out)
        self.assertIn('consistent', out.getvalue())

        Product.objects.filter(pk=self.product.pk).update(stock_quantity=0)
        with self.assertRaises(CommandError):
            call_command('check_stock_ledger', '--product', str(self.product.id), stdout=StringIO())


class StockMovementImmutabilityTestCase(TestCase):

    def setUp(self):
        self.product = make_product('Padlock', stock=5)
        self.movement = StockMovement.objects.get(product=self.product)

    def test_cannot_update_movement(self):
        self.movement.quantity = 500
        with self.assertRaises(ValidationError):
            self.movement.save()

        with self.assertRaises(ValidationError):
            StockMovement.objects.filter(pk=self.movement.pk).update(quantity=500)

        self.movement.refresh_from_db()
        self.assertEqual(self.movement.quantity, 5)

    def test_cannot_delete_movement(self):
        with self.assertRaises(ValidationError):
            self.movement.delete()
        with self.assertRaises(ValidationError):
            StockMovement.objects.all().delete()

        self.assertTrue(StockMovement.objects.filter(pk=self.movement.pk).exists())


class ConcurrentStockOutTestCase(TransactionTestCase):
    """
    Concurrent ledger writes against one row.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        if connection.vendor == 'sqlite' and connection.is_in_memory_db():
            self.skipTest("Threaded ledger tests need a file or server database")
        self.product = make_product('Limited Stock Product', stock=10)

    def _run_concurrently(self, calls):
        """Start every call at the same time; return results in call order."""
        results = [None] * len(calls)
        errors = []
        barrier = threading.Barrier(len(calls))

        def run(index, func, args):
            try:
                barrier.wait()
                results[index] = func(*args)
            except InsufficientStockError:
                results[index] = 'insufficient'
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=run, args=(index, func, args))
            for index, (func, args) in enumerate(calls)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        return results

    def test_two_decrements_exactly_one_succeeds(self):
        """
        Test: Concurrent decrements don't oversell stock.

        Given: 10 units in stock
        When: Two concurrent requests to subtract 6
        Then: Exactly one succeeds with new stock 4, the other is insufficient
        """
        results = self._run_concurrently([(services.adjust_stock, (self.product.id, 6, 'out'))] * 2)

        new_quantities = [r.new_quantity for r in results if r != 'insufficient']
        self.assertEqual(new_quantities, [4])
        self.assertEqual(results.count('insufficient'), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 4)
        self.assertTrue(services.reconcile_product(self.product).is_consistent)

    def test_many_decrements_never_oversell(self):
        services.adjust_stock(self.product.id, 20, 'adjustment')
        quantities = [3, 5, 7, 2, 6, 4, 8, 1]

        results = self._run_concurrently(
            [(services.adjust_stock, (self.product.id, quantity, 'out')) for quantity in quantities]
        )

        sold = [quantity for quantity, r in zip(quantities, results) if r != 'insufficient']
        self.product.refresh_from_db()
        self.assertGreaterEqual(self.product.stock_quantity, 0)
        self.assertEqual(self.product.stock_quantity, 20 - sum(sold))
        self.assertIn('insufficient', results)
        self.assertEqual(
            StockMovement.objects.filter(product=self.product, movement_type='out').count(), len(sold)
        )
        self.assertTrue(services.reconcile_product(self.product).is_consistent)

    def test_adjustment_racing_decrement(self):
        results = self._run_concurrently([
            (services.adjust_stock, (self.product.id, 30, 'adjustment')),
            (services.adjust_stock, (self.product.id, 6, 'out')),
        ])

        self.assertNotIn('insufficient', results)
        self.product.refresh_from_db()
        self.assertIn(self.product.stock_quantity, (24, 30))
        self.assertTrue(services.reconcile_product(self.product).is_consistent)

    def test_concurrent_replays_apply_once(self):
        """
        Test: Retries of one sale arriving together decrement once.

        Given: 10 units in stock
        When: Four concurrent subtract-3 requests carry the same sale reference
        Then: One applies, three replay it, stock is 7
        """
        reference = {'type': 'sale', 'id': 'SALE-RACE'}
        results = self._run_concurrently(
            [(services.adjust_stock_once, (self.product.id, 3, 'out', reference))] * 4
        )

        self.assertEqual(sorted(r.replayed for r in results), [False, True, True, True])
        self.assertEqual({r.new_quantity for r in results}, {7})
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 7)
        self.assertEqual(
            StockMovement.objects.filter(product=self.product, reference_id='SALE-RACE').count(), 1
        )


class ProductApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.product = make_product('Cordless Drill', stock=12, sku='DRL-001', min_stock_level=3)

    def test_put_stock_adjustment(self):
        response = self.client.put(
            f'/api/products/{self.product.id}/stock/',
            {'quantity': 5, 'movement_type': 'adjustment'},
            format='json',
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'previous_quantity': 12, 'new_quantity': 5})

    def test_put_stock_insufficient(self):
        response = self.client.put(
            f'/api/products/{self.product.id}/stock/',
            {'quantity': 20, 'movement_type': 'out'},
            format='json',
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Insufficient stock')
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 12)

    def test_put_stock_not_found(self):
        response = self.client.put(
            '/api/products/99999/stock/',
            {'quantity': 1, 'movement_type': 'in'},
            format='json',
        )
        self.assertEqual(response.status_code, 404)

    def test_put_stock_validation(self):
        url = f'/api/products/{self.product.id}/stock/'

        self.assertEqual(
            self.client.put(url, {'quantity': 0, 'movement_type': 'out'}, format='json').status_code, 400
        )
        self.assertEqual(
            self.client.put(url, {'quantity': 3, 'movement_type': 'transfer'}, format='json').status_code, 400
        )
        self.assertEqual(self.client.put(url, {}, format='json').status_code, 400)

    def test_put_stock_with_reference(self):
        self.client.put(
            f'/api/products/{self.product.id}/stock/',
            {'quantity': 4, 'movement_type': 'in', 'reference': {'type': 'purchase_order', 'id': 'PO-9'}},
            format='json',
        )

        response = self.client.get(f'/api/products/{self.product.id}/movements/')

        self.assertEqual(response.status_code, 200)
        movements = response.json()
        self.assertEqual(len(movements), 2)
        self.assertEqual(movements[-1]['reference_id'], 'PO-9')
        self.assertEqual(movements[-1]['net_change'], 4)

        response = self.client.put(
            f'/api/products/{self.product.id}/stock/',
            {'quantity': 4, 'movement_type': 'in', 'reference': {'type': 'purchase_order', 'id': 'PO-9'}},
            format='json',
        )
        self.assertEqual(response.status_code, 409)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 16)

    def test_movements_for_unknown_product(self):
        self.assertEqual(self.client.get('/api/products/99999/movements/').status_code, 404)

    def test_create_product_with_opening_stock(self):
        response = self.client.post(
            '/api/products/',
            {'name': 'Tape Measure', 'price': '7.50', 'sku': 'TAP-001', 'stock_quantity': 7},
            format='json',
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['stock_quantity'], 7)
        product = Product.objects.get(sku='TAP-001')
        self.assertTrue(services.reconcile_product(product).is_consistent)

    def test_create_product_duplicate_sku(self):
        response = self.client.post(
            '/api/products/',
            {'name': 'Another Drill', 'price': '99.00', 'sku': 'DRL-001'},
            format='json',
        )
        self.assertEqual(response.status_code, 409)

        with self.assertRaises(ConflictError):
            make_product('Third Drill', sku='DRL-001')

    def test_update_ignores_stock_quantity(self):
        response = self.client.patch(
            f'/api/products/{self.product.id}/',
            {'name': 'Cordless Drill 18V', 'stock_quantity': 999},
            format='json',
        )

        self.assertEqual(response.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.name, 'Cordless Drill 18V')
        self.assertEqual(self.product.stock_quantity, 12)

    def test_delete_deactivates_product(self):
        response = self.client.delete(f'/api/products/{self.product.id}/')

        self.assertEqual(response.status_code, 204)
        self.product.refresh_from_db()
        self.assertFalse(self.product.is_active)
        self.assertTrue(StockMovement.objects.filter(product=self.product).exists())

    def test_low_stock_list(self):
        low = make_product('Junction Box', stock=2, min_stock_level=5)

        response = self.client.get('/api/products/low-stock/')

        self.assertEqual([p['id'] for p in response.json()], [low.id])
        self.assertEqual(
            [p['id'] for p in self.client.get('/api/products/?low_stock=true').json()], [low.id]
        )


class IntegrationApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.product = make_product('Garden Hose', stock=10, min_stock_level=10, category='Garden')

    def _update_stock(self, product_id, body):
        return self.client.post(
            f'/api/integration/products/{product_id}/update-stock/', body, format='json'
        )

    def test_subtract(self):
        response = self._update_stock(self.product.id, {'quantity': 6, 'operation': 'subtract'})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['success'])
        self.assertEqual(data['previous_stock'], 10)
        self.assertEqual(data['new_stock'], 4)

    def test_subtract_insufficient(self):
        self._update_stock(self.product.id, {'quantity': 6, 'operation': 'subtract'})
        response = self._update_stock(self.product.id, {'quantity': 6, 'operation': 'subtract'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {'success': False, 'error': 'Insufficient stock', 'available': 4, 'requested': 6},
        )

    def test_add(self):
        response = self._update_stock(self.product.id, {'quantity': 5, 'operation': 'add'})
        self.assertEqual(response.json()['new_stock'], 15)

    def test_replayed_reference_applied_once(self):
        body = {'quantity': 3, 'operation': 'subtract', 'reference': {'type': 'sale', 'id': 'SALE-X'}}

        self._update_stock(self.product.id, body)
        response = self._update_stock(self.product.id, body)

        self.assertTrue(response.json()['replayed'])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 7)

    def test_unknown_product_and_bad_body(self):
        response = self._update_stock(99999, {'quantity': 1, 'operation': 'subtract'})
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.json()['success'])

        response = self._update_stock(self.product.id, {'quantity': 0, 'operation': 'remove'})
        self.assertEqual(response.status_code, 400)

    def test_product_snapshot_and_availability(self):
        response = self.client.get(f'/api/integration/products/{self.product.id}/')
        self.assertEqual(response.json()['product']['remaining_stock'], 10)

        response = self.client.get(f'/api/integration/availability/{self.product.id}/')
        availability = response.json()['availability']
        self.assertTrue(availability['is_available'])
        self.assertTrue(availability['is_low_stock'])

        self.assertEqual(self.client.get('/api/integration/products/99999/').status_code, 404)
        self.assertEqual(self.client.get('/api/integration/availability/99999/').status_code, 404)

    def test_search_ranks_prefix_matches_first(self):
        make_product('Hose Clamp', stock=3)

        response = self.client.get('/api/integration/products/search/', {'query': 'hose', 'limit': 5})

        data = response.json()
        self.assertEqual(data['count'], 2)
        self.assertEqual(data['products'][0]['name'], 'Hose Clamp')
        self.assertEqual(data['products'][1]['name'], 'Garden Hose')

        empty = self.client.get('/api/integration/products/search/').json()
        self.assertEqual(empty['products'], [])

    def test_low_stock(self):
        response = self.client.get('/api/integration/low-stock/')

        data = response.json()
        self.assertTrue(data['success'])
        self.assertEqual(data['count'], 1)
        self.assertEqual(data['low_stock_products'][0]['current_stock'], 10)


@override_settings(RATE_LIMIT_ENABLED=True)
class SearchRateLimitTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        make_product('Extension Cord', stock=4)

    def _redis_returning(self, count, ttl=42):
        client = MagicMock()
        client.pipeline.return_value.execute.return_value = [count, True, ttl]
        return client

    def test_under_limit_sets_headers(self):
        with patch('core.rate_limiting.get_redis_client', return_value=self._redis_returning(1)):
            response = self.client.get('/api/integration/products/search/', {'q': 'cord'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['X-RateLimit-Limit'], '60')
        self.assertEqual(response['X-RateLimit-Remaining'], '59')

    def test_over_limit_rejected(self):
        with patch('core.rate_limiting.get_redis_client', return_value=self._redis_returning(61)):
            response = self.client.get('/api/integration/products/search/', {'q': 'cord'})

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response['Retry-After'], '42')

    def test_fails_open_without_redis(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            response = self.client.get('/api/integration/products/search/', {'q': 'cord'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['count'], 1)
