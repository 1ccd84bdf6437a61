"""
Tests for sale recording and inventory integration.

Test Cases:
1. Totals are computed from sanitized numbers
2. Validation rejects bad input before any write
3. Sale survives an unreachable, failing or rejecting inventory service
4. Successful integration records the stock snapshot
5. Failed and interrupted integrations are reconciled without double decrements
6. Gateway read calls against the in-process integration API
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import httpx
from django.test import Client, TestCase, override_settings
from django.utils import timezone
from kombu.exceptions import OperationalError as BrokerUnavailable
from rest_framework.test import APIClient

from core.exceptions import InputValidationError, IntegrationRejected, NotFoundError
from inventory.models import Product, StockMovement
from inventory.services import create_product
from sales import services
from sales.integration import InventoryGateway
from sales.models import Sale
from sales.tasks import reconcile_failed_integrations, retry_failed_integration

BASE_URL = 'http://testserver/api/integration'


def django_transport():
    """Route gateway requests into the in-process inventory API."""
    client = Client()

    def handler(request: httpx.Request) -> httpx.Response:
        response = client.generic(
            request.method,
            request.url.raw_path.decode(),
            data=request.content,
            content_type='application/json',
        )
        return httpx.Response(
            response.status_code,
            content=response.content,
            headers={'content-type': response.get('Content-Type', 'application/json')},
        )

    return httpx.MockTransport(handler)


def failing_transport(exc_class=httpx.ConnectError):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_class('Connection refused', request=request)

    return httpx.MockTransport(handler)


def status_transport(status_code, body):
    return httpx.MockTransport(lambda request: httpx.Response(status_code, json=body))


def gateway(transport):
    return InventoryGateway(base_url=BASE_URL, transport=transport)


def sale_payload(**overrides):
    data = {
        'date': '2024-05-01',
        'productName': 'Claw Hammer',
        'price': '12.50',
        'quantity': 2,
        'category': 'Tools',
    }
    data.update(overrides)
    return data


class SaleCalculationTestCase(TestCase):
    """Test cases for totals and input validation."""

    def test_compute_total(self):
        self.assertEqual(services.compute_total('12.50', 2, '5', '1.25'), Decimal('21.25'))

    def test_non_numeric_values_count_as_zero(self):
        for value in (None, '', 'abc', 'NaN', 'Infinity', float('nan'), float('inf'), True):
            self.assertEqual(services.to_decimal(value), Decimal('0'))

        self.assertEqual(services.compute_total('10', 3, 'NaN', 'oops'), Decimal('30.00'))

    def test_create_sale_total(self):
        result = services.create_sale(sale_payload(discount='NaN', tax_amount='2.00'))

        self.assertEqual(result.sale.total_price, Decimal('27.00'))
        self.assertEqual(result.sale.discount, Decimal('0.00'))
        self.assertTrue(result.sale.sale_number.startswith('SALE-'))
        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.NOT_REQUESTED)
        self.assertIsNone(result.warning)

    def test_sale_numbers_unique(self):
        first = services.create_sale(sale_payload()).sale
        second = services.create_sale(sale_payload()).sale
        self.assertNotEqual(first.sale_number, second.sale_number)

    def test_missing_required_fields(self):
        with self.assertRaises(InputValidationError) as context:
            services.create_sale(sale_payload(category=''))

        self.assertEqual(
            context.exception.message,
            'Missing required fields: date, productName, price, quantity, category',
        )
        self.assertEqual(Sale.objects.count(), 0)

    def test_price_and_quantity_must_be_positive(self):
        for overrides in ({'price': '0'}, {'price': '-3'}, {'quantity': 0}, {'quantity': 'abc'},
                          {'price': 'NaN'}, {'quantity': 1.5}):
            with self.assertRaises(InputValidationError) as context:
                services.create_sale(sale_payload(**overrides))
            self.assertEqual(context.exception.message, 'Price and quantity must be greater than 0')

        self.assertEqual(Sale.objects.count(), 0)

    def test_invalid_date_and_payment_method(self):
        with self.assertRaises(InputValidationError):
            services.create_sale(sale_payload(date='May 1st'))
        with self.assertRaises(InputValidationError):
            services.create_sale(sale_payload(payment_method='barter'))

    def test_unknown_customer(self):
        with self.assertRaises(NotFoundError):
            services.create_sale(sale_payload(customer_id=99999))


class SaleIntegrationTestCase(TestCase):
    """Sale durability takes precedence over stock consistency."""

    def setUp(self):
        self.product = create_product(name='Claw Hammer', price=Decimal('12.50'), stock_quantity=10)

    def _payload(self, **overrides):
        data = sale_payload(product_id=self.product.id, use_inventory_integration=True)
        data.update(overrides)
        return data

    def _stock(self):
        return Product.objects.get(pk=self.product.pk).stock_quantity

    def test_successful_integration(self):
        result = services.create_sale(self._payload(), gateway=gateway(django_transport()))

        sale = Sale.objects.get(pk=result.sale.pk)
        self.assertEqual(sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)
        self.assertEqual(sale.integration_attempts, 1)
        self.assertEqual(sale.integration_new_stock, 8)
        self.assertEqual(result.inventory_update, {'previous_stock': 10, 'new_stock': 8})
        self.assertIsNone(result.warning)
        self.assertEqual(self._stock(), 8)

        movement = StockMovement.objects.get(product=self.product, movement_type='out')
        self.assertEqual(movement.reference_type, 'sale')
        self.assertEqual(movement.reference_id, sale.sale_number)

    def test_unreachable_inventory_keeps_sale(self):
        """
        Test: Sale persists when the inventory service cannot be reached.

        Given: An inventory endpoint that refuses connections
        When: Creating a sale with use_inventory_integration
        Then: Sale is stored with a warning, stock is unchanged
        """
        result = services.create_sale(self._payload(), gateway=gateway(failing_transport()))

        sale = Sale.objects.get(pk=result.sale.pk)
        self.assertEqual(sale.integration_status, Sale.IntegrationStatus.FAILED_WARNING)
        self.assertEqual(sale.integration_failure_kind, Sale.FailureKind.CONNECTION)
        self.assertTrue(result.warning.startswith('Sale created but inventory integration failed'))
        self.assertEqual(sale.integration_warning, result.warning)
        self.assertTrue(sale.needs_reconciliation)
        self.assertEqual(self._stock(), 10)

    def test_timeout_treated_as_connection_failure(self):
        result = services.create_sale(self._payload(), gateway=gateway(failing_transport(httpx.ReadTimeout)))

        self.assertEqual(result.sale.integration_failure_kind, Sale.FailureKind.CONNECTION)
        self.assertIn('timed out', result.warning)

    def test_insufficient_stock_is_application_failure(self):
        result = services.create_sale(self._payload(quantity=20), gateway=gateway(django_transport()))

        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.FAILED_WARNING)
        self.assertEqual(result.sale.integration_failure_kind, Sale.FailureKind.APPLICATION)
        self.assertIn('Insufficient stock', result.warning)
        self.assertFalse(result.sale.needs_reconciliation)
        self.assertEqual(Sale.objects.count(), 1)
        self.assertEqual(self._stock(), 10)

    def test_server_error_is_server_failure(self):
        transport = status_transport(503, {'success': False, 'error': 'Database unavailable'})

        result = services.create_sale(self._payload(), gateway=gateway(transport))

        self.assertEqual(result.sale.integration_failure_kind, Sale.FailureKind.SERVER)
        self.assertIn('Database unavailable', result.warning)

    def test_integration_needs_flag_and_product(self):
        transport = failing_transport()

        without_flag = services.create_sale(
            sale_payload(product_id=self.product.id), gateway=gateway(transport)
        )
        without_product = services.create_sale(
            sale_payload(use_inventory_integration=True), gateway=gateway(transport)
        )

        for result in (without_flag, without_product):
            self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.NOT_REQUESTED)
            self.assertIsNone(result.warning)

    def test_string_flag_accepted(self):
        result = services.create_sale(
            self._payload(use_inventory_integration='true'), gateway=gateway(django_transport())
        )
        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)

        result = services.create_sale(
            self._payload(use_inventory_integration='false'), gateway=gateway(failing_transport())
        )
        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.NOT_REQUESTED)

    def test_unconfirmed_responses_are_failures(self):
        """
        Test: Only a 2xx JSON body with success and a stock snapshot counts.

        Given: An endpoint answering with HTML, a redirect, an empty body
            or a JSON body without the snapshot
        When: Creating a sale with use_inventory_integration
        Then: Each sale is FAILED_WARNING as a server failure, stock unchanged
        """
        responses = [
            httpx.Response(200, text='<html><body>Maintenance</body></html>'),
            httpx.Response(301, headers={'Location': 'https://inventory.example.com/'}),
            httpx.Response(204),
            httpx.Response(200, json={'success': True}),
            httpx.Response(200, json={'previous_stock': 10, 'new_stock': 8}),
        ]
        for response in responses:
            transport = httpx.MockTransport(lambda request, response=response: response)

            result = services.create_sale(self._payload(), gateway=gateway(transport))

            self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.FAILED_WARNING)
            self.assertEqual(result.sale.integration_failure_kind, Sale.FailureKind.SERVER)
            self.assertIsNone(result.inventory_update)
            self.assertIsNotNone(result.warning)

        self.assertEqual(self._stock(), 10)

    def test_any_httpx_error_becomes_warning(self):
        def invalid_url(request):
            raise httpx.InvalidURL('Invalid non-printable ASCII character in URL')

        transports = [
            failing_transport(httpx.DecodingError),
            failing_transport(httpx.TooManyRedirects),
            failing_transport(httpx.RemoteProtocolError),
            httpx.MockTransport(invalid_url),
        ]
        for transport in transports:
            result = services.create_sale(self._payload(), gateway=gateway(transport))

            sale = Sale.objects.get(pk=result.sale.pk)
            self.assertEqual(sale.integration_status, Sale.IntegrationStatus.FAILED_WARNING)
            self.assertTrue(sale.needs_reconciliation)
            self.assertIsNotNone(result.warning)

    def test_sale_stored_pending_before_inventory_call(self):
        applied = django_transport()
        seen = []

        def handler(request):
            seen.append(Sale.objects.get().integration_status)
            return applied.handle_request(request)

        result = services.create_sale(self._payload(), gateway=gateway(httpx.MockTransport(handler)))

        self.assertEqual(seen, [Sale.IntegrationStatus.PENDING])
        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)

    @override_settings(INTEGRATION_RETRY_ASYNC=True)
    def test_retryable_failure_queues_retry(self):
        with patch('sales.services.retry_failed_integration.apply_async') as apply_async:
            result = services.create_sale(self._payload(), gateway=gateway(failing_transport()))

        apply_async.assert_called_once_with(
            (result.sale.id,), countdown=retry_failed_integration.default_retry_delay
        )

    @override_settings(INTEGRATION_RETRY_ASYNC=True)
    def test_rejection_not_queued(self):
        with patch('sales.services.retry_failed_integration.apply_async') as apply_async:
            services.create_sale(self._payload(quantity=20), gateway=gateway(django_transport()))

        apply_async.assert_not_called()

    @override_settings(INTEGRATION_RETRY_ASYNC=True)
    def test_broker_outage_keeps_sale(self):
        with patch('sales.services.retry_failed_integration.apply_async',
                   side_effect=BrokerUnavailable('Connection refused')):
            result = services.create_sale(self._payload(), gateway=gateway(failing_transport()))

        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.FAILED_WARNING)
        self.assertIsNotNone(result.warning)
        self.assertEqual(Sale.objects.count(), 1)


class InventoryGatewayTestCase(TestCase):
    """Gateway read calls against the in-process integration API."""

    def setUp(self):
        self.product = create_product(
            name='Claw Hammer', price=Decimal('12.50'), stock_quantity=3, min_stock_level=5, sku='HAM-001',
        )
        create_product(name='Hammer Drill', price=Decimal('95.00'), stock_quantity=40)
        create_product(name='Tack Hammer', price=Decimal('9.00'), stock_quantity=40)

    def test_product_and_availability(self):
        with gateway(django_transport()) as client:
            product = client.get_product(self.product.id)
            availability = client.check_availability(self.product.id)

        self.assertEqual(product['sku'], 'HAM-001')
        self.assertEqual(product['remaining_stock'], 3)
        self.assertEqual(availability['current_stock'], 3)
        self.assertTrue(availability['is_low_stock'])

    def test_unknown_product_rejected(self):
        with gateway(django_transport()) as client:
            with self.assertRaises(IntegrationRejected) as context:
                client.get_product(99999)

        self.assertEqual(context.exception.status_code, 404)
        self.assertEqual(context.exception.message, 'Product not found')

    def test_search_ranks_prefix_matches_first(self):
        with gateway(django_transport()) as client:
            products = client.search_products('hammer', limit=5)

        self.assertEqual(
            [product['name'] for product in products],
            ['Hammer Drill', 'Claw Hammer', 'Tack Hammer'],
        )

    def test_low_stock_products(self):
        with gateway(django_transport()) as client:
            low = client.low_stock_products()

        self.assertEqual([product['id'] for product in low], [self.product.id])

    def test_health_check(self):
        with gateway(django_transport()) as client:
            self.assertTrue(client.health_check())
        with gateway(failing_transport()) as client:
            self.assertFalse(client.health_check())


class SaleReconciliationTestCase(TestCase):

    def setUp(self):
        self.product = create_product(name='Cordless Drill', price=Decimal('80.00'), stock_quantity=10)

    def _failed_sale(self, transport=None, **overrides):
        data = sale_payload(product_id=self.product.id, use_inventory_integration=True)
        data.update(overrides)
        return services.create_sale(data, gateway=gateway(transport or failing_transport())).sale

    def _stock(self):
        return Product.objects.get(pk=self.product.pk).stock_quantity

    def test_retry_applies_decrement_once(self):
        sale = self._failed_sale()

        result = services.retry_sale_integration(sale, gateway=gateway(django_transport()))
        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)
        self.assertEqual(result.sale.integration_attempts, 2)
        self.assertEqual(self._stock(), 8)

        again = services.retry_sale_integration(result.sale, gateway=gateway(django_transport()))
        self.assertIsNone(again.inventory_update)
        self.assertEqual(self._stock(), 8)

    def test_lost_response_not_decremented_twice(self):
        """
        Test: A decrement applied remotely but whose response was lost is
        not applied again on retry.
        """
        applied = django_transport()

        def lost_response(request):
            applied.handle_request(request)
            raise httpx.ReadTimeout('read timed out', request=request)

        sale = self._failed_sale(transport=httpx.MockTransport(lost_response))
        self.assertEqual(sale.integration_status, Sale.IntegrationStatus.FAILED_WARNING)
        self.assertEqual(self._stock(), 8)

        result = services.retry_sale_integration(sale, gateway=gateway(django_transport()))

        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)
        self.assertEqual(result.inventory_update['new_stock'], 8)
        self.assertEqual(self._stock(), 8)

    def test_reconcile_retries_only_transient_failures(self):
        connection_failure = self._failed_sale()
        server_failure = self._failed_sale(transport=status_transport(500, {}))
        rejected = self._failed_sale(transport=django_transport(), quantity=50)
        exhausted = self._failed_sale()
        Sale.objects.filter(pk=exhausted.pk).update(integration_attempts=5)

        with self.settings(INTEGRATION_MAX_ATTEMPTS=5), \
                patch('sales.integration.get_inventory_gateway',
                      return_value=gateway(django_transport())):
            stats = reconcile_failed_integrations()

        self.assertEqual(stats, {'checked': 2, 'succeeded': 2, 'failed': 0})
        for sale, expected in ((connection_failure, Sale.IntegrationStatus.SUCCEEDED),
                               (server_failure, Sale.IntegrationStatus.SUCCEEDED),
                               (rejected, Sale.IntegrationStatus.FAILED_WARNING),
                               (exhausted, Sale.IntegrationStatus.FAILED_WARNING)):
            sale.refresh_from_db()
            self.assertEqual(sale.integration_status, expected)
        self.assertEqual(self._stock(), 6)

    def test_retry_reads_current_state(self):
        sale = self._failed_sale()
        stale = Sale.objects.get(pk=sale.pk)
        services.retry_sale_integration(sale, gateway=gateway(django_transport()))

        result = services.retry_sale_integration(stale, gateway=gateway(failing_transport()))

        self.assertEqual(result.sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)
        self.assertIsNone(result.warning)
        self.assertEqual(self._stock(), 8)

    @override_settings(INTEGRATION_PENDING_GRACE=120)
    def test_interrupted_sale_swept_after_grace(self):
        """
        Test: A sale whose request died before the inventory call is not lost.

        Given: A sale committed PENDING, then the process fails
        When: The sweep runs before and after the grace period
        Then: It is left alone at first, then decremented once
        """
        data = sale_payload(product_id=self.product.id, use_inventory_integration=True)
        with patch('sales.services._apply_integration', side_effect=RuntimeError('worker killed')):
            with self.assertRaises(RuntimeError):
                services.create_sale(data, gateway=gateway(django_transport()))

        sale = Sale.objects.get()
        self.assertEqual(sale.integration_status, Sale.IntegrationStatus.PENDING)
        self.assertTrue(sale.needs_reconciliation)

        with patch('sales.integration.get_inventory_gateway', return_value=gateway(django_transport())):
            self.assertEqual(reconcile_failed_integrations(), {'checked': 0, 'succeeded': 0, 'failed': 0})

            Sale.objects.filter(pk=sale.pk).update(created_at=timezone.now() - timedelta(minutes=10))
            stats = reconcile_failed_integrations()

        self.assertEqual(stats, {'checked': 1, 'succeeded': 1, 'failed': 0})
        sale.refresh_from_db()
        self.assertEqual(sale.integration_status, Sale.IntegrationStatus.SUCCEEDED)
        self.assertEqual(self._stock(), 8)

    def test_reconcile_with_nothing_pending(self):
        self.assertEqual(reconcile_failed_integrations(), {'checked': 0, 'succeeded': 0, 'failed': 0})

    def test_retry_task(self):
        sale = self._failed_sale()

        with patch('sales.services.get_inventory_gateway', return_value=gateway(django_transport())):
            result = retry_failed_integration(sale.id)

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['new_stock'], 8)
        self.assertEqual(retry_failed_integration(sale.id)['status'], 'skipped')
        self.assertEqual(retry_failed_integration(99999)['status'], 'error')


class SaleApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.product = create_product(name='Paint Roller', price=Decimal('6.00'), stock_quantity=10)

    def test_create_sale_with_unreachable_inventory(self):
        with patch('sales.services.get_inventory_gateway', return_value=gateway(failing_transport())):
            response = self.client.post(
                '/api/sales/',
                sale_payload(product_id=self.product.id, use_inventory_integration=True),
                format='json',
            )

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['integration_status'], 'failed_warning')
        self.assertIn('integration_warning', data)
        self.assertNotIn('inventory_integration', data)
        self.assertEqual(Sale.objects.count(), 1)
        self.assertEqual(Product.objects.get(pk=self.product.pk).stock_quantity, 10)

    def test_create_sale_with_inventory(self):
        with patch('sales.services.get_inventory_gateway', return_value=gateway(django_transport())):
            response = self.client.post(
                '/api/sales/',
                sale_payload(product_id=self.product.id, use_inventory_integration=True, quantity=3),
                format='json',
            )

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['productName'], 'Claw Hammer')
        self.assertEqual(data['total_price'], '37.50')
        self.assertEqual(data['inventory_integration'], {'previous_stock': 10, 'new_stock': 7})

    def test_create_sale_validation_error(self):
        response = self.client.post('/api/sales/', {'productName': 'Hammer'}, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()['detail'],
            'Missing required fields: date, productName, price, quantity, category',
        )

    def test_list_filters(self):
        services.create_sale(sale_payload())
        services.create_sale(sale_payload(category='Paint', productName='Primer', date='2024-06-01'))

        self.assertEqual(len(self.client.get('/api/sales/').json()), 2)
        self.assertEqual(len(self.client.get('/api/sales/', {'category': 'Paint'}).json()), 1)
        self.assertEqual(len(self.client.get('/api/sales/', {'start_date': '2024-05-15'}).json()), 1)
        self.assertEqual(len(self.client.get('/api/sales/', {'search': 'primer'}).json()), 1)

    def test_update_recomputes_total(self):
        sale = services.create_sale(sale_payload(tax_amount='1.00')).sale

        response = self.client.put(f'/api/sales/{sale.id}/', {'quantity': 4}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['total_price'], '51.00')

        response = self.client.put(f'/api/sales/{sale.id}/', {'price': 0}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_delete(self):
        sale = services.create_sale(sale_payload()).sale

        self.assertEqual(self.client.delete(f'/api/sales/{sale.id}/').status_code, 204)
        self.assertFalse(Sale.objects.filter(pk=sale.pk).exists())

    def test_retry_integration_endpoint(self):
        sale = services.create_sale(
            sale_payload(product_id=self.product.id, use_inventory_integration=True),
            gateway=gateway(failing_transport()),
        ).sale

        with patch('sales.views.get_inventory_gateway', return_value=gateway(django_transport())):
            response = self.client.post(f'/api/sales/{sale.id}/retry-integration/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['integration_status'], 'succeeded')
        self.assertEqual(Product.objects.get(pk=self.product.pk).stock_quantity, 8)
