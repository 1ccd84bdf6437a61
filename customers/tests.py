"""
Tests for wishlist management and wishlist conversion.

Test Cases:
1. All eligible items convert into sales in one batch
2. A failure on the 2nd sale insert leaves no sales and no status changes
3. Cancelled, converted and foreign items are never converted
4. Stock decrement on conversion is configurable
5. Wishlist status flow and stats
"""
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from core.exceptions import (
    InputValidationError,
    InsufficientStockError,
    NoEligibleItemsError,
    TransactionFailure,
)
from customers.models import Customer, WishlistItem
from customers.services import convert_wishlist, update_wishlist_item, wishlist_stats
from inventory.models import Product, StockMovement
from inventory.services import create_product
from sales.models import Sale


class WishlistConversionTestCase(TestCase):
    """Test cases for convert_wishlist."""

    def setUp(self):
        self.customer = Customer.objects.create(name='Ana Silva', email='ana@example.com')
        self.other_customer = Customer.objects.create(name='Ben Okafor', email='ben@example.com')

        self.hammer = create_product(name='Claw Hammer', price=Decimal('12.50'), stock_quantity=10)
        self.drill = create_product(name='Cordless Drill', price=Decimal('80.00'), stock_quantity=1)

        self.item1 = WishlistItem.objects.create(
            customer=self.customer, product=self.hammer, product_name='Claw Hammer',
            quantity=2, unit_price=Decimal('12.50'),
        )
        self.item2 = WishlistItem.objects.create(
            customer=self.customer, product=self.drill, product_name='Cordless Drill',
            quantity=1, unit_price=Decimal('80.00'), status=WishlistItem.Status.CONFIRMED,
        )
        self.item3 = WishlistItem.objects.create(
            customer=self.customer, product=None, product_name='Custom Shelf',
            quantity=3, unit_price=Decimal('15.00'),
        )
        self.item_ids = [self.item1.id, self.item2.id, self.item3.id]

    def _statuses(self):
        return list(
            WishlistItem.objects.filter(id__in=self.item_ids).order_by('id').values_list('status', flat=True)
        )

    def test_all_items_converted(self):
        """
        Test: Converting 3 eligible items creates 3 sales.

        Then: every item is converted, each sale copies price and quantity
        """
        result = convert_wishlist(self.customer.id, self.item_ids, decrement_stock=False)

        self.assertEqual(result.converted_count, 3)
        self.assertEqual(len(result.sales), 3)
        self.assertEqual(self._statuses(), ['converted'] * 3)

        sale = Sale.objects.get(notes=f'Converted from wishlist item #{self.item1.id}')
        self.assertEqual(sale.category, 'Wishlist Conversion')
        self.assertEqual(sale.product_id, self.hammer.id)
        self.assertEqual(sale.quantity, 2)
        self.assertEqual(sale.total_price, Decimal('25.00'))
        self.assertEqual(sale.customer_id, self.customer.id)

        self.assertEqual(Product.objects.get(pk=self.hammer.pk).stock_quantity, 10)

    def test_failure_on_second_insert_rolls_back_batch(self):
        """
        Test: Partial conversion is never committed.

        Given: 3 eligible items
        When: The 2nd sale insert fails
        Then: No sale exists and no item changed status
        """
        real_create = Sale.objects.create
        calls = []

        def fail_second(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise DatabaseError('insert failed')
            return real_create(**kwargs)

        with patch.object(Sale.objects, 'create', side_effect=fail_second):
            with self.assertRaises(TransactionFailure):
                convert_wishlist(self.customer.id, self.item_ids, decrement_stock=True)

        self.assertEqual(len(calls), 2)
        self.assertEqual(Sale.objects.count(), 0)
        self.assertEqual(self._statuses(), ['pending', 'confirmed', 'pending'])
        self.assertEqual(Product.objects.get(pk=self.hammer.pk).stock_quantity, 10)
        self.assertFalse(StockMovement.objects.filter(reference_type='wishlist_conversion').exists())

    def test_ineligible_items_skipped(self):
        cancelled = WishlistItem.objects.create(
            customer=self.customer, product_name='Old Request', quantity=1,
            unit_price=Decimal('5.00'), status=WishlistItem.Status.CANCELLED,
        )
        foreign = WishlistItem.objects.create(
            customer=self.other_customer, product_name='Their Item', quantity=1,
            unit_price=Decimal('5.00'),
        )

        result = convert_wishlist(
            self.customer.id, [self.item1.id, cancelled.id, foreign.id], decrement_stock=False
        )

        self.assertEqual(result.converted_count, 1)
        cancelled.refresh_from_db()
        foreign.refresh_from_db()
        self.assertEqual(cancelled.status, WishlistItem.Status.CANCELLED)
        self.assertEqual(foreign.status, WishlistItem.Status.PENDING)

    def test_no_eligible_items(self):
        convert_wishlist(self.customer.id, [self.item1.id], decrement_stock=False)

        with self.assertRaises(NoEligibleItemsError):
            convert_wishlist(self.customer.id, [self.item1.id], decrement_stock=False)
        with self.assertRaises(NoEligibleItemsError):
            convert_wishlist(self.other_customer.id, self.item_ids, decrement_stock=False)

        self.assertEqual(Sale.objects.count(), 1)

    def test_invalid_ids(self):
        for ids in ([], None, 'abc', ['x']):
            with self.assertRaises(InputValidationError):
                convert_wishlist(self.customer.id, ids)

    def test_conversion_decrements_stock_when_enabled(self):
        result = convert_wishlist(self.customer.id, self.item_ids, decrement_stock=True)

        self.assertEqual(result.converted_count, 3)
        self.assertEqual(Product.objects.get(pk=self.hammer.pk).stock_quantity, 8)
        self.assertEqual(Product.objects.get(pk=self.drill.pk).stock_quantity, 0)
        movement = StockMovement.objects.get(product=self.hammer, movement_type='out')
        self.assertEqual(movement.reference_type, 'wishlist_conversion')
        self.assertEqual(movement.reference_id, str(self.item1.id))

    @override_settings(WISHLIST_CONVERSION_DECREMENTS_STOCK=True)
    def test_insufficient_stock_aborts_batch(self):
        WishlistItem.objects.filter(pk=self.item2.pk).update(quantity=5)

        with self.assertRaises(InsufficientStockError):
            convert_wishlist(self.customer.id, self.item_ids)

        self.assertEqual(Sale.objects.count(), 0)
        self.assertEqual(self._statuses(), ['pending', 'confirmed', 'pending'])
        self.assertEqual(Product.objects.get(pk=self.hammer.pk).stock_quantity, 10)

    @override_settings(WISHLIST_CONVERSION_DECREMENTS_STOCK=False)
    def test_setting_default_leaves_stock(self):
        convert_wishlist(self.customer.id, self.item_ids)

        self.assertEqual(Product.objects.get(pk=self.drill.pk).stock_quantity, 1)

    def test_unpriced_item_blocks_batch(self):
        free_item = WishlistItem.objects.create(
            customer=self.customer, product_name='Sample Pack', quantity=1, unit_price=Decimal('0.00'),
        )

        with self.assertRaises(InputValidationError):
            convert_wishlist(self.customer.id, [self.item1.id, free_item.id])

        self.assertEqual(Sale.objects.count(), 0)
        self.assertEqual(WishlistItem.objects.get(pk=free_item.pk).status, WishlistItem.Status.PENDING)
        self.assertEqual(self._statuses()[0], WishlistItem.Status.PENDING)


class WishlistItemTestCase(TestCase):

    def setUp(self):
        self.customer = Customer.objects.create(name='Carla Novak', email='carla@example.com')
        self.item = WishlistItem.objects.create(
            customer=self.customer, product_name='Garden Hose', quantity=2, unit_price=Decimal('19.99'),
        )

    def test_total_price_derived(self):
        self.assertEqual(self.item.total_price, Decimal('39.98'))

        update_wishlist_item(self.item, quantity=3)
        self.item.refresh_from_db()
        self.assertEqual(self.item.total_price, Decimal('59.97'))

    def test_status_flow(self):
        update_wishlist_item(self.item, status=WishlistItem.Status.CONFIRMED)
        update_wishlist_item(self.item, status=WishlistItem.Status.CANCELLED)

        for status in (WishlistItem.Status.PENDING, WishlistItem.Status.CONFIRMED):
            with self.assertRaises(InputValidationError):
                update_wishlist_item(self.item, status=status)
        with self.assertRaises(InputValidationError):
            update_wishlist_item(self.item, quantity=10)

    def test_converted_only_through_conversion(self):
        with self.assertRaises(InputValidationError):
            update_wishlist_item(self.item, status=WishlistItem.Status.CONVERTED)

    def test_confirmed_cannot_return_to_pending(self):
        update_wishlist_item(self.item, status=WishlistItem.Status.CONFIRMED)
        with self.assertRaises(InputValidationError):
            update_wishlist_item(self.item, status=WishlistItem.Status.PENDING)

    def test_stale_copy_cannot_undo_conversion(self):
        """
        Test: an edit built on a copy loaded before a conversion committed.

        Given: a copy of a pending item, then the item is converted
        When: the stale copy is used to cancel it
        Then: the edit is rejected and the item stays converted
        """
        stale = WishlistItem.objects.get(pk=self.item.pk)
        convert_wishlist(self.customer.id, [self.item.id])

        with self.assertRaises(InputValidationError):
            update_wishlist_item(stale, status=WishlistItem.Status.CANCELLED)

        self.item.refresh_from_db()
        self.assertEqual(self.item.status, WishlistItem.Status.CONVERTED)
        self.assertEqual(Sale.objects.count(), 1)

    def test_update_returns_current_row(self):
        stale = WishlistItem.objects.get(pk=self.item.pk)
        WishlistItem.objects.filter(pk=self.item.pk).update(notes='Call before delivery')

        updated = update_wishlist_item(stale, quantity=4)

        self.assertEqual(updated.notes, 'Call before delivery')
        self.assertEqual(updated.total_price, Decimal('79.96'))

    def test_stats(self):
        WishlistItem.objects.create(
            customer=self.customer, product_name='Rake', quantity=1,
            unit_price=Decimal('10.00'), status=WishlistItem.Status.CANCELLED,
        )
        WishlistItem.objects.create(
            customer=self.customer, product_name='Pruning Shears', quantity=1,
            unit_price=Decimal('8.00'), status=WishlistItem.Status.CONFIRMED,
        )

        stats = wishlist_stats(self.customer.id)

        self.assertEqual(stats['total_items'], 3)
        self.assertEqual(stats['pending_items'], 1)
        self.assertEqual(stats['confirmed_items'], 1)
        self.assertEqual(stats['cancelled_items'], 1)
        self.assertEqual(stats['converted_items'], 0)
        self.assertEqual(stats['total_value'], Decimal('47.98'))
        self.assertEqual(stats['total_quantity'], 4)


class CustomerApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.customer = Customer.objects.create(name='Dev Reyes', email='dev@example.com')
        self.product = create_product(name='LED Bulb', price=Decimal('4.00'), stock_quantity=20)

    def _add_item(self, **overrides):
        body = {'product_id': self.product.id, 'product_name': 'LED Bulb', 'quantity': 5, 'unit_price': '4.00'}
        body.update(overrides)
        return self.client.post(f'/api/customers/{self.customer.id}/wishlist/', body, format='json')

    def test_create_and_list_customers(self):
        response = self.client.post(
            '/api/customers/', {'name': 'Elif Tanaka', 'email': 'elif@example.com'}, format='json'
        )
        self.assertEqual(response.status_code, 201)

        response = self.client.get('/api/customers/', {'search': 'elif'})
        self.assertEqual([c['name'] for c in response.json()], ['Elif Tanaka'])

    def test_add_and_list_wishlist(self):
        response = self._add_item()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['total_price'], '20.00')
        self.assertEqual(response.json()['status'], 'pending')

        self._add_item(product_name='Wall Switch', product_id=None, priority='urgent')
        listing = self.client.get(f'/api/customers/{self.customer.id}/wishlist/').json()
        self.assertEqual([item['product_name'] for item in listing], ['Wall Switch', 'LED Bulb'])

    def test_add_item_validation(self):
        self.assertEqual(self._add_item(quantity=0).status_code, 400)
        self.assertEqual(self._add_item(unit_price='0.00').status_code, 400)
        self.assertEqual(self._add_item(status='converted').status_code, 400)
        self.assertEqual(self.client.get('/api/customers/99999/wishlist/').status_code, 404)

    def test_convert_endpoint(self):
        first = self._add_item().json()['id']
        second = self._add_item(quantity=2).json()['id']

        response = self.client.post(
            f'/api/customers/{self.customer.id}/wishlist/convert/',
            {'wishlistIds': [first, second]},
            format='json',
        )

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['convertedItems'], 2)
        self.assertEqual(sorted(data['salesIds']), sorted(Sale.objects.values_list('id', flat=True)))

    def test_convert_endpoint_errors(self):
        url = f'/api/customers/{self.customer.id}/wishlist/convert/'

        self.assertEqual(self.client.post(url, {'wishlistIds': []}, format='json').status_code, 400)
        response = self.client.post(url, {'wishlistIds': [99999]}, format='json')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'No valid wishlist items found')

    def test_convert_endpoint_rollback_is_500(self):
        item_id = self._add_item().json()['id']

        with patch.object(Sale.objects, 'create', side_effect=DatabaseError('insert failed')):
            response = self.client.post(
                f'/api/customers/{self.customer.id}/wishlist/convert/',
                {'wishlistIds': [item_id]},
                format='json',
            )

        self.assertEqual(response.status_code, 500)
        self.assertEqual(WishlistItem.objects.get(pk=item_id).status, 'pending')

    def test_update_and_delete_item(self):
        item_id = self._add_item().json()['id']
        url = f'/api/wishlist/{item_id}/'

        response = self.client.patch(url, {'status': 'confirmed', 'quantity': 6}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['total_price'], '24.00')

        self.assertEqual(self.client.patch(url, {'status': 'pending'}, format='json').status_code, 400)
        self.assertEqual(self.client.delete(url).status_code, 204)
        self.assertEqual(self.client.get(url).status_code, 404)

    def test_stats_endpoint(self):
        self._add_item()

        response = self.client.get(f'/api/customers/{self.customer.id}/wishlist/stats/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['total_items'], 1)
