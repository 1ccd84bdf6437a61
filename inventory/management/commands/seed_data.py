"""
Management command to seed the database with sample data.

Generates:
- Products with an opening stock movement each
- Customers
- Wishlist items in every status

Usage:
    python manage.py seed_data
    python manage.py seed_data --products 500 --customers 50
    python manage.py seed_data --clear  # Clear sales, wishlists and customers first

Products and movements are never cleared: the stock ledger is append-only.
"""
import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from inventory.models import Product, StockMovement


class Command(BaseCommand):
    help = 'Seed the database with sample products, opening stock, customers and wishlists'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear sales, wishlist items and customers before seeding',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=200,
            help='Number of products to create (default: 200)',
        )
        parser.add_argument(
            '--customers',
            type=int,
            default=25,
            help='Number of customers to create (default: 25)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            products = self._create_products(options['products'])
            customers = self._create_customers(options['customers'])
            self._create_wishlists(customers, products)

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        from customers.models import Customer, WishlistItem
        from sales.models import Sale

        Sale.objects.all().delete()
        WishlistItem.objects.all().delete()
        Customer.objects.all().delete()

        self.stdout.write(self.style.WARNING('Sales, wishlist items and customers cleared.'))

    def _create_products(self, count):
        """Create products and record each opening balance in the ledger."""
        product_templates = {
            'Tools': ['Claw Hammer', 'Screwdriver Set', 'Cordless Drill', 'Tape Measure', 'Utility Knife'],
            'Hardware': ['Wood Screws', 'Wall Anchors', 'Hinge Pair', 'Cabinet Handle', 'Padlock'],
            'Paint': ['Interior Emulsion', 'Wood Stain', 'Primer', 'Paint Roller', 'Masking Tape'],
            'Electrical': ['LED Bulb', 'Extension Cord', 'Wall Switch', 'Cable Ties', 'Junction Box'],
            'Plumbing': ['PVC Pipe', 'Ball Valve', 'Teflon Tape', 'Sink Trap', 'Hose Clamp'],
            'Garden': ['Garden Hose', 'Pruning Shears', 'Plant Pot', 'Potting Soil', 'Rake'],
        }
        sizes = ['S', 'M', 'L', 'XL', '10mm', '20mm', '1L', '5L']

        existing_skus = set(Product.objects.values_list('sku', flat=True))
        products = []

        self.stdout.write(f'Creating {count} products...')

        for i in range(count):
            category = random.choice(list(product_templates))
            base_name = random.choice(product_templates[category])
            size = random.choice(sizes)

            sku = f"{category[:3].upper()}-{i + 1:05d}"
            if sku in existing_skus:
                continue
            existing_skus.add(sku)

            cost = Decimal(str(round(random.uniform(1, 150), 2)))
            min_level = random.choice([5, 10, 15])
            products.append(Product(
                name=f"{base_name} {size}",
                sku=sku,
                barcode=f"{random.randint(10**11, 10**12 - 1)}{i % 10}",
                category=category,
                price=(cost * Decimal('1.4')).quantize(Decimal('0.01')),
                cost=cost,
                stock_quantity=random.randint(0, 120),
                min_stock_level=min_level,
                max_stock_level=min_level * 10,
                is_active=random.random() > 0.05,
            ))

        created = Product.objects.bulk_create(products, ignore_conflicts=True)

        # ignore_conflicts leaves pks unset on some backends, so reload by SKU
        by_sku = Product.objects.in_bulk([p.sku for p in created], field_name='sku')
        movements = [
            StockMovement(
                product=product,
                movement_type=StockMovement.MovementType.IN,
                quantity=product.stock_quantity,
                previous_quantity=0,
                new_quantity=product.stock_quantity,
                reference_type='opening_balance',
                reference_id=str(product.id),
                notes='Opening stock',
            )
            for product in by_sku.values()
            if product.stock_quantity > 0
        ]
        StockMovement.objects.bulk_create(movements)

        self.stdout.write(self.style.SUCCESS(
            f'Created {len(by_sku)} products with {len(movements)} opening movements'
        ))
        return list(by_sku.values())

    def _create_customers(self, count):
        from customers.models import Customer

        first_names = ['Ana', 'Ben', 'Carla', 'Dev', 'Elif', 'Farid', 'Grace', 'Hugo', 'Ines', 'Jon']
        last_names = ['Silva', 'Okafor', 'Novak', 'Reyes', 'Tanaka', 'Moreau', 'Keller', 'Haddad']

        customers = []
        for i in range(count):
            name = f"{random.choice(first_names)} {random.choice(last_names)}"
            customers.append(Customer(
                name=name,
                email=f"customer{i + 1}.{random.randint(1000, 9999)}@example.com",
                phone=f"+1-555-{random.randint(1000, 9999)}",
                customer_type=random.choice(Customer.CustomerType.values),
            ))

        Customer.objects.bulk_create(customers, ignore_conflicts=True)
        customers = list(Customer.objects.all())
        self.stdout.write(self.style.SUCCESS(f'Created {len(customers)} customers'))
        return customers

    def _create_wishlists(self, customers, products):
        from customers.models import WishlistItem

        if not products:
            return

        today = timezone.localdate()
        statuses = [
            WishlistItem.Status.PENDING,
            WishlistItem.Status.PENDING,
            WishlistItem.Status.CONFIRMED,
            WishlistItem.Status.CANCELLED,
        ]

        created = 0
        for customer in customers:
            for product in random.sample(products, k=min(len(products), random.randint(0, 4))):
                quantity = random.randint(1, 5)
                # save() derives total_price, so items are created one by one
                WishlistItem.objects.create(
                    customer=customer,
                    product=product,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=product.price,
                    status=random.choice(statuses),
                    priority=random.choice(WishlistItem.Priority.values),
                    requested_date=today,
                    estimated_delivery_date=today + timedelta(days=random.randint(3, 30)),
                )
                created += 1

        self.stdout.write(self.style.SUCCESS(f'Created {created} wishlist items'))
