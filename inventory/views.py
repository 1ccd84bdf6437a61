"""
Inventory API Views.

Implements:
- Product CRUD (stock is read-only here)
- PUT /products/{id}/stock/ - ledger adjustment
- GET /products/{id}/movements/ - ledger history
- GET /products/low-stock/
- Integration endpoints consumed by the sales service under /integration/
"""
import logging

from django.db.models import Case, IntegerField, Q, Value, When
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InputValidationError, InsufficientStockError, NotFoundError
from core.rate_limiting import rate_limit
from . import services
from .models import Product, StockMovement
from .serializers import (
    IntegrationProductSerializer,
    IntegrationStockUpdateSerializer,
    LowStockProductSerializer,
    ProductCreateSerializer,
    ProductSerializer,
    StockMovementSerializer,
    StockUpdateSerializer,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Product Views
# =============================================================================

class ProductListCreateView(generics.ListCreateAPIView):
    """
    GET: List active products
    POST: Create a product; an initial stock_quantity becomes an opening movement

    Query Parameters (GET):
        - category: Filter by category
        - search: Match name, SKU or barcode
        - low_stock: Only products at or below min_stock_level (true/false)
    """

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return ProductCreateSerializer
        return ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.filter(is_active=True)

        category = self.request.query_params.get('category')
        if category:
            queryset = queryset.filter(category=category)

        search = self.request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(sku__icontains=search) |
                Q(barcode__icontains=search)
            )

        if self.request.query_params.get('low_stock', '').lower() == 'true':
            queryset = queryset.filter(id__in=services.low_stock_products().values('id'))

        return queryset.order_by('name')

    def create(self, request, *args, **kwargs):
        serializer = ProductCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = services.create_product(**serializer.validated_data)
        return Response(ProductSerializer(product).data, status=status.HTTP_201_CREATED)


class ProductDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a product
    PUT/PATCH: Update descriptive fields (stock_quantity is ignored)
    DELETE: Deactivate the product; its movements keep referencing it
    """
    queryset = Product.objects.all()
    serializer_class = ProductSerializer

    def perform_update(self, serializer):
        services.update_product(serializer.instance, **serializer.validated_data)

    def perform_destroy(self, instance):
        instance.is_active = False
        instance.save(update_fields=['is_active', 'updated_at'])
        logger.info(f"Deactivated product #{instance.id}")


class ProductStockView(APIView):
    """
    PUT: Apply a ledger movement.

    Request Body:
    {
        "quantity": 5,
        "movement_type": "in" | "out" | "adjustment",
        "reference": {"type": "purchase_order", "id": 12}
    }

    For "adjustment", quantity is the NEW ABSOLUTE stock level, not a delta.

    Returns:
        - 200: {"previous_quantity": ..., "new_quantity": ...}
        - 400: Validation error or {"error": "Insufficient stock"}
        - 404: Product not found
        - 409: A movement with this reference is already recorded
    """

    def put(self, request, pk):
        serializer = StockUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = services.adjust_stock(
            pk,
            data['quantity'],
            data['movement_type'],
            reference=data.get('reference'),
            notes=data.get('notes', ''),
        )
        return Response(result.as_dict())


class ProductMovementListView(generics.ListAPIView):
    """GET: Ledger history of a product, oldest first."""
    serializer_class = StockMovementSerializer

    def get_queryset(self):
        if not Product.objects.filter(pk=self.kwargs['pk']).exists():
            raise NotFoundError(f"Product {self.kwargs['pk']} not found")
        queryset = StockMovement.objects.filter(product_id=self.kwargs['pk'])

        movement_type = self.request.query_params.get('movement_type', '').lower()
        if movement_type in StockMovement.MovementType.values:
            queryset = queryset.filter(movement_type=movement_type)
        return queryset.order_by('created_at', 'id')


class LowStockProductListView(generics.ListAPIView):
    """GET: Products whose stock is at or below min_stock_level."""
    serializer_class = LowStockProductSerializer

    def get_queryset(self):
        return services.low_stock_products()


# =============================================================================
# Integration Views (consumed by the sales service)
# =============================================================================

def _failure(error, status_code, **extra):
    return Response({'success': False, 'error': error, **extra}, status=status_code)


class IntegrationProductView(APIView):
    """GET: Canonical product snapshot."""

    def get(self, request, pk):
        try:
            product = Product.objects.get(pk=pk)
        except Product.DoesNotExist:
            return _failure('Product not found', status.HTTP_404_NOT_FOUND)
        return Response({'success': True, 'product': IntegrationProductSerializer(product).data})


class IntegrationUpdateStockView(APIView):
    """
    POST: Record consumption (or return) of stock on behalf of the sales service.

    Request Body:
    {"quantity": 2, "operation": "subtract" | "add", "reference": {"type": "sale", "id": "SALE-..."}}

    Returns:
        - 200: {"success": true, "previous_stock": 10, "new_stock": 8}
        - 400: {"success": false, "error": "Insufficient stock", ...}
        - 404: {"success": false, "error": "Product not found"}
    """

    def post(self, request, pk):
        serializer = IntegrationStockUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return _failure('Invalid request', status.HTTP_400_BAD_REQUEST, details=serializer.errors)

        try:
            result = services.adjust_stock_once(
                pk,
                serializer.validated_data['quantity'],
                serializer.movement_type,
                reference=serializer.validated_data.get('reference'),
            )
        except NotFoundError:
            return _failure('Product not found', status.HTTP_404_NOT_FOUND)
        except InsufficientStockError as e:
            return _failure(
                'Insufficient stock', status.HTTP_400_BAD_REQUEST,
                available=e.available, requested=e.requested,
            )
        except InputValidationError as e:
            return _failure(e.message, status.HTTP_400_BAD_REQUEST)

        return Response({
            'success': True,
            'product_id': result.product_id,
            'previous_stock': result.previous_quantity,
            'new_stock': result.new_quantity,
            'replayed': result.replayed,
        })


class IntegrationAvailabilityView(APIView):
    """GET: Availability snapshot for sale entry."""

    def get(self, request, pk):
        try:
            availability = services.get_availability(pk)
        except NotFoundError:
            return _failure('Product not found', status.HTTP_404_NOT_FOUND)
        return Response({'success': True, 'availability': availability})


class IntegrationProductSearchView(APIView):
    """
    GET: Ranked product candidates for sale-entry autocomplete.

    Query Parameters:
        - query (or q): Text to match against name, SKU, barcode, description
        - limit: Maximum results (1-50, default 10)

    Name prefix matches rank before substring matches.
    """

    @rate_limit(max_requests=60, window_seconds=60, scope='integration-product-search')
    def get(self, request):
        query = (request.query_params.get('query') or request.query_params.get('q') or '').strip()
        try:
            limit = int(request.query_params.get('limit', 10))
        except ValueError:
            limit = 10
        limit = min(50, max(1, limit))

        if not query:
            return Response({'success': True, 'products': [], 'query': query, 'count': 0})

        products = Product.objects.filter(is_active=True).filter(
            Q(name__icontains=query) |
            Q(sku__icontains=query) |
            Q(barcode__icontains=query) |
            Q(description__icontains=query)
        ).annotate(
            rank=Case(
                When(name__istartswith=query, then=Value(1)),
                default=Value(2),
                output_field=IntegerField(),
            )
        ).order_by('rank', 'name')[:limit]

        data = IntegrationProductSerializer(products, many=True).data
        return Response({'success': True, 'products': data, 'query': query, 'count': len(data)})


class IntegrationLowStockView(APIView):
    """GET: Low stock list for the sales service."""

    def get(self, request):
        data = LowStockProductSerializer(services.low_stock_products(), many=True).data
        return Response({'success': True, 'low_stock_products': data, 'count': len(data)})
