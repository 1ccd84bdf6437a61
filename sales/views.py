"""
Sale API Views.

Implements:
- GET /sales/ - List sales with filters
- POST /sales/ - Record a sale, optionally decrementing inventory
- GET/PUT/PATCH/DELETE /sales/{id}/
- POST /sales/{id}/retry-integration/ - Re-attempt a failed inventory update
"""
import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .integration import get_inventory_gateway
from .models import Sale
from .serializers import SaleCreateResponseSerializer, SaleListSerializer, SaleSerializer

logger = logging.getLogger(__name__)


class SaleListCreateView(generics.ListCreateAPIView):
    """
    GET: List sales
    POST: Record a sale

    Query Parameters (GET):
        - category: Filter by category
        - date: Exact sale date (YYYY-MM-DD)
        - start_date / end_date: Date range (inclusive)
        - search: Match product name, sale number or notes
        - integration_status: not_requested, pending, succeeded, failed_warning

    Request Body (POST):
    {
        "date": "2024-05-01",
        "productName": "Hammer",
        "price": 12.5,
        "quantity": 2,
        "category": "Tools",
        "product_id": 7,
        "use_inventory_integration": true
    }
    """
    serializer_class = SaleListSerializer

    def get_queryset(self):
        queryset = Sale.objects.all()
        params = self.request.query_params

        if params.get('category'):
            queryset = queryset.filter(category=params['category'])
        if params.get('date'):
            queryset = queryset.filter(date=params['date'])
        if params.get('start_date'):
            queryset = queryset.filter(date__gte=params['start_date'])
        if params.get('end_date'):
            queryset = queryset.filter(date__lte=params['end_date'])

        search = params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(product_name__icontains=search) |
                Q(sale_number__icontains=search) |
                Q(notes__icontains=search)
            )

        integration_status = params.get('integration_status', '').lower()
        if integration_status in Sale.IntegrationStatus.values:
            queryset = queryset.filter(integration_status=integration_status)

        return queryset.order_by('-date', '-created_at')

    def create(self, request, *args, **kwargs):
        """
        Returns:
            - 201: Sale recorded (with inventory_integration or integration_warning)
            - 400: Validation error, nothing written
        """
        result = services.create_sale(request.data)
        serializer = SaleCreateResponseSerializer(
            result.sale,
            inventory_update=result.inventory_update,
            warning=result.warning,
        )
        return Response(serializer.data, status=status.HTTP_201_CREATED)


class SaleDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a sale
    PUT/PATCH: Update sale fields (total is recomputed)
    DELETE: Delete a sale
    """
    queryset = Sale.objects.all()
    serializer_class = SaleSerializer

    def update(self, request, *args, **kwargs):
        sale = self.get_object()
        sale = services.update_sale(sale, request.data)
        return Response(SaleSerializer(sale).data)

    def perform_destroy(self, instance):
        services.delete_sale(instance)


class SaleRetryIntegrationView(APIView):
    """
    POST: Re-attempt the inventory decrement of a sale whose integration failed.

    Returns the sale with inventory_integration or integration_warning.
    """

    def post(self, request, pk):
        sale = get_object_or_404(Sale, pk=pk)
        with get_inventory_gateway() as gateway:
            result = services.retry_sale_integration(sale, gateway=gateway)
        serializer = SaleCreateResponseSerializer(
            result.sale,
            inventory_update=result.inventory_update,
            warning=result.warning,
        )
        return Response(serializer.data)
