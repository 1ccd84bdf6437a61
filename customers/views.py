"""
Customer API Views.

Implements:
- GET/POST /customers/ and GET/PUT/PATCH /customers/{id}/
- GET/POST /customers/{id}/wishlist/
- GET /customers/{id}/wishlist/stats/
- POST /customers/{id}/wishlist/convert/ - Convert wishlist items into sales
- GET/PUT/PATCH/DELETE /wishlist/{id}/
"""
import logging

from django.db.models import Q
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .models import Customer, WishlistItem
from .serializers import (
    CustomerSerializer,
    WishlistConvertSerializer,
    WishlistItemSerializer,
)

logger = logging.getLogger(__name__)


class CustomerListCreateView(generics.ListCreateAPIView):
    """
    GET: List customers
    POST: Create a customer

    Query Parameters (GET):
        - search: Match name, email or phone
        - is_active: true/false
    """
    serializer_class = CustomerSerializer

    def get_queryset(self):
        queryset = Customer.objects.all()
        search = self.request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(email__icontains=search) |
                Q(phone__icontains=search)
            )
        is_active = self.request.query_params.get('is_active', '').lower()
        if is_active in ('true', 'false'):
            queryset = queryset.filter(is_active=is_active == 'true')
        return queryset.order_by('name')


class CustomerDetailView(generics.RetrieveUpdateAPIView):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer


class CustomerWishlistView(generics.ListCreateAPIView):
    """
    GET: Customer's wishlist, open items first, most urgent first
    POST: Add an item (status pending or confirmed)
    """
    serializer_class = WishlistItemSerializer

    def get_queryset(self):
        services.get_customer(self.kwargs['customer_id'])
        return services.ordered_wishlist(self.kwargs['customer_id'])

    def create(self, request, *args, **kwargs):
        customer = services.get_customer(self.kwargs['customer_id'])
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = services.add_wishlist_item(customer, **serializer.validated_data)
        return Response(WishlistItemSerializer(item).data, status=status.HTTP_201_CREATED)


class WishlistStatsView(APIView):
    """GET: Item counts per status, total value and quantity."""

    def get(self, request, customer_id):
        services.get_customer(customer_id)
        return Response(services.wishlist_stats(customer_id))


class WishlistConvertView(APIView):
    """
    POST: Convert wishlist items into sales in one transaction.

    Request Body:
    {"wishlistIds": [1, 2, 3]}

    Returns:
        - 200: {"message": ..., "salesIds": [...], "convertedItems": 3}
        - 400: Invalid body
        - 404: No valid wishlist items found
        - 500: Conversion rolled back
    """

    def post(self, request, customer_id):
        serializer = WishlistConvertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = services.convert_wishlist(customer_id, serializer.validated_data['wishlistIds'])
        return Response({
            'message': 'Wishlist items converted to sales successfully',
            'salesIds': result.sale_ids,
            'convertedItems': result.converted_count,
        })


class WishlistItemDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a wishlist item
    PUT/PATCH: Update it; status changes follow the wishlist status flow
    DELETE: Remove it
    """
    queryset = WishlistItem.objects.all()
    serializer_class = WishlistItemSerializer

    def update(self, request, *args, **kwargs):
        item = self.get_object()
        serializer = self.get_serializer(item, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        item = services.update_wishlist_item(item, **serializer.validated_data)
        return Response(WishlistItemSerializer(item).data)

    def perform_destroy(self, instance):
        services.delete_wishlist_item(instance)
