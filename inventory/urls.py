"""
URL routing for inventory and integration API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Products
    path('products/', views.ProductListCreateView.as_view(), name='product-list'),
    path('products/low-stock/', views.LowStockProductListView.as_view(), name='product-low-stock'),
    path('products/<int:pk>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('products/<int:pk>/stock/', views.ProductStockView.as_view(), name='product-stock'),
    path('products/<int:pk>/movements/', views.ProductMovementListView.as_view(), name='product-movements'),

    # Integration contract for the sales service
    path('integration/products/search/', views.IntegrationProductSearchView.as_view(), name='integration-product-search'),
    path('integration/products/<int:pk>/', views.IntegrationProductView.as_view(), name='integration-product'),
    path(
        'integration/products/<int:pk>/update-stock/',
        views.IntegrationUpdateStockView.as_view(),
        name='integration-update-stock',
    ),
    path('integration/availability/<int:pk>/', views.IntegrationAvailabilityView.as_view(), name='integration-availability'),
    path('integration/low-stock/', views.IntegrationLowStockView.as_view(), name='integration-low-stock'),
]
