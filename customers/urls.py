"""
URL routing for customer and wishlist API endpoints.
"""
from django.urls import path
from . import views

app_name = 'customers'

urlpatterns = [
    path('customers/', views.CustomerListCreateView.as_view(), name='customer-list'),
    path('customers/<int:pk>/', views.CustomerDetailView.as_view(), name='customer-detail'),
    path('customers/<int:customer_id>/wishlist/', views.CustomerWishlistView.as_view(), name='wishlist-list'),
    path('customers/<int:customer_id>/wishlist/stats/', views.WishlistStatsView.as_view(), name='wishlist-stats'),
    path('customers/<int:customer_id>/wishlist/convert/', views.WishlistConvertView.as_view(), name='wishlist-convert'),
    path('wishlist/<int:pk>/', views.WishlistItemDetailView.as_view(), name='wishlist-detail'),
]
