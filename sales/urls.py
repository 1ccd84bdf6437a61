"""
URL routing for sale API endpoints.
"""
from django.urls import path
from . import views

app_name = 'sales'

urlpatterns = [
    path('sales/', views.SaleListCreateView.as_view(), name='sale-list'),
    path('sales/<int:pk>/', views.SaleDetailView.as_view(), name='sale-detail'),
    path('sales/<int:pk>/retry-integration/', views.SaleRetryIntegrationView.as_view(), name='sale-retry-integration'),
]
