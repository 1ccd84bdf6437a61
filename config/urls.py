"""
URL configuration for the Retail Stock Ledger service.
"""
from django.contrib import admin
from django.db import connection
from django.http import JsonResponse
from django.urls import path, include


def health_check(request):
    """Health check endpoint for container orchestration."""
    try:
        connection.ensure_connection()
    except Exception as e:
        return JsonResponse(
            {'status': 'unhealthy', 'service': 'retail-ledger-api', 'database': str(e)},
            status=503,
        )
    return JsonResponse({'status': 'healthy', 'service': 'retail-ledger-api', 'database': 'ok'})


urlpatterns = [
    path('admin/', admin.site.urls),
    path('health/', health_check, name='health-check'),
    path('api/', include('inventory.urls')),
    path('api/', include('sales.urls')),
    path('api/', include('customers.urls')),
]
