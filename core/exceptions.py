"""
Domain error taxonomy shared by the inventory, sales and customer apps.

Services raise these; the DRF exception handler below turns any
``ServiceError`` into a JSON response with the matching status code.
Integration failures are never rendered directly: the sale recorder
downgrades them to a warning on an otherwise successful response.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""
    status_code = status.HTTP_400_BAD_REQUEST
    error = 'Service Error'

    def __init__(self, message=None):
        self.message = message or self.error
        super().__init__(self.message)


class InputValidationError(ServiceError):
    """Malformed or missing input, rejected before any write."""
    error = 'Validation Error'


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    error = 'Not Found'


class NoEligibleItemsError(NotFoundError):
    """No wishlist item in the request qualifies for conversion."""
    error = 'No valid wishlist items found'


class InsufficientStockError(ServiceError):
    """Raised when a stock decrement would drive quantity below zero."""
    error = 'Insufficient stock'

    def __init__(self, product_id: int, requested: int, available: int = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__('Insufficient stock')

    @property
    def detail(self) -> str:
        if self.available is None:
            return f"Product {self.product_id}: requested {self.requested}"
        return (
            f"Product {self.product_id}: requested {self.requested}, "
            f"available {self.available}"
        )


class ConflictError(ServiceError):
    """Duplicate SKU or barcode."""
    status_code = status.HTTP_409_CONFLICT
    error = 'Conflict'


class DuplicateReferenceError(ConflictError):
    """A movement for this product, type and reference is already recorded."""
    error = 'Duplicate Reference'


class TransactionFailure(ServiceError):
    """A batch could not commit; every write in it was rolled back."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = 'Transaction Failure'


class IntegrationFailure(Exception):
    """
    Remote inventory call failed.

    ``kind`` tells the caller how to treat it:
        - connection: service unreachable or timed out
        - application: 4xx, the inventory service refused the request
        - server: 5xx, transient and eligible for reconciliation
    """
    kind = 'connection'

    def __init__(self, message: str, status_code: int = None, payload: dict = None):
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class IntegrationUnavailable(IntegrationFailure):
    kind = 'connection'


class IntegrationRejected(IntegrationFailure):
    kind = 'application'


class IntegrationServerError(IntegrationFailure):
    kind = 'server'


def api_exception_handler(exc, context):
    """DRF exception handler that understands ``ServiceError``."""
    if isinstance(exc, ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error}: {exc.message}")
        body = {'error': exc.error, 'detail': getattr(exc, 'detail', exc.message)}
        return Response(body, status=exc.status_code)

    return exception_handler(exc, context)
