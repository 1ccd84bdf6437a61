"""
Inventory Gateway - HTTP client for the inventory service's integration API.

The sales side never touches stock directly; it asks the inventory service
to decrement through POST /products/{id}/update-stock/. There is no
distributed transaction: callers decide what to do with a failure.

Failure classes (all IntegrationFailure):
    - IntegrationUnavailable: connection refused, DNS failure, timeout
    - IntegrationRejected: 4xx, e.g. insufficient stock or unknown product
    - IntegrationServerError: 5xx, any other httpx error, or a 2xx/3xx
      response that is not a JSON body with success: true
"""
import logging
from typing import Dict, List, Optional

import httpx
from django.conf import settings

from core.exceptions import (
    IntegrationFailure,
    IntegrationRejected,
    IntegrationServerError,
    IntegrationUnavailable,
)

logger = logging.getLogger(__name__)


class InventoryGateway:
    """
    Client for the inventory integration endpoints.

    One instance per unit of work; pass it explicitly to the services that
    need it. Use as a context manager or call close().

    Usage:
        with InventoryGateway() as gateway:
            gateway.decrement_stock(product_id=7, quantity=2)
    """

    def __init__(self, base_url: str = None, timeout: float = None, transport: httpx.BaseTransport = None):
        self.base_url = (base_url or settings.INVENTORY_API_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.INVENTORY_API_TIMEOUT
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={'Accept': 'application/json'},
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Inventory service timed out on {method} {path}: {e}")
            raise IntegrationUnavailable(f"Inventory service timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            logger.warning(f"Inventory service unreachable on {method} {path}: {e}")
            raise IntegrationUnavailable(f"Inventory service unreachable: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Inventory call {method} {path} failed: {e!r}")
            raise IntegrationServerError(f"Inventory call failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code >= 500:
            logger.error(f"Inventory service error {response.status_code} on {method} {path}")
            raise IntegrationServerError(
                payload.get('error') or f"Inventory service error ({response.status_code})",
                status_code=response.status_code,
                payload=payload,
            )
        if response.status_code >= 400:
            reason = payload.get('error') or payload.get('detail') or f"HTTP {response.status_code}"
            logger.info(f"Inventory service rejected {method} {path}: {reason}")
            raise IntegrationRejected(reason, status_code=response.status_code, payload=payload)
        if not response.is_success or payload.get('success') is not True:
            # Redirects, HTML pages and empty bodies never count as applied
            logger.error(f"Unexpected inventory response {response.status_code} on {method} {path}")
            raise IntegrationServerError(
                payload.get('error') or f"Unexpected inventory response ({response.status_code})",
                status_code=response.status_code,
                payload=payload,
            )

        return payload

    def decrement_stock(self, product_id: int, quantity: int, reference: Optional[Dict] = None) -> Dict:
        """
        Ask the inventory service to subtract stock.

        Returns:
            {'previous_stock': int, 'new_stock': int}
        """
        body = {'quantity': quantity, 'operation': 'subtract'}
        if reference:
            body['reference'] = reference
        payload = self._request('POST', f'/products/{product_id}/update-stock/', json=body)
        update = {
            'previous_stock': payload.get('previous_stock'),
            'new_stock': payload.get('new_stock'),
        }
        for value in update.values():
            if not isinstance(value, int) or isinstance(value, bool):
                logger.error(f"Inventory response for product {product_id} carries no stock snapshot")
                raise IntegrationServerError(
                    "Inventory response did not confirm the stock change",
                    status_code=200,
                    payload=payload,
                )
        return update

    def get_product(self, product_id: int) -> Dict:
        return self._request('GET', f'/products/{product_id}/').get('product', {})

    def check_availability(self, product_id: int) -> Dict:
        return self._request('GET', f'/availability/{product_id}/').get('availability', {})

    def search_products(self, query: str, limit: int = 10) -> List[Dict]:
        payload = self._request('GET', '/products/search/', params={'query': query, 'limit': limit})
        return payload.get('products', [])

    def low_stock_products(self) -> List[Dict]:
        return self._request('GET', '/low-stock/').get('low_stock_products', [])

    def health_check(self) -> bool:
        try:
            self._request('GET', '/low-stock/')
        except IntegrationFailure:
            return False
        return True


def get_inventory_gateway() -> InventoryGateway:
    """Build a gateway from settings. Views call this once per request."""
    return InventoryGateway()
