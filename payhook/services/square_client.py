"""Square API client for order lookups."""
import requests
from typing import Dict, Any, Optional
from flask import current_app

from payhook.exceptions import IntegrationError, NotConfiguredError


class SquareClient:
    """Client for the Square Orders API."""

    PRODUCTION_URL = "https://connect.squareup.com"
    SANDBOX_URL = "https://connect.squareupsandbox.com"

    def __init__(
        self,
        access_token: Optional[str] = None,
        environment: str = 'sandbox',
        api_version: str = '2024-10-17',
        timeout: int = 10
    ):
        """
        Initialize Square client.

        Args:
            access_token: Square access token
            environment: 'sandbox' or 'production'
            api_version: Value for the Square-Version header
            timeout: Request timeout in seconds
        """
        if not access_token:
            raise NotConfiguredError('square')

        self.base_url = self.PRODUCTION_URL if environment == 'production' else self.SANDBOX_URL
        self.timeout = timeout
        self.headers = {
            'Authorization': f'Bearer {access_token}',
            'Square-Version': api_version,
            'Content-Type': 'application/json'
        }

    def get_order(self, order_id: str) -> Dict[str, Any]:
        """
        Retrieve a Square order.

        Args:
            order_id: Square order ID

        Returns:
            Dict with the order fields we use: id, reference_id, state

        Raises:
            IntegrationError: If the request fails or the order is missing
        """
        url = f"{self.base_url}/v2/orders/{order_id}"

        current_app.logger.info(f"[SQUARE] Getting order: {order_id}")

        try:
            response = requests.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            current_app.logger.error(f"[SQUARE] Error getting order {order_id}: {e.response.text}")
            raise IntegrationError(
                f"Square order lookup failed ({e.response.status_code})", provider='square'
            ) from e
        except requests.RequestException as e:
            current_app.logger.error(f"[SQUARE] Network error getting order {order_id}: {e}")
            raise IntegrationError(f"Square order lookup failed: {e}", provider='square') from e

        order = data.get('order')
        if not order:
            raise IntegrationError(f"Square returned no order for {order_id}", provider='square')

        return {
            'id': order.get('id'),
            'reference_id': order.get('reference_id'),
            'state': order.get('state'),
        }


def is_square_configured(config=None) -> bool:
    """Whether Square credentials are configured (access token + location)."""
    cfg = config if config is not None else current_app.config
    return bool(cfg.get('SQUARE_ACCESS_TOKEN') and cfg.get('SQUARE_LOCATION_ID'))


def get_square_client() -> Optional[SquareClient]:
    """Build a client from app config, or None when Square is not configured."""
    if not is_square_configured():
        return None
    cfg = current_app.config
    return SquareClient(
        access_token=cfg.get('SQUARE_ACCESS_TOKEN'),
        environment=cfg.get('SQUARE_ENVIRONMENT', 'sandbox'),
        api_version=cfg.get('SQUARE_API_VERSION', '2024-10-17'),
        timeout=cfg.get('HTTP_TIMEOUT', 10),
    )
