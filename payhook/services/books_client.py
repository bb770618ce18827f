"""Zoho Books API client for recording customer payments against invoices."""
from datetime import date
import requests
from typing import Dict, Any, Optional
from flask import current_app

from payhook.exceptions import IntegrationError, NotConfiguredError


class BooksClient:
    """Client for the Zoho Books v3 REST API."""

    def __init__(
        self,
        organization_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_domain: str = 'https://www.zohoapis.com',
        timeout: int = 10
    ):
        if not organization_id or not access_token:
            raise NotConfiguredError('zoho')

        self.organization_id = organization_id
        self.base_url = f"{api_domain.rstrip('/')}/books/v3"
        self.timeout = timeout
        self.headers = {
            'Authorization': f'Zoho-oauthtoken {access_token}',
            'Content-Type': 'application/json'
        }

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        params = {'organization_id': self.organization_id}

        try:
            response = requests.request(
                method, url, params=params, json=payload, headers=self.headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            current_app.logger.error(f"[BOOKS] {method} {path} failed: {e.response.text}")
            raise IntegrationError(
                f"Zoho Books {method} {path} failed ({e.response.status_code})", provider='zoho'
            ) from e
        except requests.RequestException as e:
            current_app.logger.error(f"[BOOKS] {method} {path} network error: {e}")
            raise IntegrationError(f"Zoho Books {method} {path} failed: {e}", provider='zoho') from e

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        """Fetch an invoice; raises IntegrationError when it is missing."""
        data = self._request('GET', f"/invoices/{invoice_id}")
        invoice = data.get('invoice')
        if not invoice or not invoice.get('customer_id'):
            raise IntegrationError(
                f"Invoice {invoice_id} not found or missing customer_id", provider='zoho'
            )
        return invoice

    def record_payment(
        self,
        invoice_id: str,
        amount_in_cents: int,
        external_payment_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record a customer payment applied to an invoice.

        Args:
            invoice_id: Zoho Books invoice ID
            amount_in_cents: Amount paid, in cents
            external_payment_id: Square payment ID (stored as reference number)
            description: Free text shown on the payment

        Returns:
            Dict with Zoho's payment record

        Raises:
            IntegrationError: If Zoho Books rejects either call
        """
        invoice = self.get_invoice(invoice_id)
        amount = amount_in_cents / 100

        current_app.logger.info(f"[BOOKS] Recording {amount:.2f} against invoice {invoice_id}")

        payload = {
            'customer_id': invoice['customer_id'],
            'amount': amount,
            'date': date.today().isoformat(),
            'invoices': [{'invoice_id': invoice_id, 'amount_applied': amount}],
            'description': description or 'Payment via Square',
        }
        if external_payment_id:
            payload['reference_number'] = external_payment_id

        data = self._request('POST', '/customerpayments', payload)
        return data.get('payment', {})


def is_books_configured(config=None) -> bool:
    """Whether Zoho Books credentials are configured."""
    cfg = config if config is not None else current_app.config
    return bool(cfg.get('BOOKS_ORGANIZATION_ID') and cfg.get('BOOKS_ACCESS_TOKEN'))


def get_books_client() -> Optional[BooksClient]:
    """Build a client from app config, or None when Zoho Books is not configured."""
    if not is_books_configured():
        return None
    cfg = current_app.config
    return BooksClient(
        organization_id=cfg.get('BOOKS_ORGANIZATION_ID'),
        access_token=cfg.get('BOOKS_ACCESS_TOKEN'),
        api_domain=cfg.get('BOOKS_API_DOMAIN', 'https://www.zohoapis.com'),
        timeout=cfg.get('HTTP_TIMEOUT', 10),
    )
