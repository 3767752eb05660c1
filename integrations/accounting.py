"""
Accounting system integration for issuing invoices externally.

Local invoices are always the source of truth; this client only mirrors them.
Callers record failures and carry on.
"""

from typing import Optional
from pydantic import BaseModel
import requests
import structlog

from config import settings
from exceptions import AccountingSyncError

logger = structlog.get_logger(__name__)


class AccountingInvoiceResult(BaseModel):
    """Identifier assigned by the accounting system."""
    external_invoice_id: str


class AccountingClient:
    """
    Thin HTTP client for the accounting API.

    Usage:
        client = get_accounting_client()
        result = client.create_invoice({"order_id": ..., "amount": ...})
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        self.base_url = (base_url or settings.accounting_api_url or "").rstrip("/")
        self.api_key = api_key or settings.accounting_api_key
        self.timeout = timeout or settings.accounting_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def create_invoice(self, order_payload: dict) -> AccountingInvoiceResult:
        """
        Create an invoice in the accounting system.

        Args:
            order_payload: Order/invoice fields to mirror

        Returns:
            AccountingInvoiceResult with the external invoice id

        Raises:
            AccountingSyncError: If not configured or the call fails
        """
        if not self.configured:
            logger.warning("accounting_not_configured")
            raise AccountingSyncError("Accounting integration is not configured")

        url = f"{self.base_url}/invoices"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            logger.info(
                "creating_accounting_invoice",
                order_id=order_payload.get("order_id"),
                invoice_number=order_payload.get("invoice_number")
            )

            response = requests.post(url, json=order_payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()

            body = response.json()
            if not isinstance(body, dict):
                logger.error("accounting_response_not_object", body_type=type(body).__name__)
                raise AccountingSyncError(
                    "Accounting system returned an unexpected response",
                    details={"order_id": order_payload.get("order_id")}
                )

            external_id = body.get("id") or body.get("external_invoice_id")

            if not external_id:
                logger.error("accounting_response_missing_id", body=body)
                raise AccountingSyncError(
                    "Accounting system did not return an invoice id",
                    details={"order_id": order_payload.get("order_id")}
                )

            logger.info(
                "accounting_invoice_created",
                order_id=order_payload.get("order_id"),
                external_invoice_id=external_id
            )
            return AccountingInvoiceResult(external_invoice_id=str(external_id))

        except requests.exceptions.RequestException as e:
            logger.error(
                "accounting_request_failed",
                order_id=order_payload.get("order_id"),
                error=str(e),
                error_type=type(e).__name__
            )
            raise AccountingSyncError(
                f"Failed to create accounting invoice: {str(e)}",
                details={"order_id": order_payload.get("order_id")}
            )


# Singleton instance
_accounting_client: Optional[AccountingClient] = None


def get_accounting_client() -> AccountingClient:
    """Get or create AccountingClient instance."""
    global _accounting_client
    if _accounting_client is None:
        _accounting_client = AccountingClient()
    return _accounting_client
