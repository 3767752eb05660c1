"""
Unit tests for the accounting and carrier clients.

HTTP is patched at requests; no network access.

Run: pytest tests/unit/test_integrations.py -v
"""

import pytest
import requests
from unittest.mock import patch, MagicMock

from integrations.accounting import AccountingClient
from integrations.carrier import CarrierClient
from exceptions import AccountingSyncError, CarrierTrackingError


def json_response(body: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = body
    response.raise_for_status.return_value = None
    return response


class TestAccountingClient:
    """Tests for AccountingClient.create_invoice()"""

    def test_returns_external_id(self):
        """Should post the payload and return the accounting id."""
        client = AccountingClient(base_url="https://books.example.com/", api_key="secret")

        with patch("integrations.accounting.requests.post", return_value=json_response({"id": 4411})) as post:
            result = client.create_invoice({"order_id": "o1", "invoice_number": "INV-ORD-1-000001"})

        assert result.external_invoice_id == "4411"
        args, kwargs = post.call_args
        assert args[0] == "https://books.example.com/invoices"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    def test_not_configured_raises(self):
        """Should refuse to call without URL and key."""
        client = AccountingClient(base_url="", api_key="")
        client.base_url = ""
        client.api_key = None

        with pytest.raises(AccountingSyncError) as exc_info:
            client.create_invoice({"order_id": "o1"})

        assert exc_info.value.code == "ACCOUNTING_ERROR"
        assert exc_info.value.status_code == 503

    def test_http_error_raises(self):
        """Should wrap request failures."""
        client = AccountingClient(base_url="https://books.example.com", api_key="secret")

        with patch(
            "integrations.accounting.requests.post",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ):
            with pytest.raises(AccountingSyncError) as exc_info:
                client.create_invoice({"order_id": "o1"})

        assert "refused" in exc_info.value.message

    def test_missing_id_raises(self):
        """Should reject a response without an invoice id."""
        client = AccountingClient(base_url="https://books.example.com", api_key="secret")

        with patch("integrations.accounting.requests.post", return_value=json_response({"ok": True})):
            with pytest.raises(AccountingSyncError):
                client.create_invoice({"order_id": "o1"})

    def test_non_object_body_raises(self):
        """Should reject a 2xx response whose body is not a JSON object."""
        client = AccountingClient(base_url="https://books.example.com", api_key="secret")

        with patch("integrations.accounting.requests.post", return_value=json_response([{"id": 1}])):
            with pytest.raises(AccountingSyncError) as exc_info:
                client.create_invoice({"order_id": "o1"})

        assert exc_info.value.message == "Accounting system returned an unexpected response"


class TestCarrierClient:
    """Tests for CarrierClient.get_tracking_info()"""

    def test_maps_events_to_snapshot(self):
        """Should sort events and take status and location from the latest."""
        client = CarrierClient(base_url="https://track.example.com", api_key="k")
        body = {
            "events": [
                {"date": "2026-03-02T10:00:00", "status": "In Transit", "location": "Albany, NY"},
                {"date": "2026-03-01T08:00:00", "status": "Picked Up", "location": "Grand Rapids, MI"},
            ],
            "estimated_delivery": "2026-03-05",
        }

        with patch("integrations.carrier.requests.get", return_value=json_response(body)) as get:
            snapshot = client.get_tracking_info("SK123")

        assert snapshot.status == "In Transit"
        assert snapshot.location == "Albany, NY"
        assert [event.status for event in snapshot.events] == ["Picked Up", "In Transit"]
        assert snapshot.estimated_delivery == "2026-03-05"
        assert get.call_args[0][0] == "https://track.example.com/tracking/SK123"

    def test_not_configured_raises(self):
        """Should refuse to call without a base URL."""
        client = CarrierClient(base_url="")
        client.base_url = ""

        with pytest.raises(CarrierTrackingError) as exc_info:
            client.get_tracking_info("SK123")

        assert exc_info.value.code == "CARRIER_ERROR"

    def test_http_error_raises(self):
        """Should wrap request failures."""
        client = CarrierClient(base_url="https://track.example.com")

        with patch("integrations.carrier.requests.get", side_effect=requests.exceptions.Timeout("slow")):
            with pytest.raises(CarrierTrackingError):
                client.get_tracking_info("SK123")
