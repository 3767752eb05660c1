"""
Carrier tracking integration.

Fetches tracking milestones for a booked shipment and maps them onto a
TrackingSnapshot.
"""

from typing import Optional
import requests
import structlog

from config import settings
from models.shipping_quote import TrackingSnapshot, TrackingEvent
from exceptions import CarrierTrackingError

logger = structlog.get_logger(__name__)


class CarrierClient:
    """HTTP client for the carrier tracking API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        self.base_url = (base_url or settings.carrier_api_url or "").rstrip("/")
        self.api_key = api_key or settings.carrier_api_key
        self.timeout = timeout or settings.carrier_timeout_seconds

    def get_tracking_info(self, tracking_number: str) -> TrackingSnapshot:
        """
        Get the current tracking state of a shipment.

        Args:
            tracking_number: Carrier tracking number

        Returns:
            TrackingSnapshot with status, location and event list

        Raises:
            CarrierTrackingError: If not configured or the call fails
        """
        if not self.base_url:
            logger.warning("carrier_not_configured")
            raise CarrierTrackingError(
                "Carrier integration is not configured",
                details={"tracking_number": tracking_number}
            )

        url = f"{self.base_url}/tracking/{tracking_number}"
        headers = {"X-API-Key": self.api_key} if self.api_key else {}

        try:
            logger.info("fetching_tracking_info", tracking_number=tracking_number)

            response = requests.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()

            return self._parse_tracking(tracking_number, response.json())

        except requests.exceptions.RequestException as e:
            logger.error("carrier_request_failed", tracking_number=tracking_number, error=str(e), error_type=type(e).__name__)
            raise CarrierTrackingError(
                f"Failed to fetch tracking info: {str(e)}",
                details={"tracking_number": tracking_number}
            )

    def _parse_tracking(self, tracking_number: str, body: dict) -> TrackingSnapshot:
        """Map a carrier response onto TrackingSnapshot."""
        raw_events = body.get("events") or body.get("milestones") or []
        events = [
            TrackingEvent(
                date=event.get("date") or event.get("timestamp"),
                status=event.get("status") or event.get("description") or "Unknown",
                location=event.get("location"),
            )
            for event in raw_events
            if event.get("date") or event.get("timestamp")
        ]
        events.sort(key=lambda e: e.date)

        latest = events[-1] if events else None

        return TrackingSnapshot(
            tracking_number=tracking_number,
            status=body.get("status") or (latest.status if latest else "Unknown"),
            location=body.get("location") or (latest.location if latest else None),
            estimated_delivery=body.get("estimated_delivery"),
            last_update=latest.date if latest else None,
            events=events,
        )


# Singleton instance
_carrier_client: Optional[CarrierClient] = None


def get_carrier_client() -> CarrierClient:
    """Get or create CarrierClient instance."""
    global _carrier_client
    if _carrier_client is None:
        _carrier_client = CarrierClient()
    return _carrier_client
