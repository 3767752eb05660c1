"""
Shipping quote service.

Quote lifecycle: pending -> quoted -> approved -> booked -> shipped -> delivered,
with rejected reachable from pending or quoted. Every status change is
written conditionally on the status it was validated against and audited
in shipping_quote_actions.
"""

from typing import Optional
from datetime import datetime, timedelta
import random
import string
import time
import structlog

from config import settings, get_supabase_client
from integrations.carrier import CarrierClient, get_carrier_client
from models.permission import ActorContext
from models.shipping_quote import (
    QuoteStatus,
    QuoteAction,
    QUOTE_TRANSITIONS,
    ShippingQuoteCreate,
    CarrierQuoteUpdate,
    ShippingQuoteResponse,
    ShippingQuoteActionResponse,
    QuoteActionResult,
    is_valid_quote_action,
)
from services.financial_stage_service import FinancialStageService, get_financial_stage_service
from exceptions import (
    AppError,
    DatabaseError,
    ShippingQuoteNotFoundError,
    InvalidQuoteTransitionError,
    TrackingUnavailableError,
)

logger = structlog.get_logger(__name__)

CARRIER_QUOTE_ACTION = "quote"

ACTION_MESSAGES = {
    QuoteAction.APPROVE: "Quote approved successfully",
    QuoteAction.REJECT: "Quote rejected",
    QuoteAction.BOOK: "Shipment booked successfully",
    QuoteAction.SHIP: "Shipment picked up by carrier",
    QuoteAction.DELIVER: "Shipment delivered",
}


def _random_suffix(length: int = 6) -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


def generate_quote_number(now_ms: Optional[int] = None) -> str:
    """SQ-{epoch ms}-{6 random base-36 characters}."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"SQ-{millis}-{_random_suffix()}"


def generate_tracking_number(now_ms: Optional[int] = None) -> str:
    """SK{epoch ms}{6 random base-36 characters}."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"SK{millis}{_random_suffix()}"


class ShippingQuoteService:
    """
    Shipping quote business logic.

    Handles quote creation, carrier pricing, actions and tracking.
    """

    def __init__(
        self,
        financial: Optional[FinancialStageService] = None,
        carrier: Optional[CarrierClient] = None
    ):
        self.db = get_supabase_client()
        self.table = "shipping_quotes"
        self.actions_table = "shipping_quote_actions"
        self.financial = financial or FinancialStageService()
        self.carrier = carrier or CarrierClient()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_quote(self, quote_id: str) -> ShippingQuoteResponse:
        """
        Get a quote with customer name and order number filled in.

        Raises:
            ShippingQuoteNotFoundError: If quote doesn't exist
        """
        row = self._get_quote_row(quote_id)
        return self._row_to_response(row)

    def list_quotes(
        self,
        order_id: Optional[str] = None,
        status: Optional[QuoteStatus] = None,
        limit: int = 100
    ) -> list[ShippingQuoteResponse]:
        """List quotes, newest first."""
        try:
            query = self.db.table(self.table).select("*")

            if order_id:
                query = query.eq("order_id", order_id)
            if status:
                query = query.eq("status", status.value)

            result = query.order("created_at", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error("list_quotes_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return [self._row_to_response(row) for row in result.data]

    def list_actions(self, quote_id: str) -> list[ShippingQuoteActionResponse]:
        """Audit trail of a quote, oldest first."""
        self._get_quote_row(quote_id)

        try:
            result = (
                self.db.table(self.actions_table)
                .select("*")
                .eq("quote_id", quote_id)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            logger.error("list_quote_actions_failed", quote_id=quote_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return [ShippingQuoteActionResponse(**row) for row in result.data]

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create_quote(self, data: ShippingQuoteCreate, actor: ActorContext) -> ShippingQuoteResponse:
        """
        Request a shipping quote for an order. Starts pending.

        Raises:
            OrderNotFoundError: If the order doesn't exist
        """
        order = self.financial.get_order(data.order_id)

        quote_number = generate_quote_number()
        logger.info("creating_shipping_quote", order_id=data.order_id, quote_number=quote_number)

        insert_data = {
            "quote_number": quote_number,
            "order_id": data.order_id,
            "customer_id": data.customer_id or order.customer_id,
            "status": QuoteStatus.PENDING.value,
            "carrier": data.carrier or settings.shipping_default_carrier,
            "service_type": data.service_type,
            "origin_address": data.origin_address,
            "destination_address": data.destination_address,
            "dimensions": data.dimensions,
            "weight_lbs": str(data.weight_lbs),
            "declared_value": str(data.declared_value),
            "transit_time_days": data.transit_time_days or settings.shipping_default_transit_days,
            "special_instructions": data.special_instructions,
            "created_by": data.created_by or actor.user_id,
        }

        try:
            result = self.db.table(self.table).insert(insert_data).execute()
        except Exception as e:
            logger.error("create_shipping_quote_failed", order_id=data.order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("insert", str(e))

        logger.info("shipping_quote_created", quote_id=result.data[0]["id"], quote_number=quote_number)
        return self._row_to_response(result.data[0])

    def record_carrier_quote(
        self,
        quote_id: str,
        data: CarrierQuoteUpdate,
        actor: ActorContext
    ) -> ShippingQuoteResponse:
        """
        Store the carrier's price on a pending quote, moving it to quoted.

        Raises:
            ShippingQuoteNotFoundError: If quote doesn't exist
            InvalidQuoteTransitionError: If the quote is not pending
        """
        row = self._get_quote_row(quote_id)
        current = QuoteStatus(row["status"])

        if current != QuoteStatus.PENDING:
            raise InvalidQuoteTransitionError(
                CARRIER_QUOTE_ACTION, current.value, [QuoteStatus.PENDING.value]
            )

        updated = self._conditional_update(
            quote_id,
            current,
            {
                "status": QuoteStatus.QUOTED.value,
                "quoted_cost": str(data.quoted_cost),
                "transit_time_days": data.transit_time_days,
            },
            CARRIER_QUOTE_ACTION,
            [QuoteStatus.PENDING.value],
        )
        self._record_action(quote_id, CARRIER_QUOTE_ACTION, actor, data.notes, current, QuoteStatus.QUOTED)

        logger.info("carrier_quote_recorded", quote_id=quote_id, quoted_cost=str(data.quoted_cost))
        return self._row_to_response(updated)

    def perform_action(
        self,
        quote_id: str,
        action: QuoteAction,
        actor: ActorContext,
        notes: Optional[str] = None
    ) -> QuoteActionResult:
        """
        Apply an action to a quote.

        track is a read: it returns the carrier's tracking snapshot and
        changes nothing.

        Raises:
            ShippingQuoteNotFoundError: If quote doesn't exist
            InvalidQuoteTransitionError: If the quote's status forbids the action
            TrackingUnavailableError: If track is requested before booking
            CarrierTrackingError: If the carrier call fails
        """
        row = self._get_quote_row(quote_id)
        current = QuoteStatus(row["status"])

        logger.info("performing_quote_action", quote_id=quote_id, action=action.value, status=current.value)

        if action == QuoteAction.TRACK:
            tracking_number = row.get("tracking_number")
            if not tracking_number:
                raise TrackingUnavailableError(quote_id)
            return QuoteActionResult(
                action=action,
                message="Tracking information retrieved",
                tracking=self.carrier.get_tracking_info(tracking_number),
            )

        required, new_status = QUOTE_TRANSITIONS[action]
        required_values = [status.value for status in required]

        if not is_valid_quote_action(action, current):
            raise InvalidQuoteTransitionError(action.value, current.value, required_values)

        update_data = {"status": new_status.value}
        now = datetime.utcnow()

        if action == QuoteAction.APPROVE:
            update_data["approved_by"] = actor.user_id
            update_data["approved_date"] = now.isoformat()

        elif action == QuoteAction.REJECT:
            update_data["approved_by"] = actor.user_id
            update_data["approved_date"] = now.isoformat()
            update_data["rejection_reason"] = notes or "No reason provided"

        elif action == QuoteAction.BOOK:
            millis = int(time.time() * 1000)
            transit_days = row.get("transit_time_days") or settings.shipping_default_transit_days
            update_data["tracking_number"] = generate_tracking_number(millis)
            update_data["carrier_booking_id"] = f"SEKO-{millis}"
            update_data["pickup_date"] = (now + timedelta(days=1)).isoformat()
            update_data["delivery_date"] = (now + timedelta(days=transit_days + 1)).isoformat()

        elif action == QuoteAction.DELIVER:
            update_data["actual_delivery_date"] = now.isoformat()

        updated = self._conditional_update(quote_id, current, update_data, action.value, required_values)
        self._record_action(quote_id, action.value, actor, notes, current, new_status)

        logger.info(
            "quote_action_performed",
            quote_id=quote_id,
            action=action.value,
            from_status=current.value,
            to_status=new_status.value
        )

        if action == QuoteAction.DELIVER:
            try:
                self.financial.complete_if_delivered(updated["order_id"])
            except AppError as e:
                # Delivery is recorded; order completion can be retried
                logger.warning("order_completion_check_failed", order_id=updated["order_id"], error=e.message)

        return QuoteActionResult(
            action=action,
            message=ACTION_MESSAGES[action],
            quote=self._row_to_response(updated),
        )

    # ===================
    # UTILITY METHODS
    # ===================

    def _get_quote_row(self, quote_id: str) -> dict:
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", quote_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_quote_failed", quote_id=quote_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ShippingQuoteNotFoundError(quote_id)

        return result.data[0]

    def _conditional_update(
        self,
        quote_id: str,
        current: QuoteStatus,
        update_data: dict,
        action: str,
        required_values: list[str]
    ) -> dict:
        update_data["updated_at"] = datetime.utcnow().isoformat()

        try:
            result = (
                self.db.table(self.table)
                .update(update_data)
                .eq("id", quote_id)
                .eq("status", current.value)
                .execute()
            )
        except Exception as e:
            logger.error("update_quote_failed", quote_id=quote_id, action=action, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        if not result.data:
            fresh = self._get_quote_row(quote_id)
            raise InvalidQuoteTransitionError(action, fresh["status"], required_values)

        return result.data[0]

    def _record_action(
        self,
        quote_id: str,
        action: str,
        actor: ActorContext,
        notes: Optional[str],
        previous_status: QuoteStatus,
        new_status: QuoteStatus
    ) -> None:
        try:
            self.db.table(self.actions_table).insert({
                "quote_id": quote_id,
                "action": action,
                "performed_by": actor.user_id,
                "notes": notes,
                "previous_status": previous_status.value,
                "new_status": new_status.value,
            }).execute()
        except Exception as e:
            logger.error("record_quote_action_failed", quote_id=quote_id, action=action, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("insert", str(e))

    def _display_fields(self, row: dict) -> tuple[str, str]:
        """Customer name and order number, with fallbacks."""
        customer_name = "Unknown Customer"
        order_number = "N/A"

        try:
            if row.get("customer_id"):
                customer = (
                    self.db.table("customers")
                    .select("name, company_name")
                    .eq("id", row["customer_id"])
                    .limit(1)
                    .execute()
                )
                if customer.data:
                    customer_name = (
                        customer.data[0].get("name")
                        or customer.data[0].get("company_name")
                        or customer_name
                    )

            order = (
                self.db.table("orders")
                .select("order_number")
                .eq("id", row["order_id"])
                .limit(1)
                .execute()
            )
            if order.data and order.data[0].get("order_number"):
                order_number = order.data[0]["order_number"]
        except Exception as e:
            logger.error("get_quote_display_fields_failed", quote_id=row.get("id"), error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return customer_name, order_number

    def _row_to_response(self, row: dict) -> ShippingQuoteResponse:
        """Convert database row to ShippingQuoteResponse."""
        customer_name, order_number = self._display_fields(row)
        fields = {k: v for k, v in row.items() if k in ShippingQuoteResponse.model_fields}
        fields["customer_name"] = customer_name
        fields["order_number"] = order_number
        return ShippingQuoteResponse(**fields)


# Singleton instance
_shipping_quote_service: Optional[ShippingQuoteService] = None


def get_shipping_quote_service() -> ShippingQuoteService:
    """Get or create ShippingQuoteService instance."""
    global _shipping_quote_service
    if _shipping_quote_service is None:
        _shipping_quote_service = ShippingQuoteService(
            financial=get_financial_stage_service(),
            carrier=get_carrier_client(),
        )
    return _shipping_quote_service
