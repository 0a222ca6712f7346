"""
Reconciliation of Shopify `orders/create` events against fabric stock.

    RECEIVED -> CHECK_DUPLICATE -> SKIPPED
                                -> PROCESSING -> RECORDED

All stock changes, their inventory log entries and the processed-order
record are committed in one transaction, so an order either consumes
fabric exactly once or not at all.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import requests
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .costing import calculate_fabric_cost
from .exceptions import DuplicateOrderError, ShopifyError
from .fabrics import load_fabrics
from .inventory import adjust_fabric_stock, check_low_stock
from .orders import is_order_processed, mark_order_processed
from .requirements import ABSENT, ParsedRequirement, parse_requirement
from .settings import CostSettings

logger = logging.getLogger(__name__)

ORDER_RECONCILED_EVENT = "order.reconciled"
ORDER_SKIPPED_EVENT = "order.skipped"


# --- Webhook payload ---

class OrderLineItem(BaseModel):
    product_id: Optional[Union[int, str]] = None
    title: Optional[str] = None
    quantity: Optional[int] = 1


class OrderEvent(BaseModel):
    """The parts of the Shopify order webhook payload we use. Other keys are ignored."""
    id: Union[int, str]
    name: Optional[str] = None
    order_number: Optional[Union[int, str]] = None
    line_items: List[OrderLineItem] = []

    @property
    def order_id(self) -> str:
        return str(self.id)

    @property
    def display_name(self) -> str:
        return self.name or f"#{self.order_number if self.order_number is not None else self.id}"


# --- Result ---

class ReconciliationState(str, Enum):
    RECEIVED = "received"
    CHECK_DUPLICATE = "check_duplicate"
    SKIPPED = "skipped"
    PROCESSING = "processing"
    RECORDED = "recorded"


@dataclass
class ReconciliationResult:
    order_id: str
    order_name: str
    state: ReconciliationState = ReconciliationState.RECEIVED
    total_fabric_cost: float = 0.0
    fabric_usage: Dict[str, float] = field(default_factory=dict)
    fabric_changes: List[str] = field(default_factory=list)
    message: str = ""

    def to_dict(self):
        return {
            "success": True,
            "order": self.order_name,
            "order_id": self.order_id,
            "state": self.state.value,
            "message": self.message,
            "fabric_changes": self.fabric_changes,
            "fabric_usage": self.fabric_usage,
            "total_fabric_cost": self.total_fabric_cost,
        }


class OrderReconciler:
    """
    Turns an order event into fabric stock deductions.

    `fetch_requirement` returns the raw fabric requirements metafield of a
    product id (usually ShopifyClient.fetch_product_requirement). `bus` is any
    object with `publish(routing_key, message)`.
    """

    def __init__(self, db: Session, fetch_requirement: Callable[[str], Optional[str]],
                 settings: CostSettings, bus):
        self.db = db
        self.fetch_requirement = fetch_requirement
        self.settings = settings
        self.bus = bus

    def reconcile(self, event: OrderEvent) -> ReconciliationResult:
        result = ReconciliationResult(order_id=event.order_id, order_name=event.display_name)
        logger.info("New order received: %s", result.order_name, extra={"order_id": result.order_id})

        result.state = ReconciliationState.CHECK_DUPLICATE
        if is_order_processed(self.db, result.order_id):
            return self._skip(result, "Order already processed")

        result.state = ReconciliationState.PROCESSING
        requirements = [self._resolve_requirement(item) for item in event.line_items]
        fabrics = load_fabrics(self.db)
        updated_fabrics = {}

        for item, parsed in zip(event.line_items, requirements):
            title = item.title or "Unknown Product"
            if not parsed.is_present:
                logger.info("No fabric data for product: %s", title)
                continue

            quantity = item.quantity or 1
            cost = calculate_fabric_cost(parsed, fabrics, self.settings.print_cost_per_meter)
            reason = f"Order {result.order_name} - {title} x{quantity}"

            for line in cost.breakdown:
                meters = line.meters * quantity
                fabric = adjust_fabric_stock(self.db, line.fabric_name, -meters, reason, commit=False)
                if fabric is None:
                    continue

                result.fabric_usage[fabric.name] = result.fabric_usage.get(fabric.name, 0.0) + meters
                result.total_fabric_cost += line.total_cost * quantity
                result.fabric_changes.append(f"{fabric.name}: -{meters}m")
                updated_fabrics[fabric.id] = fabric

        try:
            mark_order_processed(
                self.db,
                result.order_id,
                result.order_name,
                result.total_fabric_cost,
                result.fabric_usage,
            )
        except DuplicateOrderError:
            # Another delivery of this order committed first; our changes were rolled back.
            result.total_fabric_cost = 0.0
            result.fabric_usage = {}
            result.fabric_changes = []
            return self._skip(result, "Order is already being processed")

        result.state = ReconciliationState.RECORDED
        result.message = "Order processed"
        logger.info("Order %s processed. Fabric changes: %s", result.order_name,
                    ", ".join(result.fabric_changes) or "None", extra={"order_id": result.order_id})

        for fabric in updated_fabrics.values():
            check_low_stock(fabric, self.settings.low_stock_threshold, self.bus)
        self.bus.publish(ORDER_RECONCILED_EVENT, {
            "order_id": result.order_id,
            "order_name": result.order_name,
            "total_fabric_cost": result.total_fabric_cost,
            "fabric_usage": result.fabric_usage,
        })
        return result

    def _resolve_requirement(self, item: OrderLineItem) -> ParsedRequirement:
        """Fetch and parse a line item's requirements. Upstream failures count as no data."""
        if item.product_id is None:
            return ABSENT
        try:
            raw = self.fetch_requirement(str(item.product_id))
        except (ShopifyError, requests.exceptions.RequestException) as e:
            logger.error("Error fetching fabric requirements for product %s: %s", item.product_id, e)
            return ABSENT
        return parse_requirement(raw)

    def _skip(self, result: ReconciliationResult, message: str) -> ReconciliationResult:
        result.state = ReconciliationState.SKIPPED
        result.message = message
        logger.info("Order %s skipped: %s", result.order_name, message, extra={"order_id": result.order_id})
        self.bus.publish(ORDER_SKIPPED_EVENT, {
            "order_id": result.order_id,
            "order_name": result.order_name,
            "reason": message,
        })
        return result
