"""
Stock movements.

Every change to a fabric's available meters that is caused by a movement
(manual adjustment or an order) goes through `adjust_fabric_stock`, which
writes the new level and its inventory log entry in the same transaction.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .fabrics import get_fabric_by_name
from .models import InventoryLog, utcnow

logger = logging.getLogger(__name__)

LOW_STOCK_EVENT = "fabric.low_stock"


def adjust_fabric_stock(db: Session, fabric_name: str, change: float, reason: str, commit: bool = True):
    """
    Add `change` meters (negative to consume) to the named fabric.

    Returns the updated fabric, or None when no fabric matches the name.
    With commit=False the changes are only flushed, so the caller can make
    them part of a larger transaction.
    """
    fabric = get_fabric_by_name(db, fabric_name, for_update=True)
    if fabric is None:
        logger.warning("Fabric not found: %s", fabric_name)
        return None

    # No floor: overselling shows up as negative stock.
    fabric.available_meters = (fabric.available_meters or 0.0) + change
    fabric.updated_at = utcnow()

    db.add(InventoryLog(
        fabric_id=fabric.id,
        fabric_name=fabric.name,
        change_amount=change,
        reason=reason,
    ))

    try:
        if commit:
            db.commit()
            db.refresh(fabric)
        else:
            db.flush()
    except SQLAlchemyError:
        # The stock change and its log entry are rolled back together.
        db.rollback()
        logger.exception("Failed to record stock change of %s for %s", change, fabric_name)
        raise

    logger.info("Stock of %s changed by %s to %s (%s)", fabric.name, change, fabric.available_meters, reason)
    return fabric


def check_low_stock(fabric, threshold: float, bus) -> bool:
    """Publish a low-stock event when the fabric is under the threshold."""
    if fabric.available_meters >= threshold:
        return False

    logger.warning("LOW STOCK: %s has only %sm left (threshold %sm)",
                   fabric.name, fabric.available_meters, threshold)
    bus.publish(LOW_STOCK_EVENT, {
        "fabric_id": fabric.id,
        "fabric_name": fabric.name,
        "available_meters": fabric.available_meters,
        "threshold": threshold,
    })
    return True
