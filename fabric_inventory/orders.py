"""Processed-order records: the guard against reconciling an order twice."""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .exceptions import DuplicateOrderError
from .models import ProcessedOrder

logger = logging.getLogger(__name__)


def is_order_processed(db: Session, shopify_order_id: str) -> bool:
    return (
        db.query(ProcessedOrder.id)
        .filter(ProcessedOrder.shopify_order_id == str(shopify_order_id))
        .first()
        is not None
    )


def mark_order_processed(db: Session, shopify_order_id: str, order_name: str,
                         total_fabric_cost: float, fabric_usage: dict, commit: bool = True):
    """
    Record the order as processed.

    The unique constraint on shopify_order_id decides races between two
    deliveries of the same order: the loser gets DuplicateOrderError after
    its session has been rolled back.
    """
    record = ProcessedOrder(
        shopify_order_id=str(shopify_order_id),
        order_name=order_name,
        total_fabric_cost=total_fabric_cost,
        fabric_usage=dict(fabric_usage),
    )
    db.add(record)
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("Order %s was already marked as processed", shopify_order_id)
        raise DuplicateOrderError(shopify_order_id)
    return record


def list_processed_orders(db: Session, limit: int = 50):
    return (
        db.query(ProcessedOrder)
        .order_by(ProcessedOrder.processed_at.desc())
        .limit(limit)
        .all()
    )
