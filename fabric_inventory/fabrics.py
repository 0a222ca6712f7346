"""Fabric catalog: CRUD and read queries."""
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import Fabric, InventoryLog, normalize_fabric_name

logger = logging.getLogger(__name__)


def load_fabrics(db: Session):
    """All fabrics ordered by name."""
    return db.query(Fabric).order_by(Fabric.name).all()


def get_fabric(db: Session, fabric_id: str):
    return db.get(Fabric, fabric_id)


def get_fabric_by_name(db: Session, name: str, for_update: bool = False):
    """Case-insensitive lookup; the first match wins."""
    query = db.query(Fabric).filter(func.lower(Fabric.name) == normalize_fabric_name(name))
    if for_update:
        query = query.with_for_update()
    return query.order_by(Fabric.created_at).first()


def add_fabric(db: Session, name: str, cost_per_meter: float, available_meters: float) -> Fabric:
    fabric = Fabric(
        name=normalize_fabric_name(name),
        cost_per_meter=cost_per_meter,
        available_meters=available_meters,
    )
    db.add(fabric)
    db.commit()
    db.refresh(fabric)
    logger.info("Added fabric %s (%s/m, %sm)", fabric.name, cost_per_meter, available_meters)
    return fabric


def update_fabric(db: Session, fabric_id: str, name=None, cost_per_meter=None, available_meters=None):
    """
    Edit fabric details directly. Returns None when the fabric does not exist.

    A direct edit of `available_meters` is a correction, not a stock movement,
    so no inventory log entry is written.
    """
    fabric = db.get(Fabric, fabric_id)
    if fabric is None:
        return None

    if name is not None:
        fabric.name = normalize_fabric_name(name)
    if cost_per_meter is not None:
        fabric.cost_per_meter = cost_per_meter
    if available_meters is not None:
        fabric.available_meters = available_meters

    db.commit()
    db.refresh(fabric)
    return fabric


def delete_fabric(db: Session, fabric_id: str) -> bool:
    """Delete a fabric. Its inventory log entries are kept."""
    fabric = db.get(Fabric, fabric_id)
    if fabric is None:
        return False

    db.delete(fabric)
    db.commit()
    logger.info("Deleted fabric %s (%s)", fabric.name, fabric_id)
    return True


def get_low_stock_fabrics(db: Session, threshold: float):
    """Fabrics with fewer than `threshold` meters, lowest stock first."""
    return (
        db.query(Fabric)
        .filter(Fabric.available_meters < threshold)
        .order_by(Fabric.available_meters)
        .all()
    )


def calculate_inventory_value(fabrics) -> float:
    return sum(fabric.cost_per_meter * fabric.available_meters for fabric in fabrics)


def load_inventory_logs(db: Session, limit: int = 50):
    """Most recent inventory log entries, newest first."""
    return (
        db.query(InventoryLog)
        .order_by(InventoryLog.created_at.desc())
        .limit(limit)
        .all()
    )
