import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, String, Text

from .database import Base  # Import the Base class from our database setup


def _new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


def normalize_fabric_name(name):
    """Form used to store fabric names and to match them case-insensitively."""
    return name.strip().lower()


def _isoformat(value):
    return value.isoformat() if value else None


# A fabric type with its per-meter cost and the meters currently on hand.
class Fabric(Base):
    __tablename__ = "fabrics"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, index=True, nullable=False)  # Stored lower-cased, matched case-insensitively.
    cost_per_meter = Column(Float, nullable=False, default=0.0)
    available_meters = Column(Float, nullable=False, default=0.0)  # No floor: may go negative.
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "cost_per_meter": self.cost_per_meter,
            "available_meters": self.available_meters,
            "updated_at": _isoformat(self.updated_at),
        }


# Append-only audit record of a stock change. Written only by adjust_fabric_stock.
class InventoryLog(Base):
    __tablename__ = "inventory_logs"

    id = Column(String, primary_key=True, default=_new_id)
    fabric_id = Column(String, index=True, nullable=False)  # No FK: entries outlive deleted fabrics.
    fabric_name = Column(String, nullable=False)  # Name at the time of the change.
    change_amount = Column(Float, nullable=False)  # positive = added, negative = consumed
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "fabric_id": self.fabric_id,
            "fabric_name": self.fabric_name,
            "change": self.change_amount,
            "reason": self.reason,
            "timestamp": _isoformat(self.created_at),
        }


# Idempotency marker for a Shopify order that has been reconciled against stock.
class ProcessedOrder(Base):
    __tablename__ = "processed_orders"

    id = Column(String, primary_key=True, default=_new_id)
    shopify_order_id = Column(String, unique=True, index=True, nullable=False)
    order_name = Column(String)
    total_fabric_cost = Column(Float, nullable=False, default=0.0)
    fabric_usage = Column(JSON, nullable=False, default=dict)  # fabric name -> meters consumed
    processed_at = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "shopify_order_id": self.shopify_order_id,
            "order_name": self.order_name,
            "total_fabric_cost": self.total_fabric_cost,
            "fabric_usage": self.fabric_usage,
            "processed_at": _isoformat(self.processed_at),
        }


# Key/value configuration entry editable from the settings screen.
class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    label = Column(String)
    description = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
