# --- Imports ---
import json
import logging
import math
from typing import Optional, Union

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# Internal imports from sibling modules
from . import config
from .costing import calculate_fabric_cost, summarize_order
from .database import Base, engine, get_db
from .exceptions import ShopifyError, WebhookVerificationError
from .fabrics import (
    add_fabric,
    calculate_inventory_value,
    delete_fabric,
    get_low_stock_fabrics,
    load_fabrics,
    load_inventory_logs,
    update_fabric,
)
from .inventory import adjust_fabric_stock, check_low_stock
from .logging_config import setup_logging
from .messaging.bus import get_event_bus
from .orders import list_processed_orders
from .reconciliation import OrderEvent, OrderReconciler
from .requirements import parse_requirement
from .settings import DEFAULT_SETTINGS, load_cost_settings, load_settings_with_details, update_setting
from .shopify import get_shopify_client
from .webhooks import verify_webhook

setup_logging(config.LOG_LEVEL, config.LOG_JSON)
logger = logging.getLogger(__name__)

# --- Database Initialization ---
# Create database tables defined in models.py if they don't exist
Base.metadata.create_all(bind=engine)

# --- App Instance ---
app = FastAPI(title="Fabric Inventory")


def error(message, status_code):
    return JSONResponse(status_code=status_code, content={"error": message})


# --- Request Models ---
class FabricCreate(BaseModel):
    """Pydantic model for adding a fabric type."""
    name: str = Field(min_length=1)
    cost_per_meter: float = Field(ge=0, allow_inf_nan=False)
    available_meters: float = Field(allow_inf_nan=False)


class FabricUpdate(BaseModel):
    """Pydantic model for editing fabric details. Omitted fields are left unchanged."""
    name: Optional[str] = Field(default=None, min_length=1)
    cost_per_meter: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    available_meters: Optional[float] = Field(default=None, allow_inf_nan=False)


class InventoryChange(BaseModel):
    """Pydantic model for a manual stock movement (positive adds, negative consumes)."""
    fabric_name: str = Field(min_length=1)
    change: float = Field(allow_inf_nan=False)
    reason: str = Field(min_length=1)


class SettingUpdate(BaseModel):
    key: str = Field(min_length=1)
    value: Union[float, str]


class WebhookRegistration(BaseModel):
    callback_url: str = Field(min_length=1)


async def get_raw_body(request: Request) -> bytes:
    """Raw request body, needed for webhook signature verification."""
    return await request.body()


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint to confirm the service is operational."""
    return {"message": "Fabric inventory service is running"}


# --- Fabrics ---
@app.get("/api/fabrics")
def list_fabrics(low_stock: bool = False, threshold: Optional[float] = None, db: Session = Depends(get_db)):
    """
    Lists fabrics with dashboard stats.
    - low_stock=true returns only fabrics under the threshold.
    - threshold defaults to the low_stock_threshold setting.
    """
    if threshold is None:
        threshold = load_cost_settings(db).low_stock_threshold

    low_stock_fabrics = get_low_stock_fabrics(db, threshold)
    if low_stock:
        return {
            "fabrics": [fabric.to_dict() for fabric in low_stock_fabrics],
            "count": len(low_stock_fabrics),
        }

    fabrics = load_fabrics(db)
    return {
        "fabrics": [fabric.to_dict() for fabric in fabrics],
        "stats": {
            "total_types": len(fabrics),
            "total_meters": sum(fabric.available_meters for fabric in fabrics),
            "inventory_value": calculate_inventory_value(fabrics),
            "low_stock_count": len(low_stock_fabrics),
        },
    }


@app.post("/api/fabrics", status_code=201)
def create_fabric(req: FabricCreate, db: Session = Depends(get_db)):
    """Adds a new fabric type. The name is stored lower-cased."""
    try:
        fabric = add_fabric(db, req.name, req.cost_per_meter, req.available_meters)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error adding fabric %s", req.name)
        return error("Failed to add fabric", 500)
    return {"fabric": fabric.to_dict()}


@app.put("/api/fabrics/{fabric_id}")
def edit_fabric(fabric_id: str, req: FabricUpdate, db: Session = Depends(get_db)):
    """Edits fabric name, cost or available meters."""
    try:
        fabric = update_fabric(db, fabric_id, **req.model_dump(exclude_none=True))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error updating fabric %s", fabric_id)
        return error("Failed to update fabric", 500)

    if fabric is None:
        return error("Fabric not found", 404)
    return {"fabric": fabric.to_dict()}


@app.delete("/api/fabrics/{fabric_id}")
def remove_fabric(fabric_id: str, db: Session = Depends(get_db)):
    """Deletes a fabric type. Its inventory history is kept."""
    try:
        deleted = delete_fabric(db, fabric_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error deleting fabric %s", fabric_id)
        return error("Failed to delete fabric", 500)

    if not deleted:
        return error("Fabric not found", 404)
    return {"success": True}


# --- Inventory ---
@app.post("/api/inventory")
def change_inventory(req: InventoryChange, db: Session = Depends(get_db), bus=Depends(get_event_bus)):
    """
    Adds or removes meters of a fabric and records the movement.
    - Returns 404 if no fabric has that name.
    """
    try:
        fabric = adjust_fabric_stock(db, req.fabric_name, req.change, req.reason)
    except SQLAlchemyError:
        return error("Failed to update inventory", 500)

    if fabric is None:
        return error("Fabric not found", 404)

    low_stock = check_low_stock(fabric, load_cost_settings(db).low_stock_threshold, bus)
    sign = "+" if req.change > 0 else ""
    return {
        "fabric": fabric.to_dict(),
        "low_stock": low_stock,
        "message": f"Updated {req.fabric_name} by {sign}{req.change} meters",
    }


@app.get("/api/inventory")
def list_inventory_logs(limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    """Recent inventory movements, newest first."""
    logs = load_inventory_logs(db, limit)
    return {"logs": [log.to_dict() for log in logs], "total_count": len(logs)}


# --- Products & Orders ---
@app.get("/api/products")
def list_products(with_fabric: bool = False, db: Session = Depends(get_db), shopify=Depends(get_shopify_client)):
    """Active Shopify products with their per-unit fabric cost."""
    try:
        products = shopify.fetch_products()
    except ShopifyError as e:
        logger.error("Error fetching products: %s", e)
        return error("Failed to fetch products", 502)

    fabrics = load_fabrics(db)
    print_cost = load_cost_settings(db).print_cost_per_meter

    results = []
    for product in products:
        parsed = parse_requirement(product.get("metafield"))
        if with_fabric and not parsed.is_present:
            continue
        cost = calculate_fabric_cost(parsed, fabrics, print_cost)
        results.append({
            "id": product["id"],
            "title": product["title"],
            "handle": product["handle"],
            "image": product["image"],
            "price": product["price"],
            "fabric_requirements": parsed.requirement.model_dump() if parsed.is_present else None,
            "fabric_cost": cost.total_cost,
            "fabric_breakdown": [line.to_dict() for line in cost.breakdown],
        })

    return {"products": results, "count": len(results), "print_cost_per_meter": print_cost}


@app.get("/api/orders")
def list_orders(limit: int = Query(50, ge=1, le=250), db: Session = Depends(get_db),
                shopify=Depends(get_shopify_client)):
    """Recent Shopify orders with fabric cost and usage."""
    try:
        orders = shopify.fetch_orders(limit)
    except ShopifyError as e:
        logger.error("Error fetching orders: %s", e)
        return error("Failed to fetch orders", 502)

    fabrics = load_fabrics(db)
    print_cost = load_cost_settings(db).print_cost_per_meter

    results = []
    total_fabric_usage = {}
    for order in orders:
        summary = summarize_order(order["line_items"], fabrics, print_cost)
        for fabric_name, meters in summary["fabric_usage"].items():
            total_fabric_usage[fabric_name] = total_fabric_usage.get(fabric_name, 0.0) + meters
        results.append({
            "id": order["id"],
            "name": order["name"],
            "created_at": order["created_at"],
            "total_price": order["total_price"],
            **summary,
        })

    return {
        "orders": results,
        "count": len(results),
        "total_fabric_usage": total_fabric_usage,
        "total_fabric_cost": sum(order["total_fabric_cost"] for order in results),
    }


@app.get("/api/orders/processed")
def list_processed(limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    """Orders that have already been deducted from stock."""
    records = list_processed_orders(db, limit)
    return {"orders": [record.to_dict() for record in records], "count": len(records)}


# --- Settings ---
@app.get("/api/settings")
def get_settings(db: Session = Depends(get_db)):
    return {"settings": load_settings_with_details(db)}


@app.put("/api/settings")
def put_setting(req: SettingUpdate, db: Session = Depends(get_db)):
    """Updates one setting. Known settings must be numeric."""
    value = str(req.value)
    if req.key in DEFAULT_SETTINGS:
        try:
            numeric = float(value)
        except ValueError:
            numeric = None
        if numeric is None or not math.isfinite(numeric):
            return error(f"Setting {req.key} must be a number", 400)

    try:
        update_setting(db, req.key, value)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error updating setting %s", req.key)
        return error("Failed to update setting", 500)
    return {"success": True, "key": req.key, "value": value}


# --- Webhooks ---
@app.get("/api/webhooks/order")
def order_webhook_status():
    return {
        "status": "Webhook endpoint ready",
        "message": "This endpoint receives order notifications from Shopify",
    }


@app.post("/api/webhooks/order")
def order_webhook(
    body: bytes = Depends(get_raw_body),
    signature: Optional[str] = Header(default=None, alias="X-Shopify-Hmac-Sha256"),
    db: Session = Depends(get_db),
    shopify=Depends(get_shopify_client),
    bus=Depends(get_event_bus),
):
    """
    Receives Shopify orders/create notifications and deducts fabric stock.
    - Redelivered orders are acknowledged without touching stock.
    - 400 for unparseable payloads, 500 if the database write fails.
    """
    try:
        verify_webhook(body, signature, config.SHOPIFY_WEBHOOK_SECRET)
    except WebhookVerificationError:
        logger.error("Invalid webhook signature")
        return error("Invalid signature", 401)

    try:
        event = OrderEvent.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        logger.error("Malformed order webhook payload: %s", e)
        return error("Malformed order payload", 400)

    try:
        reconciler = OrderReconciler(db, shopify.fetch_product_requirement, load_cost_settings(db), bus)
        result = reconciler.reconcile(event)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Webhook processing failed for order %s", event.order_id)
        return error("Webhook processing failed", 500)

    return result.to_dict()


@app.post("/api/webhooks/register")
def register_webhook(req: WebhookRegistration, shopify=Depends(get_shopify_client)):
    """Subscribes a callback URL to Shopify's ORDERS_CREATE topic."""
    try:
        webhook = shopify.register_order_webhook(req.callback_url)
    except ShopifyError as e:
        logger.error("Error registering webhook: %s", e)
        return error(str(e), 400)
    return {"success": True, "webhook": webhook, "message": "Webhook registered successfully!"}


@app.get("/api/webhooks/register")
def list_registered_webhooks(shopify=Depends(get_shopify_client)):
    try:
        webhooks = shopify.list_webhooks()
    except ShopifyError as e:
        logger.error("Error fetching webhooks: %s", e)
        return error("Failed to fetch webhooks", 502)
    return {"webhooks": webhooks}


@app.delete("/api/webhooks/register")
def delete_registered_webhook(id: str = Query(..., min_length=1), shopify=Depends(get_shopify_client)):
    try:
        deleted_id = shopify.delete_webhook(id)
    except ShopifyError as e:
        logger.error("Error deleting webhook %s: %s", id, e)
        return error(str(e), 400)
    return {"success": True, "deleted_id": deleted_id}
