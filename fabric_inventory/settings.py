"""Key/value settings stored in the `settings` table, with fallback defaults."""
import logging
import math
from dataclasses import dataclass

from sqlalchemy.orm import Session

from . import config
from .models import Setting

logger = logging.getLogger(__name__)

PRINT_COST_PER_METER = "print_cost_per_meter"
LOW_STOCK_THRESHOLD = "low_stock_threshold"

# key -> (default value, label, description)
DEFAULT_SETTINGS = {
    PRINT_COST_PER_METER: (
        str(config.PRINT_COST_PER_METER),
        "Print Cost per Meter",
        "Surcharge added to every meter of fabric on printed products",
    ),
    LOW_STOCK_THRESHOLD: (
        str(config.LOW_STOCK_THRESHOLD),
        "Low Stock Threshold",
        "Fabrics with fewer meters than this are reported as low stock",
    ),
}


@dataclass(frozen=True)
class CostSettings:
    """Settings snapshot handed to the cost calculator and reconciliation."""
    print_cost_per_meter: float = config.PRINT_COST_PER_METER
    low_stock_threshold: float = config.LOW_STOCK_THRESHOLD


def get_setting(db: Session, key: str, default: str = None):
    setting = db.get(Setting, key)
    if setting is None:
        return default
    return setting.value


def get_numeric_setting(db: Session, key: str, default: float) -> float:
    value = get_setting(db, key)
    if value is None:
        return default
    try:
        number = float(value)
    except ValueError:
        number = None
    if number is None or not math.isfinite(number):
        logger.warning("Setting %s has non-numeric value %r, using %s", key, value, default)
        return default
    return number


def load_cost_settings(db: Session) -> CostSettings:
    return CostSettings(
        print_cost_per_meter=get_numeric_setting(db, PRINT_COST_PER_METER, config.PRINT_COST_PER_METER),
        low_stock_threshold=get_numeric_setting(db, LOW_STOCK_THRESHOLD, config.LOW_STOCK_THRESHOLD),
    )


def load_settings_with_details(db: Session):
    """Every known setting (stored or default) plus any extra stored keys."""
    stored = {setting.key: setting for setting in db.query(Setting).order_by(Setting.key).all()}

    settings = []
    for key, (default, label, description) in DEFAULT_SETTINGS.items():
        setting = stored.pop(key, None)
        settings.append({
            "key": key,
            "value": setting.value if setting else default,
            "label": (setting.label if setting else None) or label,
            "description": (setting.description if setting else None) or description,
        })
    for setting in stored.values():
        settings.append({
            "key": setting.key,
            "value": setting.value,
            "label": setting.label or setting.key,
            "description": setting.description or "",
        })
    return settings


def update_setting(db: Session, key: str, value: str) -> Setting:
    """Insert or update a setting and commit."""
    setting = db.get(Setting, key)
    if setting is None:
        _, label, description = DEFAULT_SETTINGS.get(key, (None, key, ""))
        setting = Setting(key=key, value=value, label=label, description=description)
        db.add(setting)
    else:
        setting.value = value

    db.commit()
    db.refresh(setting)
    logger.info("Setting %s updated to %s", key, value)
    return setting
