import os

# Database connection string. SQLite by default, Postgres in deployment.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fabric_inventory.db")

# RabbitMQ event bus. Events only go to RabbitMQ when explicitly enabled.
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
RABBITMQ_USER = os.getenv("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.getenv("RABBITMQ_PASSWORD", "guest")
RABBITMQ_RETRY_INTERVAL = float(os.getenv("RABBITMQ_RETRY_INTERVAL", "30"))
EVENT_BUS_ENABLED = os.getenv("EVENT_BUS_ENABLED", "0").strip().lower() in {"1", "true", "yes"}
EVENTS_EXCHANGE = os.getenv("EVENTS_EXCHANGE", "events")

# Shopify Admin API.
SHOPIFY_STORE_URL = os.getenv("SHOPIFY_STORE_URL", "")
SHOPIFY_ADMIN_ACCESS_TOKEN = os.getenv("SHOPIFY_ADMIN_ACCESS_TOKEN", "")
SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2025-01")
SHOPIFY_WEBHOOK_SECRET = os.getenv("SHOPIFY_WEBHOOK_SECRET", "")
SHOPIFY_TIMEOUT_SECONDS = float(os.getenv("SHOPIFY_TIMEOUT_SECONDS", "15"))

# Fallbacks used when the settings table has no value for a key.
PRINT_COST_PER_METER = float(os.getenv("PRINT_COST_PER_METER", "25"))
LOW_STOCK_THRESHOLD = float(os.getenv("LOW_STOCK_THRESHOLD", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "0").strip().lower() in {"1", "true", "yes"}
