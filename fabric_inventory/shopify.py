"""
Client for the Shopify Admin GraphQL API.

Products and orders are returned as flat dicts; the fabric requirements
live in the product metafield `custom.fabric_requirements`.
"""
import logging

import requests

from . import config
from .exceptions import ShopifyError

logger = logging.getLogger(__name__)

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
PAGE_SIZE = 250  # Max allowed by Shopify

_PRODUCT_FIELDS = """
    id
    title
    handle
    status
    images(first: 1) { edges { node { url altText } } }
    metafield(namespace: "custom", key: "fabric_requirements") { value }
    variants(first: 1) { edges { node { id title price } } }
"""

_ORDER_FIELDS = """
    id
    name
    createdAt
    totalPriceSet { shopMoney { amount currencyCode } }
    lineItems(first: 50) {
      edges {
        node {
          title
          quantity
          product {
            id
            metafield(namespace: "custom", key: "fabric_requirements") { value }
          }
        }
      }
    }
"""

PRODUCTS_QUERY = """
query GetProducts($first: Int!, $query: String, $after: String) {
  products(first: $first, query: $query, after: $after) {
    edges { node { %s } cursor }
    pageInfo { hasNextPage }
  }
}
""" % _PRODUCT_FIELDS

PRODUCT_METAFIELD_QUERY = """
query GetProductMetafield($id: ID!) {
  product(id: $id) {
    metafield(namespace: "custom", key: "fabric_requirements") { value }
  }
}
"""

ORDERS_QUERY = """
query GetOrders($first: Int!) {
  orders(first: $first, sortKey: CREATED_AT, reverse: true) {
    edges { node { %s } }
  }
}
""" % _ORDER_FIELDS

WEBHOOK_CREATE_MUTATION = """
mutation webhookSubscriptionCreate($topic: WebhookSubscriptionTopic!, $webhookSubscription: WebhookSubscriptionInput!) {
  webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {
    webhookSubscription {
      id
      topic
      endpoint { ... on WebhookHttpEndpoint { callbackUrl } }
    }
    userErrors { field message }
  }
}
"""

WEBHOOKS_QUERY = """
query {
  webhookSubscriptions(first: 20) {
    edges {
      node {
        id
        topic
        endpoint { ... on WebhookHttpEndpoint { callbackUrl } }
        createdAt
      }
    }
  }
}
"""

WEBHOOK_DELETE_MUTATION = """
mutation webhookSubscriptionDelete($id: ID!) {
  webhookSubscriptionDelete(id: $id) {
    deletedWebhookSubscriptionId
    userErrors { field message }
  }
}
"""


def product_gid(product_id) -> str:
    product_id = str(product_id)
    if product_id.startswith("gid://"):
        return product_id
    return PRODUCT_GID_PREFIX + product_id


def _metafield_value(node):
    metafield = (node or {}).get("metafield") or {}
    return metafield.get("value")


def _first_node(connection):
    edges = (connection or {}).get("edges") or []
    return edges[0]["node"] if edges else {}


def _normalize_product(node):
    return {
        "id": node.get("id"),
        "title": node.get("title"),
        "handle": node.get("handle"),
        "status": node.get("status"),
        "image": _first_node(node.get("images")).get("url"),
        "price": _first_node(node.get("variants")).get("price") or "0",
        "metafield": _metafield_value(node),
    }


def _normalize_order(node):
    money = ((node.get("totalPriceSet") or {}).get("shopMoney") or {})
    line_items = []
    for edge in (node.get("lineItems") or {}).get("edges") or []:
        item = edge["node"]
        product = item.get("product") or {}
        line_items.append({
            "title": item.get("title"),
            "quantity": item.get("quantity") or 1,
            "product_id": product.get("id"),
            "metafield": _metafield_value(product),
        })
    return {
        "id": node.get("id"),
        "name": node.get("name"),
        "created_at": node.get("createdAt"),
        "total_price": money.get("amount") or "0",
        "currency": money.get("currencyCode"),
        "line_items": line_items,
    }


class ShopifyClient:
    def __init__(self, store_url=config.SHOPIFY_STORE_URL, access_token=config.SHOPIFY_ADMIN_ACCESS_TOKEN,
                 api_version=config.SHOPIFY_API_VERSION, timeout=config.SHOPIFY_TIMEOUT_SECONDS,
                 session=None):
        self.url = f"https://{store_url}/admin/api/{api_version}/graphql.json"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        })

    def admin_fetch(self, query, variables=None):
        """Run a GraphQL query and return its `data` object."""
        try:
            response = self.session.post(
                self.url,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout,
            )
            response.raise_for_status()  # Raises an exception for 4xx/5xx status codes
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise ShopifyError(f"Shopify API error: {e}") from e
        except ValueError as e:
            raise ShopifyError("Shopify API returned invalid JSON") from e

        errors = payload.get("errors")
        if errors:
            logger.error("Shopify GraphQL errors: %s", errors)
            message = errors[0].get("message") if isinstance(errors, list) and errors else str(errors)
            raise ShopifyError(message or "GraphQL Error")

        return payload.get("data") or {}

    # --- Products ---

    def fetch_products(self):
        """All ACTIVE products, following pagination cursors."""
        products = []
        cursor = None
        while True:
            data = self.admin_fetch(PRODUCTS_QUERY, {"first": PAGE_SIZE, "query": "status:active", "after": cursor})
            connection = data["products"]
            edges = connection["edges"]
            products.extend(_normalize_product(edge["node"]) for edge in edges)

            if not connection["pageInfo"]["hasNextPage"] or not edges:
                break
            cursor = edges[-1]["cursor"]
        return products

    def fetch_product_requirement(self, product_id):
        """Raw fabric requirements metafield of a product, or None."""
        data = self.admin_fetch(PRODUCT_METAFIELD_QUERY, {"id": product_gid(product_id)})
        return _metafield_value(data.get("product"))

    # --- Orders ---

    def fetch_orders(self, first=50):
        """Most recent orders first."""
        data = self.admin_fetch(ORDERS_QUERY, {"first": first})
        return [_normalize_order(edge["node"]) for edge in data["orders"]["edges"]]

    # --- Webhook subscriptions ---

    def register_order_webhook(self, callback_url):
        """Subscribe `callback_url` to ORDERS_CREATE. Raises ShopifyError on user errors."""
        data = self.admin_fetch(WEBHOOK_CREATE_MUTATION, {
            "topic": "ORDERS_CREATE",
            "webhookSubscription": {"callbackUrl": callback_url, "format": "JSON"},
        })
        result = data.get("webhookSubscriptionCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyError("; ".join(error.get("message", "") for error in user_errors))
        return result.get("webhookSubscription")

    def list_webhooks(self):
        data = self.admin_fetch(WEBHOOKS_QUERY)
        edges = (data.get("webhookSubscriptions") or {}).get("edges") or []
        return [edge["node"] for edge in edges]

    def delete_webhook(self, webhook_id):
        data = self.admin_fetch(WEBHOOK_DELETE_MUTATION, {"id": webhook_id})
        result = data.get("webhookSubscriptionDelete") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyError("; ".join(error.get("message", "") for error in user_errors))
        return result.get("deletedWebhookSubscriptionId")


_client = None


def get_shopify_client():
    """FastAPI dependency returning the shared Shopify client."""
    global _client
    if _client is None:
        _client = ShopifyClient()
    return _client
