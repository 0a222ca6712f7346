class FabricInventoryError(Exception):
    """Base class for errors raised by the fabric inventory service."""


class ShopifyError(FabricInventoryError):
    """The Shopify Admin API returned an HTTP or GraphQL error."""


class DuplicateOrderError(FabricInventoryError):
    """A processed-order record already exists for this Shopify order id."""

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} has already been processed")
        self.order_id = order_id


class WebhookVerificationError(FabricInventoryError):
    """The webhook HMAC signature did not match the request body."""
