import base64
import hashlib
import hmac
import logging

from .exceptions import WebhookVerificationError

logger = logging.getLogger(__name__)


def verify_webhook(body: bytes, signature: str, secret: str) -> None:
    """
    Check Shopify's X-Shopify-Hmac-Sha256 header against the raw body.

    Verification is skipped when no webhook secret is configured.
    """
    if not secret:
        logger.debug("SHOPIFY_WEBHOOK_SECRET not set, skipping webhook verification")
        return

    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    if not signature or not hmac.compare_digest(expected, signature):
        raise WebhookVerificationError("Invalid webhook signature")
