"""
Shopify App Proxy request signing.

Shopify signs proxied storefront requests with the app secret: every query
parameter except `signature`, sorted by key, rendered as `key=value` (repeated
values comma-joined) and concatenated without a separator, HMAC-SHA256 in hex.
"""
import hashlib
import hmac
import logging
from typing import Optional
from urllib.parse import parse_qs

from app.config import settings
from app.services.errors import ServiceError

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16


def signature_message(query_string: str) -> str:
    params = parse_qs(query_string or "", keep_blank_values=True)
    params.pop("signature", None)
    return "".join(f"{key}={','.join(params[key])}" for key in sorted(params))


def verify_app_proxy_signature(query_string: str, secret: str) -> bool:
    params = parse_qs(query_string or "", keep_blank_values=True)
    provided = (params.get("signature") or [""])[0]
    if not provided:
        return False
    digest = hmac.new(secret.encode("utf-8"), signature_message(query_string).encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, provided)


def require_app_proxy(query_string: str, secret: Optional[str] = None) -> None:
    """Raise unless the proxied request carries a valid signature."""
    secret = secret if secret is not None else settings.SHOPIFY_API_SECRET
    if not secret or len(secret) < MIN_SECRET_LENGTH:
        logger.error("SHOPIFY_API_SECRET missing or too short for app proxy verification")
        raise ServiceError(500, "server config error")
    if not verify_app_proxy_signature(query_string, secret):
        raise ServiceError(401, "bad signature")
