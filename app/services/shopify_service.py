"""
Shopify Admin REST client: payment capture, order creation and product listing.
Never expose access_token to the frontend.
"""
import re
import logging
from typing import Any, Optional

from app.config import settings
from app.services.http_client import get_with_retry, post_no_retry, safe_json

logger = logging.getLogger(__name__)


class ShopifyAPIError(Exception):
    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Shopify API error {status_code}: {body[:400]}")
        self.status_code = status_code
        self.body = body


def _parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Return the rel=next URL of a Link header (cursor pagination)."""
    if not link_header:
        return None
    for part in link_header.split(","):
        part = part.strip()
        if 'rel="next"' in part.lower() or "; rel=next" in part.lower():
            match = re.search(r"<([^>]+)>", part)
            if match:
                return match.group(1).strip()
    return None


def _log_shopify_response(method: str, url: str, status: int, body_preview: str = "") -> None:
    if status >= 400:
        logger.warning("Shopify API %s %s -> %s %s", method, url, status, body_preview[:200])
    else:
        logger.info("Shopify API %s %s -> %s", method, url, status)


def _base_url(shop_domain: str) -> str:
    shop = shop_domain.lower().strip()
    return f"https://{shop}/admin/api/{settings.SHOPIFY_API_VERSION}"


def _headers(access_token: str, request_id: Optional[str] = None) -> dict:
    headers = {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }
    if request_id:
        headers["X-Request-Id"] = request_id
    return headers


async def capture_payment(shop_domain: str, access_token: str, order_id: str) -> dict:
    """Capture the authorized amount of an order (used for Shopify Credit orders)."""
    url = f"{_base_url(shop_domain)}/orders/{order_id}/transactions.json"
    resp = await post_no_retry(url, json={"transaction": {"kind": "capture"}}, headers=_headers(access_token))
    _log_shopify_response("POST", url, resp.status_code, resp.text)
    if resp.status_code >= 400:
        raise ShopifyAPIError(resp.status_code, resp.text)
    return safe_json(resp) or {}


async def create_order(
    shop_domain: str, access_token: str, payload: dict, request_id: Optional[str] = None
) -> dict:
    """POST /orders.json; returns the created order object."""
    url = f"{_base_url(shop_domain)}/orders.json"
    resp = await post_no_retry(url, json=payload, headers=_headers(access_token, request_id))
    _log_shopify_response("POST", url, resp.status_code, resp.text)
    if resp.status_code >= 400:
        raise ShopifyAPIError(resp.status_code, resp.text)
    data = safe_json(resp) or {}
    return data.get("order") or {}


async def get_products(shop_domain: str, access_token: str, limit: int = 250) -> list[dict[str, Any]]:
    """All products of the shop, following Link pagination."""
    url: Optional[str] = f"{_base_url(shop_domain)}/products.json"
    params: Optional[dict] = {"limit": limit, "fields": "id,title,vendor,variants"}
    products: list[dict[str, Any]] = []
    while url:
        resp = await get_with_retry(url, params=params, headers=_headers(access_token))
        _log_shopify_response("GET", url, resp.status_code, resp.text if resp.status_code >= 400 else "")
        if resp.status_code >= 400:
            raise ShopifyAPIError(resp.status_code, resp.text)
        products.extend((safe_json(resp) or {}).get("products") or [])
        url = _parse_link_next(resp.headers.get("link"))
        params = None  # next URL carries page_info
    return products
