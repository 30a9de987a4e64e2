"""
WhatsApp Cloud API: new-order template messages.
"""
import logging
import re
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import Order, Store, WhatsAppMessage
from app.services.credentials import decrypt_token
from app.services.http_client import post_no_retry, safe_json

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"


def normalize_phone(raw: Optional[str]) -> str:
    """Strip whitespace and keep the last 10 digits."""
    digits = re.sub(r"\D", "", re.sub(r"\s", "", raw or ""))
    return digits[-10:]


def order_phone(payload: dict) -> str:
    shipping = payload.get("shipping_address") or {}
    customer = payload.get("customer") or {}
    return normalize_phone(shipping.get("phone") or customer.get("phone"))


def _customer_name(payload: dict) -> str:
    shipping = payload.get("shipping_address") or {}
    customer = payload.get("customer") or {}
    name = shipping.get("name") or " ".join(
        p for p in (customer.get("first_name"), customer.get("last_name")) if p
    )
    return (name or "Customer").strip()


def _order_date(payload: dict) -> str:
    created = payload.get("created_at")
    if created:
        try:
            return datetime.fromisoformat(str(created).replace("Z", "+00:00")).strftime("%B %d, %Y")
        except ValueError:
            pass
    return datetime.now().strftime("%B %d, %Y")


def build_new_order_payload(to: str, payload: dict, header_image_url: Optional[str]) -> dict[str, Any]:
    components: list[dict[str, Any]] = []
    if header_image_url:
        components.append({
            "type": "header",
            "parameters": [{"type": "image", "image": {"link": header_image_url}}],
        })
    components.append({
        "type": "body",
        "parameters": [
            {"type": "text", "text": _customer_name(payload)},
            {"type": "text", "text": payload.get("name") or str(payload.get("id"))},
            {"type": "text", "text": _order_date(payload)},
        ],
    })
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": {
            "name": settings.WHATSAPP_NEW_ORDER_TEMPLATE,
            "language": {"code": "en"},
            "components": components,
        },
    }


async def send_new_order_message(db: Session, store: Store, order: Order) -> Optional[str]:
    """
    Send the new-order template for an order and record it.
    Returns the message id, or None when the store has no WhatsApp setup or the API rejects the call.
    """
    if not store.whatsapp_phone_number_id or not store.whatsapp_access_token:
        logger.debug("WhatsApp not configured for %s; skipping order %s", store.id, order.order_id)
        return None
    payload = order.raw or {}
    phone = order_phone(payload)
    if len(phone) != 10:
        return None

    url = f"{GRAPH_BASE_URL}/{settings.WHATSAPP_GRAPH_VERSION}/{store.whatsapp_phone_number_id}/messages"
    headers = {
        "Authorization": f"Bearer {decrypt_token(store.whatsapp_access_token)}",
        "Content-Type": "application/json",
    }
    body = build_new_order_payload("91" + phone, payload, store.whatsapp_header_image_url)
    resp = await post_no_retry(url, json=body, headers=headers)
    data = safe_json(resp) or {}
    if resp.status_code >= 400:
        logger.warning("WhatsApp API error for order %s: %s", order.name, data or resp.text[:200])
        return None

    message_id = ((data.get("messages") or [{}])[0]).get("id")
    sent_to = ((data.get("contacts") or [{}])[0]).get("input")
    if not message_id:
        logger.warning("WhatsApp API returned no message id for order %s", order.name)
        return None

    db.add(WhatsAppMessage(
        message_id=message_id,
        store_id=store.id,
        order_id=order.order_id,
        order_name=order.name,
        template=settings.WHATSAPP_NEW_ORDER_TEMPLATE,
        sent_to=sent_to,
    ))
    order.whatsapp_messages = list(order.whatsapp_messages or []) + [message_id]
    db.flush()
    logger.info("WhatsApp new-order message %s sent for %s", message_id, order.name)
    return message_id
