"""
Shopify order webhooks: HMAC verification and create/update/delete reconciliation.

One webhook is applied to one order row inside the request transaction:
- orders/delete tombstones the order (is_deleted, deleted_at)
- a tombstoned order ignores every later event
- orders/create inserts with custom status "New", or merges if the row already exists
- orders/updated merges into an existing row and never creates one
"""
import base64
import hmac
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.models import Order, OrderStatusLog, Store, WebhookEvent, utcnow
from app.services import whatsapp_service
from app.services.credentials import decrypt_token
from app.services.shopify_service import capture_payment

logger = logging.getLogger(__name__)

TOPIC_CREATE = "orders/create"
TOPIC_UPDATED = "orders/updated"
TOPIC_DELETE = "orders/delete"
HANDLED_TOPICS = (TOPIC_CREATE, TOPIC_UPDATED, TOPIC_DELETE)

STATUS_NEW = "New"
STATUS_UPDATED_BY_SHOPIFY = "Updated By Shopify"

ACTION_CREATED = "created"
ACTION_MERGED = "merged"
ACTION_UPDATED = "updated"
ACTION_DELETED = "deleted"
ACTION_IGNORED = "ignored"

SPLIT_ORDER_TAG = "split-order"
SHOPIFY_CREDIT_GATEWAY = "shopify_credit"


@dataclass
class WebhookOutcome:
    action: str
    order: Optional[Order] = None
    reason: Optional[str] = None


def verify_webhook_hmac(body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify X-Shopify-Hmac-Sha256: HMAC-SHA256(raw_body, secret) base64 == header.
    """
    if not secret or not hmac_header or not body:
        return False
    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    computed_b64 = base64.b64encode(computed).decode("utf-8")
    return hmac.compare_digest(computed_b64, hmac_header.strip())


def normalize_topic(topic: Optional[str]) -> str:
    return (topic or "").strip().lower()


def order_tags(payload: dict) -> list[str]:
    tags = payload.get("tags") or ""
    if isinstance(tags, list):
        return [str(t).strip() for t in tags if str(t).strip()]
    return [t.strip() for t in str(tags).split(",") if t.strip()]


def is_split_order(payload: dict) -> bool:
    return any(SPLIT_ORDER_TAG in tag.lower() for tag in order_tags(payload))


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def build_order_fields(payload: dict, topic: str) -> dict:
    """Columns mirrored from the Shopify payload on every create/update."""
    customer = payload.get("customer") or {}
    vendors = sorted({
        (li.get("vendor") or "").strip()
        for li in payload.get("line_items") or []
        if (li.get("vendor") or "").strip()
    })
    return {
        "name": payload.get("name"),
        "email": customer.get("email") or "N/A",
        "shop_created_at": payload.get("created_at"),
        "shop_updated_at": payload.get("updated_at"),
        "financial_status": payload.get("financial_status"),
        "fulfillment_status": payload.get("fulfillment_status") or "unfulfilled",
        "total_price": _to_float(payload.get("total_price")),
        "currency": payload.get("currency"),
        "raw": payload,
        "vendors": vendors,
        "last_webhook_topic": topic,
        "received_at": utcnow(),
    }


def _record_event(db: Session, shop: str, topic: str, order_id: str, outcome: WebhookOutcome) -> WebhookEvent:
    event = WebhookEvent(
        source="shopify",
        shop_domain=shop,
        topic=topic,
        order_id=order_id,
        payload_summary=f"id={order_id} action={outcome.action}",
        processed_at=utcnow(),
        error=outcome.reason if outcome.action == ACTION_IGNORED else None,
    )
    db.add(event)
    return event


def apply_order_webhook(db: Session, shop: str, topic: str, payload: dict) -> WebhookOutcome:
    """Apply one order webhook and log it. The caller commits."""
    order_id = str(payload["id"])
    store = db.query(Store).filter(Store.id == shop).first()
    if not store:
        logger.warning("Order webhook %s for unknown shop %s (order %s)", topic, shop, order_id)
        outcome = WebhookOutcome(ACTION_IGNORED, reason="unknown shop")
        _record_event(db, shop, topic, order_id, outcome)
        return outcome

    existing = (
        db.query(Order)
        .filter(Order.store_id == shop, Order.order_id == order_id)
        .with_for_update()
        .first()
    )

    if topic == TOPIC_DELETE:
        if existing is None:
            outcome = WebhookOutcome(ACTION_IGNORED, reason="order not found")
        elif existing.is_deleted:
            outcome = WebhookOutcome(ACTION_IGNORED, existing, reason="order already deleted")
        else:
            existing.is_deleted = True
            existing.deleted_at = utcnow()
            existing.last_webhook_topic = topic
            outcome = WebhookOutcome(ACTION_DELETED, existing)
    elif existing is not None and existing.is_deleted:
        outcome = WebhookOutcome(ACTION_IGNORED, existing, reason="order is deleted")
    elif topic == TOPIC_CREATE:
        fields = build_order_fields(payload, topic)
        if existing is not None:
            for key, value in fields.items():
                setattr(existing, key, value)
            outcome = WebhookOutcome(ACTION_MERGED, existing)
        else:
            order = Order(
                store_id=shop,
                order_id=order_id,
                custom_status=STATUS_NEW,
                created_by_topic=topic,
                is_deleted=False,
                **fields,
            )
            order.status_logs.append(OrderStatusLog(
                status=STATUS_NEW,
                remarks="This order was newly created on Shopify",
            ))
            db.add(order)
            outcome = WebhookOutcome(ACTION_CREATED, order)
    else:
        if existing is None:
            outcome = WebhookOutcome(ACTION_IGNORED, reason="order not found")
        else:
            for key, value in build_order_fields(payload, topic).items():
                setattr(existing, key, value)
            existing.updated_by_topic = topic
            existing.status_logs.append(OrderStatusLog(
                status=STATUS_UPDATED_BY_SHOPIFY,
                remarks="This order was updated on shopify",
            ))
            outcome = WebhookOutcome(ACTION_UPDATED, existing)

    db.flush()
    _record_event(db, shop, topic, order_id, outcome)
    logger.info("Order webhook %s shop=%s order=%s -> %s", topic, shop, order_id, outcome.action)
    return outcome


async def run_created_side_effects(db: Session, order: Order) -> dict:
    """
    WhatsApp new-order message and Shopify Credit capture after a create.
    Failures are logged and never propagate to the webhook response.
    """
    result = {"whatsappMessageId": None, "captured": False}
    payload = order.raw or {}
    store = db.query(Store).filter(Store.id == order.store_id).first()
    if not store:
        return result

    if not is_split_order(payload) and len(whatsapp_service.order_phone(payload)) == 10:
        try:
            result["whatsappMessageId"] = await whatsapp_service.send_new_order_message(db, store, order)
        except Exception as e:
            logger.exception("WhatsApp new-order message failed for %s: %s", order.name, e)

    gateways = payload.get("payment_gateway_names") or []
    if SHOPIFY_CREDIT_GATEWAY in gateways:
        if not store.access_token:
            logger.warning("Cannot capture %s: store %s has no access token", order.name, store.id)
        else:
            try:
                await capture_payment(store.id, decrypt_token(store.access_token), order.order_id)
                result["captured"] = True
                logger.info("Captured Shopify Credit payment for %s", order.name)
            except Exception as e:
                logger.exception("Payment capture failed for %s: %s", order.name, e)
    return result
