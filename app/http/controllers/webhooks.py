"""
Shopify order webhook receiver (public, HMAC verified) and the webhook event log.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.auth import authorize_store, get_current_user
from app.config import settings
from app.database import get_db
from app.models import User, WebhookEvent
from app.services.realtime_service import realtime_service
from app.services.shopify_webhook_handler import (
    ACTION_CREATED,
    ACTION_DELETED,
    ACTION_IGNORED,
    HANDLED_TOPICS,
    apply_order_webhook,
    normalize_topic,
    run_created_side_effects,
    verify_webhook_hmac,
)

logger = logging.getLogger(__name__)
router = APIRouter()

REALTIME_EVENTS = {ACTION_CREATED: "order_created", ACTION_DELETED: "order_deleted"}


@router.post("/orders")
async def shopify_orders_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Public endpoint for Shopify order webhooks. No JWT.
    Topics: orders/create, orders/updated, orders/delete. Anything else is acknowledged and ignored.
    """
    secret = settings.SHOPIFY_API_SECRET
    if not secret:
        logger.error("Shopify webhook received but SHOPIFY_API_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not configured")

    raw_body = await request.body()
    if not verify_webhook_hmac(raw_body, request.headers.get("X-Shopify-Hmac-Sha256"), secret):
        logger.warning("Shopify webhook: HMAC verification failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    shop = (request.headers.get("X-Shopify-Shop-Domain") or "").strip().lower()
    if not shop:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing shop domain")

    topic = normalize_topic(request.headers.get("X-Shopify-Topic"))
    if topic not in HANDLED_TOPICS:
        logger.info("Shopify webhook: ignoring topic %r for %s", topic, shop)
        return {"ok": True, "ignored": True}

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Shopify webhook: invalid JSON %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(payload, dict) or payload.get("id") is None:
        logger.warning("Shopify webhook %s for %s has no order id", topic, shop)
        return {"ok": True, "skipped": "missing order id"}

    outcome = apply_order_webhook(db, shop, topic, payload)
    db.commit()

    if outcome.order is not None and outcome.action != ACTION_IGNORED:
        await realtime_service.publish_order(
            shop, REALTIME_EVENTS.get(outcome.action, "order_updated"), outcome.order
        )
    if outcome.action == ACTION_CREATED:
        await run_created_side_effects(db, outcome.order)
        db.commit()

    return {"ok": True, "action": outcome.action}


@router.get("/events")
async def list_webhook_events(
    shop: str = Query(...),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Recent webhook events for a store the user can access"""
    access = authorize_store(db, shop, current_user)
    events = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.shop_domain == access.store.id)
        .order_by(WebhookEvent.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": e.id,
            "source": e.source,
            "shopDomain": e.shop_domain,
            "topic": e.topic,
            "orderId": e.order_id,
            "payloadSummary": e.payload_summary,
            "processedAt": e.processed_at.isoformat() if e.processed_at else None,
            "error": e.error,
            "createdAt": e.created_at.isoformat() if e.created_at else None,
        }
        for e in events
    ]
