"""
Custom order status workflow, confirmation tags and pickup preparation.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.auth import shared_store_order_allowed
from app.models import (
    Business,
    Order,
    OrderStatusLog,
    PutAwayState,
    StoreProduct,
    UPC,
    utcnow,
)
from app.services.errors import not_found, validation_error

logger = logging.getLogger(__name__)

CUSTOM_STATUSES = [
    "New",
    "Confirmed",
    "Ready To Dispatch",
    "Dispatched",
    "In Transit",
    "Out For Delivery",
    "Delivered",
    "RTO In Transit",
    "RTO Delivered",
    "DTO Requested",
    "DTO Booked",
    "DTO In Transit",
    "DTO Delivered",
    "Pending Refunds",
    "DTO Refunded",
    "Lost",
    "Closed",
    "RTO Closed",
    "Cancellation Requested",
    "Cancelled",
]

STATUS_CONFIRMED = "Confirmed"

# Statuses a user may set by hand, with the log remark for each
MANUAL_STATUS_REMARKS = {
    "Confirmed": "This order was confirmed by the user",
    "Closed": "This order was received by the customer and manually closed",
    "RTO Closed": "This order was returned and received by the owner and manually closed",
}

REVERT_REMARK = "Order status reverted to Confirmed by user."

TAG_ACTIONS = ("add", "remove")


def get_order(db: Session, shop: str, order_id: str) -> Order:
    order = db.query(Order).filter(
        Order.store_id == shop,
        Order.order_id == str(order_id),
        Order.is_deleted.is_(False),
    ).first()
    if not order:
        raise not_found("Order not found")
    return order


def _require_manual_status(status: str) -> str:
    if status not in MANUAL_STATUS_REMARKS:
        raise validation_error(
            f"Invalid status '{status}'. Allowed: {', '.join(MANUAL_STATUS_REMARKS)}"
        )
    return status


def set_status(order: Order, status: str, remarks: str, user_id: str) -> None:
    order.custom_status = status
    order.last_status_update = utcnow()
    order.last_updated_by = user_id
    order.status_logs.append(OrderStatusLog(status=status, remarks=remarks, created_by=user_id))


def update_status(db: Session, order: Order, status: str, user_id: str) -> Order:
    _require_manual_status(status)
    set_status(order, status, MANUAL_STATUS_REMARKS[status], user_id)
    db.flush()
    logger.info("Order %s set to %s by %s", order.name, status, user_id)
    return order


def bulk_update_status(
    db: Session, shop: str, order_ids: list[str], status: str, user_id: str, business: Optional[Business] = None
) -> list[Order]:
    """
    Update every known order in the list; unknown ids are skipped.
    With a business given, orders it may not touch on the shared store are skipped too.
    """
    _require_manual_status(status)
    orders = db.query(Order).filter(
        Order.store_id == shop,
        Order.order_id.in_([str(o) for o in order_ids]),
        Order.is_deleted.is_(False),
    ).all()
    updated = []
    for order in orders:
        if business is not None and not shared_store_order_allowed(business, order):
            continue
        set_status(order, status, MANUAL_STATUS_REMARKS[status], user_id)
        updated.append(order)
    db.flush()
    logger.info("Bulk status %s on %s/%s order(s) in %s", status, len(updated), len(order_ids), shop)
    return updated


def revert_to_confirmed(db: Session, order: Order, user_id: str) -> Order:
    set_status(order, STATUS_CONFIRMED, REVERT_REMARK, user_id)
    order.awb = None
    order.courier = None
    db.flush()
    return order


def update_tags(db: Session, order: Order, tag: str, action: str) -> list[str]:
    if action not in TAG_ACTIONS:
        raise validation_error('Invalid action specified. Use "add" or "remove".')
    tag = (tag or "").strip()
    if not tag:
        raise validation_error("tag is required")
    tags = list(order.tags_confirmed or [])
    if action == "add" and tag not in tags:
        tags.append(tag)
    elif action == "remove":
        tags = [t for t in tags if t != tag]
    order.tags_confirmed = tags
    db.flush()
    return tags


def _mapped_business_ids(db: Session, order: Order) -> list[str]:
    """Businesses owning the SKUs mapped to the order's line items."""
    business_ids: list[str] = []
    for item in (order.raw or {}).get("line_items") or []:
        product = db.query(StoreProduct).filter(
            StoreProduct.store_id == order.store_id,
            StoreProduct.product_id == str(item.get("product_id")),
        ).first()
        if not product:
            logger.warning("Store product %s not found for order %s", item.get("product_id"), order.name)
            continue
        detail = (product.variant_mapping_details or {}).get(str(item.get("variant_id")))
        if not isinstance(detail, dict) or not detail.get("business_id"):
            logger.warning("No mapping for variant %s in order %s", item.get("variant_id"), order.name)
            continue
        if detail["business_id"] not in business_ids:
            business_ids.append(detail["business_id"])
    return business_ids


def make_pickup_ready(db: Session, order: Order, upc_ids: list[str]) -> dict:
    """Assign UPCs to the order as outbound and mark it pickup ready."""
    if not upc_ids:
        raise validation_error("assignedUpcIds must be a non-empty list")
    if order.pickup_ready:
        raise validation_error("Order is already picked up")
    if not (order.raw or {}).get("line_items"):
        raise validation_error("Order has no line items")

    business_ids = _mapped_business_ids(db, order)
    upcs = []
    if business_ids:
        upcs = db.query(UPC).filter(UPC.id.in_(upc_ids), UPC.business_id.in_(business_ids)).all()
    found = {u.id for u in upcs}
    not_found_ids = [uid for uid in upc_ids if uid not in found]
    for uid in not_found_ids:
        logger.warning("UPC %s not found for order %s", uid, order.name)

    now = utcnow()
    for upc in upcs:
        upc.store_id = order.store_id
        upc.order_id = order.order_id
        upc.put_away = PutAwayState.OUTBOUND
        upc.updated_at = now
    order.pickup_ready = True
    order.pickup_ready_at = now
    db.flush()
    return {"upcCount": len(upcs), "notFoundUpcIds": not_found_ids}


def list_orders(
    db: Session,
    shop: str,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    business: Optional[Business] = None,
) -> tuple[list[Order], int]:
    """With a business given, only orders it may see on the shared store are listed."""
    query = db.query(Order).filter(Order.store_id == shop, Order.is_deleted.is_(False))
    if status:
        query = query.filter(Order.custom_status == status)
    query = query.order_by(Order.created_at.desc())
    if business is None:
        total = query.count()
        return query.offset(offset).limit(limit).all(), total
    visible = [o for o in query.all() if shared_store_order_allowed(business, o)]
    return visible[offset:offset + limit], len(visible)


def order_to_dict(order: Order, include_logs: bool = False) -> dict:
    data = {
        "id": order.id,
        "orderId": order.order_id,
        "name": order.name,
        "email": order.email,
        "createdAt": order.shop_created_at,
        "updatedAt": order.shop_updated_at,
        "financialStatus": order.financial_status,
        "fulfillmentStatus": order.fulfillment_status,
        "totalPrice": order.total_price,
        "currency": order.currency,
        "customStatus": order.custom_status,
        "vendors": order.vendors or [],
        "tagsConfirmed": order.tags_confirmed or [],
        "awb": order.awb,
        "courier": order.courier,
        "pickupReady": bool(order.pickup_ready),
        "pickupReadyAt": order.pickup_ready_at.isoformat() if order.pickup_ready_at else None,
        "lastStatusUpdate": order.last_status_update.isoformat() if order.last_status_update else None,
        "receivedAt": order.received_at.isoformat() if order.received_at else None,
    }
    if include_logs:
        data["customStatusesLogs"] = [
            {
                "status": log.status,
                "remarks": log.remarks,
                "createdBy": log.created_by,
                "createdAt": log.created_at.isoformat() if log.created_at else None,
            }
            for log in order.status_logs
        ]
    return data
