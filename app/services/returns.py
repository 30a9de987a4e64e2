"""
Customer self-service behind the storefront app proxy.

Two pages share one session model:
- book return: look up an order by number and phone, request a return
  (DTO) for delivered items, or withdraw a pending request
- confirm or cancel: confirm a new COD order or ask for its cancellation

A page visit starts a CustomerSession bound to the proxied shop. Every later
call must present the session id and its CSRF token.
"""
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.models import BusinessStore, CustomerSession, CustomerSessionPurpose, Order, OrderStatusLog, Store, utcnow
from app.services.credentials import OWNER_BUSINESS, get_provider_credentials
from app.services.errors import ServiceError
from app.services.http_client import get_with_retry, safe_json
from app.services.order_workflow import set_status
from app.services.whatsapp_service import normalize_phone

logger = logging.getLogger(__name__)

CUSTOMER = "customer"

STATUS_NEW = "New"
STATUS_CONFIRMED = "Confirmed"
STATUS_CANCELLATION_REQUESTED = "Cancellation Requested"
STATUS_DELIVERED = "Delivered"
STATUS_DTO_REQUESTED = "DTO Requested"
STATUS_DTO_REQUESTED_AGAIN = "DTO Requested Again"

RETURNABLE_STATUSES = (STATUS_DELIVERED, STATUS_DTO_REQUESTED)
IN_TRANSIT_STATUSES = ("In Transit", "RTO In Transit", "Out For Delivery")
RETURN_LOCKED_STATUSES = ("DTO In Transit", "DTO Delivered", "DTO Booked")

MAX_RETURN_IMAGES = 10
MAX_REASON_LENGTH = 500

DELHIVERY = "delhivery"
DELHIVERY_TRACKING_URL = "https://track.delhivery.com/api/v1/packages/json/"

# "{Status}_{StatusType}" from Delhivery tracking -> custom status
TRACKING_STATUSES = {
    "In Transit_UD": "In Transit",
    "Pending_UD": "In Transit",
    "In Transit_RT": "RTO In Transit",
    "Pending_RT": "RTO In Transit",
    "Dispatched_UD": "Out For Delivery",
    "Delivered_DL": "Delivered",
    "Delivered_RT": "RTO Delivered",
    "In Transit_PU": "DTO In Transit",
    "Pending_PU": "DTO In Transit",
    "Delivered_PU": "DTO Delivered",
    "Lost_LT": "Lost",
}

SESSION_MESSAGES = {
    "missing": "Session not found. Please refresh the page.",
    "no_csrf": "Security token missing. Please refresh the page.",
    "invalid": "Your session is invalid. Please refresh the page.",
    "expired": "Your session has expired. Please refresh the page.",
    "csrf": "Security validation failed. Please refresh the page.",
}

MSG_RETURN_BOOKED = "Your return request has been submitted successfully."
MSG_RETURN_LOCKED = "The return request for this order has already been submitted or processed."
MSG_NOT_DELIVERED = (
    "This order has not been delivered yet. Return requests are only accepted for delivered orders."
)
MSG_TRACKING_UNAVAILABLE = (
    "Unable to verify delivery status. Please try again later or contact customer service."
)
MSG_NOT_RETURNABLE = "This order is not eligible for return requests."


class TrackingUnavailable(Exception):
    pass


def _session_error(kind: str) -> ServiceError:
    return ServiceError(401, SESSION_MESSAGES[kind], extra={"sessionError": True})


def _page_enabled(store: Store, purpose: CustomerSessionPurpose) -> bool:
    if purpose == CustomerSessionPurpose.BOOK_RETURN:
        return bool(store.book_return_enabled)
    return bool(store.confirm_cancel_enabled)


def _end_session(session: CustomerSession, reason: str, now: datetime) -> None:
    session.is_active = False
    session.ended_at = now
    session.end_reason = reason


def start_session(
    db: Session,
    store_id: str,
    purpose: CustomerSessionPurpose,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    existing_id: Optional[str] = None,
) -> CustomerSession:
    """Reuse the caller's live session for this page, else open a new one."""
    store = db.query(Store).filter(Store.id == store_id).first()
    if not store or not _page_enabled(store, purpose):
        raise ServiceError(404, "Store not found")
    now = utcnow()

    if existing_id:
        existing = db.query(CustomerSession).filter(CustomerSession.id == existing_id).first()
        if existing is not None:
            if (
                existing.is_active
                and existing.store_id == store.id
                and existing.purpose == purpose
                and existing.expires_at > now
            ):
                return existing
            _end_session(existing, "expired_or_invalid", now)

    if ip:
        active = db.query(CustomerSession).filter(
            CustomerSession.ip == ip,
            CustomerSession.is_active.is_(True),
            CustomerSession.expires_at > now,
        ).count()
        if active >= settings.CUSTOMER_SESSION_MAX_PER_IP:
            logger.warning("Customer session limit reached for %s", ip)
            raise ServiceError(429, "Too many active sessions")

    session = CustomerSession(
        store_id=store.id,
        purpose=purpose,
        csrf_token=secrets.token_urlsafe(32),
        ip=ip,
        user_agent=user_agent,
        is_active=True,
        request_count=0,
        expires_at=now + timedelta(minutes=settings.CUSTOMER_SESSION_TTL_MINUTES),
        last_activity=now,
    )
    db.add(session)
    db.flush()
    logger.info("Started %s session %s for %s", purpose.value, session.id, store.id)
    return session


def validate_session(
    db: Session,
    session_id: Optional[str],
    csrf_token: Optional[str],
    store_id: str,
    purpose: CustomerSessionPurpose,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> CustomerSession:
    if not session_id:
        raise _session_error("missing")
    if not csrf_token:
        raise _session_error("no_csrf")
    session = db.query(CustomerSession).filter(CustomerSession.id == session_id).first()
    if session is None or session.store_id != store_id or session.purpose != purpose:
        raise _session_error("invalid")
    now = utcnow()
    if not session.is_active or session.expires_at < now:
        raise _session_error("expired")
    if not hmac.compare_digest(session.csrf_token, csrf_token):
        raise _session_error("csrf")

    if ip and session.ip and session.ip != ip:
        logger.warning("IP changed for customer session %s: %s -> %s", session.id, session.ip, ip)
    if user_agent and session.user_agent and session.user_agent != user_agent:
        logger.warning("User agent changed for customer session %s", session.id)
    session.request_count = (session.request_count or 0) + 1
    session.last_activity = now
    db.flush()
    return session


def _get_order(db: Session, store_id: str, order_id: Any) -> Order:
    if not order_id or not isinstance(order_id, str) or not order_id.strip():
        raise ServiceError(400, "Valid Order ID is required.")
    order = db.query(Order).filter(
        Order.store_id == store_id,
        Order.order_id == order_id.strip(),
        Order.is_deleted.is_(False),
    ).first()
    if not order:
        raise ServiceError(404, "Order not found. Please check the order number.")
    return order


def find_order_by_number(db: Session, store_id: str, order_number: Any) -> Order:
    """Match the order name as typed, with or without the leading '#'."""
    number = str(order_number).strip()
    names = [number] if number.startswith("#") else [f"#{number}", number]
    order = db.query(Order).filter(
        Order.store_id == store_id,
        Order.name.in_(names),
        Order.is_deleted.is_(False),
    ).first()
    if not order:
        raise ServiceError(404, "Order not found. Please check the order number.")
    return order


def order_phones(raw: Optional[dict]) -> set[str]:
    raw = raw or {}
    candidates = [
        (raw.get("billing_address") or {}).get("phone"),
        (raw.get("shipping_address") or {}).get("phone"),
        (raw.get("customer") or {}).get("phone"),
    ]
    return {p for p in map(normalize_phone, candidates) if p}


def _items(raw: dict) -> list[dict]:
    return [
        {
            "name": item.get("name") or item.get("title"),
            "variantId": item.get("variant_id"),
            "quantity": item.get("quantity"),
            "price": item.get("price"),
        }
        for item in raw.get("line_items") or []
    ]


def return_order_view(order: Order) -> dict:
    raw = order.raw or {}
    return {
        "id": order.order_id,
        "name": order.name,
        "awb": order.awb or "",
        "awbReverse": order.awb_reverse or "",
        "status": order.custom_status,
        "logs": [
            {
                "status": log.status,
                "remarks": log.remarks,
                "createdAt": log.created_at.isoformat() if log.created_at else None,
            }
            for log in order.status_logs
        ],
        "paymentGatewayNames": raw.get("payment_gateway_names") or [],
        "totalPrice": raw.get("total_price"),
        "totalOutstanding": raw.get("total_outstanding"),
        "shippingAddress": raw.get("shipping_address") or {},
        "items": _items(raw),
        "returnItemsVariantIds": order.return_variant_ids,
    }


def lookup_return_order(db: Session, session: CustomerSession, order_number: Any, phone: Any) -> dict:
    if not order_number or not phone:
        raise ServiceError(400, "Order Number and Phone Number are required.")
    normalized = normalize_phone(str(phone))
    if not normalized:
        raise ServiceError(400, "A valid phone number is required.")
    order = find_order_by_number(db, session.store_id, order_number)
    if normalized not in order_phones(order.raw):
        raise ServiceError(403, "Phone number does not match our records for this order.")
    return return_order_view(order)


def _validate_return_input(variant_ids: Any, images: Any, reason: Any) -> tuple[list[int], list[str], str]:
    if not variant_ids or not isinstance(variant_ids, list):
        raise ServiceError(400, "At least one item variant must be selected for return.")
    valid_ids = [v for v in variant_ids if isinstance(v, int) and not isinstance(v, bool) and v > 0]
    if not valid_ids:
        raise ServiceError(400, "Valid item variant IDs are required.")
    if not isinstance(images, list):
        raise ServiceError(400, "At least one image is required for return request.")
    if len(images) > MAX_RETURN_IMAGES:
        raise ServiceError(400, f"Maximum {MAX_RETURN_IMAGES} images are allowed.")
    if not all(isinstance(url, str) and url.strip() for url in images):
        raise ServiceError(400, "Return images must be URLs.")
    if not reason or not isinstance(reason, str) or not reason.strip():
        raise ServiceError(400, "Return reason is required.")
    if len(reason) > MAX_REASON_LENGTH:
        raise ServiceError(400, f"Return reason must not exceed {MAX_REASON_LENGTH} characters.")
    return valid_ids, images, reason.strip()


def _book_return(order: Order, variant_ids: list[int], images: list[str], reason: str) -> None:
    if order.custom_status == STATUS_DTO_REQUESTED:
        log_status = STATUS_DTO_REQUESTED_AGAIN
        remarks = f"The Return for this order was requested again by the customer. Reason: {reason}"
    else:
        log_status = STATUS_DTO_REQUESTED
        remarks = f"The Return for this order was requested by the customer. Reason: {reason}"
    order.custom_status = STATUS_DTO_REQUESTED
    order.last_status_update = utcnow()
    order.last_updated_by = CUSTOMER
    order.status_logs.append(OrderStatusLog(status=log_status, remarks=remarks, created_by=CUSTOMER))
    order.return_variant_ids = variant_ids
    order.return_images = images
    order.return_reason = reason
    order.return_requested_at = utcnow()
    logger.info("Return requested for %s (%s item(s))", order.name, len(variant_ids))


def _delhivery_key(db: Session, store_id: str) -> Optional[str]:
    links = db.query(BusinessStore).filter(BusinessStore.store_id == store_id).all()
    for link in links:
        creds = get_provider_credentials(db, OWNER_BUSINESS, link.business_id, DELHIVERY) or {}
        if creds.get("apiKey"):
            return creds["apiKey"]
    return None


async def fetch_delivery_status(db: Session, order: Order) -> Optional[str]:
    """Latest custom status from Delhivery tracking, None when the scan has no mapping."""
    api_key = _delhivery_key(db, order.store_id)
    if not api_key:
        raise TrackingUnavailable("Delivery tracking not configured")
    if not order.awb:
        raise TrackingUnavailable("No tracking number available")
    resp = await get_with_retry(
        DELHIVERY_TRACKING_URL,
        params={"waybill": order.awb},
        headers={"Authorization": f"Token {api_key}", "Accept": "application/json"},
    )
    if resp.status_code >= 400:
        raise TrackingUnavailable(f"Tracking API error: {resp.status_code}")
    data = safe_json(resp) or {}
    shipments = data.get("ShipmentData") if isinstance(data, dict) else None
    if not shipments:
        raise TrackingUnavailable("No shipment data available")
    scan = ((shipments[0] or {}).get("Shipment") or {}).get("Status") or {}
    if not scan:
        raise TrackingUnavailable("No status information available")
    return TRACKING_STATUSES.get(f"{scan.get('Status')}_{scan.get('StatusType')}")


async def request_return(
    db: Session,
    session: CustomerSession,
    order_id: Any,
    variant_ids: Any,
    images: Any,
    reason: Any,
) -> dict:
    """
    Book a customer return (DTO) for a delivered order.

    Delivered orders are booked at once. In-transit orders are checked against
    courier tracking first; a newer tracking status is saved even when the
    return is refused.
    """
    if not order_id or not isinstance(order_id, str) or not order_id.strip():
        raise ServiceError(400, "Valid Order ID is required.")
    variant_ids, images, reason = _validate_return_input(variant_ids, images, reason)
    order = _get_order(db, session.store_id, order_id)
    status = order.custom_status
    if not status:
        raise ServiceError(400, "Order status is not available.")

    if any(locked in status for locked in RETURN_LOCKED_STATUSES):
        return {"success": False, "message": MSG_RETURN_LOCKED}

    if status in RETURNABLE_STATUSES:
        _book_return(order, variant_ids, images, reason)
        db.flush()
        return {"success": True, "message": MSG_RETURN_BOOKED}

    if status in IN_TRANSIT_STATUSES:
        try:
            latest = await fetch_delivery_status(db, order)
        except (TrackingUnavailable, httpx.HTTPError) as e:
            logger.warning("Delivery check failed for %s: %s", order.name, e)
            return {"success": False, "message": MSG_TRACKING_UNAVAILABLE}
        if latest == STATUS_DELIVERED:
            _book_return(order, variant_ids, images, reason)
            db.flush()
            return {"success": True, "message": MSG_RETURN_BOOKED}
        if latest and latest != status:
            order.custom_status = latest
            order.last_status_update = utcnow()
            db.flush()
            logger.info("Tracking moved %s from %s to %s", order.name, status, latest)
        return {"success": False, "message": MSG_NOT_DELIVERED}

    return {"success": False, "message": MSG_NOT_RETURNABLE}


def cancel_return(db: Session, session: CustomerSession, order_id: Any) -> dict:
    """Withdraw a pending return: back to Delivered, return fields cleared, request log dropped."""
    order = _get_order(db, session.store_id, order_id)
    if order.custom_status != STATUS_DTO_REQUESTED:
        raise ServiceError(400, f'Return request can only be cancelled when status is "{STATUS_DTO_REQUESTED}".')

    if order.status_logs and order.status_logs[-1].status.startswith(STATUS_DTO_REQUESTED):
        order.status_logs.remove(order.status_logs[-1])
    order.custom_status = STATUS_DELIVERED
    order.last_status_update = utcnow()
    order.return_variant_ids = None
    order.return_images = None
    order.return_reason = None
    order.return_requested_at = None
    db.flush()
    logger.info("Return request withdrawn for %s", order.name)
    return {"success": True, "message": "Your return request has been cancelled successfully."}


def lookup_order(db: Session, session: CustomerSession, order_number: Any) -> dict:
    if not order_number:
        raise ServiceError(400, "Order number is required")
    order = find_order_by_number(db, session.store_id, order_number)
    raw = order.raw or {}
    return {
        "id": order.order_id,
        "name": order.name,
        "customStatus": order.custom_status or STATUS_NEW,
        "items": _items(raw),
        "shippingAddress": raw.get("shipping_address") or {},
        "totalPrice": raw.get("total_price"),
    }


def _customer_decision(db: Session, session: CustomerSession, order_id: Any, verb: str) -> tuple[Order, dict]:
    order = _get_order(db, session.store_id, order_id)
    current = order.custom_status or STATUS_NEW
    if current != STATUS_NEW:
        return order, {
            "success": False,
            "message": f'This order cannot be {verb} as it is currently in "{current}" status.',
        }
    return order, {}


def confirm_order(db: Session, session: CustomerSession, order_id: Any) -> tuple[Order, dict]:
    order, refusal = _customer_decision(db, session, order_id, "confirmed")
    if refusal:
        return order, refusal
    set_status(order, STATUS_CONFIRMED, "Order was confirmed by the customer via confirm/cancel link", CUSTOMER)
    order.confirmed_at = utcnow()
    db.flush()
    logger.info("Order %s confirmed by customer", order.name)
    return order, {"success": True, "message": "Your order has been confirmed successfully!"}


def request_cancellation(db: Session, session: CustomerSession, order_id: Any) -> tuple[Order, dict]:
    order, refusal = _customer_decision(db, session, order_id, "cancelled")
    if refusal:
        return order, refusal
    set_status(
        order, STATUS_CANCELLATION_REQUESTED,
        "Cancellation was requested by the customer via confirm/cancel link", CUSTOMER,
    )
    order.cancellation_requested_at = utcnow()
    db.flush()
    logger.info("Cancellation requested for %s by customer", order.name)
    return order, {"success": True, "message": "Your cancellation request has been received successfully!"}
