"""
Storefront COD checkout: draft sessions, WhatsApp OTP phone verification,
saved customer profiles and Shopify order creation.

Session lifecycle: pending -> phone_verified -> order_created. Sessions expire
CHECKOUT_SESSION_TTL_MINUTES after creation; only the SHA-256 of an OTP is stored.
"""
import hashlib
import hmac
import logging
import re
import math
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    CheckoutCustomer,
    CheckoutSession,
    CheckoutSessionStatus,
    DraftOrder,
    OtpRateCounter,
    Store,
    utcnow,
)
from app.services import interakt_service
from app.services.credentials import decrypt_token
from app.services.errors import ServiceError
from app.services.shopify_service import ShopifyAPIError, create_order

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\+91[6-9]\d{9}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

OTP_LENGTH = 6
COD_GATEWAY = "Cash on Delivery"
COD_TAGS = "storefront-checkout,cod"
CUSTOMER_FIELDS = ("name", "email", "address")


def mask_phone(phone: Optional[str]) -> str:
    if not phone or len(phone) < 6:
        return "your number"
    return f"{phone[:3]}******{phone[-4:]}"


def hash_otp(otp: str) -> str:
    return hashlib.sha256(otp.encode("utf-8")).hexdigest()


def generate_otp() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(OTP_LENGTH))


def origin_allowed(origin: Optional[str]) -> bool:
    return bool(origin) and origin in settings.CHECKOUT_ALLOWED_ORIGINS


def is_expired(session: CheckoutSession) -> bool:
    return session.expires_at is None or session.expires_at <= utcnow()


def _clear_otp(session: CheckoutSession) -> None:
    session.otp_hash = None
    session.otp_generated_at = None
    session.otp_attempt_count = None
    session.temp_phone = None


def _fail_and_commit(db: Session, error: ServiceError) -> ServiceError:
    """Persist session bookkeeping (attempt counts, wiped OTPs) before the error response."""
    db.commit()
    return error


def bump_hourly_counter(db: Session, kind: str, key: str, limit: int, now: datetime) -> tuple[bool, int]:
    """Count one OTP send in the current hour bucket. Returns (allowed, seconds until the bucket resets)."""
    bucket_start = now.replace(minute=0, second=0, microsecond=0)
    counter_id = f"{kind}:{key}:{bucket_start.isoformat()}"
    counter = db.get(OtpRateCounter, counter_id)
    if counter is None:
        counter = OtpRateCounter(
            id=counter_id,
            kind=kind,
            key=key,
            bucket_start=bucket_start,
            count=0,
            expires_at=bucket_start + timedelta(hours=2),
        )
        db.add(counter)
    counter.count = (counter.count or 0) + 1
    db.flush()
    reset_sec = math.ceil((bucket_start + timedelta(hours=1) - now).total_seconds())
    return counter.count <= limit, reset_sec


def _check_send_limits(db: Session, session_id: str, phone_number: str, client_ip: Optional[str], now: datetime) -> None:
    limits = [
        ("session", session_id, settings.OTP_MAX_PER_SESSION_HOUR),
        ("phone", phone_number, settings.OTP_MAX_PER_PHONE_HOUR),
    ]
    if client_ip:
        limits.append(("ip", client_ip, settings.OTP_MAX_PER_IP_HOUR))
    for kind, key, limit in limits:
        allowed, reset_sec = bump_hourly_counter(db, kind, key, limit, now)
        if not allowed:
            logger.warning("OTP %s limit exceeded for checkout session %s", kind, session_id)
            raise _fail_and_commit(db, ServiceError(
                429, "rate_limited", "OTP request limit exceeded.", headers={"Retry-After": str(reset_sec)}
            ))


def _check_binding(session: CheckoutSession, cart_token: Optional[str], client_nonce: Optional[str]) -> None:
    if session.cart_token and cart_token and session.cart_token != cart_token:
        raise ServiceError(403, "ownership mismatch (cart)")
    if session.client_nonce and client_nonce and session.client_nonce != client_nonce:
        raise ServiceError(403, "device binding failed")


def create_draft_session(
    db: Session,
    shop_domain: str,
    draft_order: dict,
    cart_token: Optional[str] = None,
    client_nonce: Optional[str] = None,
) -> CheckoutSession:
    if not shop_domain or not draft_order:
        raise ServiceError(400, "shop_domain and draft_order are required")
    draft = DraftOrder(store_id=shop_domain, payload=draft_order)
    db.add(draft)
    db.flush()
    session = CheckoutSession(
        shop_domain=shop_domain,
        draft_order_id=draft.id,
        status=CheckoutSessionStatus.PENDING,
        customer_phone=None,
        cart_token=cart_token or None,
        client_nonce=client_nonce or None,
        expires_at=utcnow() + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
    )
    db.add(session)
    db.flush()
    logger.info("Checkout session %s created for %s (draft %s)", session.id, shop_domain, draft.id)
    return session


def get_live_session(db: Session, session_id: str, missing: str = "invalid session", expired: str = "session expired") -> CheckoutSession:
    session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).first()
    if not session:
        raise ServiceError(404, missing)
    if is_expired(session):
        raise ServiceError(410, expired)
    return session


async def send_otp(
    db: Session,
    session_id: str,
    phone_number: str,
    cart_token: Optional[str] = None,
    client_nonce: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> dict:
    if not session_id or not phone_number:
        raise ServiceError(400, "sessionId and phoneNumber are required")
    if not PHONE_RE.match(phone_number):
        raise ServiceError(400, "Invalid Indian phone number format. Expected +91XXXXXXXXXX")
    api_key = settings.INTERAKT_API_KEY
    if not api_key:
        logger.error("INTERAKT_API_KEY is not configured")
        raise ServiceError(500, "Server configuration error")

    session = get_live_session(db, session_id, missing="Invalid session", expired="Session expired")
    if session.status == CheckoutSessionStatus.ORDER_CREATED:
        raise ServiceError(
            403, "This checkout session has already been completed.",
            extra={"hint": "Please start a new checkout to proceed.", "code": "CHECKOUT_COMPLETED"},
        )
    _check_binding(session, cart_token, client_nonce)

    verified_phone = session.customer_phone
    if verified_phone and verified_phone != phone_number:
        raise ServiceError(
            403, "This checkout session is already tied to a different contact.",
            extra={"hint": f"Use {mask_phone(verified_phone)} to proceed.", "code": "PHONE_MISMATCH"},
        )

    now = utcnow()
    if session.otp_generated_at is not None:
        elapsed = (now - session.otp_generated_at).total_seconds()
        if elapsed < settings.OTP_RESEND_COOLDOWN_SECONDS:
            retry_after = int(settings.OTP_RESEND_COOLDOWN_SECONDS - elapsed) + 1
            raise ServiceError(429, "Too many requests. Try again later.", headers={"Retry-After": str(retry_after)})
    _check_send_limits(db, session.id, phone_number, client_ip, now)

    otp = generate_otp()
    session.otp_hash = hash_otp(otp)
    session.otp_generated_at = now
    session.otp_attempt_count = 0
    session.temp_phone = verified_phone or phone_number
    session.updated_at = now
    # Counters and the new hash must survive a failed vendor call.
    db.commit()

    try:
        await interakt_service.send_otp(api_key, phone_number, otp)
    except interakt_service.InteraktError as e:
        raise ServiceError(e.status_code, "Failed to send OTP via Interakt", extra={"details": e.details})

    logger.info("OTP sent for checkout session %s", session.id)
    return {
        "ok": True,
        "message": f"OTP sent to {mask_phone(phone_number)}.",
        "alreadyVerified": bool(verified_phone),
    }


def verify_otp(
    db: Session,
    session_id: str,
    otp: str,
    cart_token: Optional[str] = None,
    client_nonce: Optional[str] = None,
) -> dict:
    if not session_id or not otp:
        raise ServiceError(400, "sessionId and otp are required")
    session = get_live_session(db, session_id)
    _check_binding(session, cart_token, client_nonce)

    if not session.otp_hash or not session.otp_generated_at:
        raise ServiceError(400, "no pending otp for this session")

    attempts = session.otp_attempt_count or 0
    if attempts >= settings.OTP_MAX_ATTEMPTS:
        _clear_otp(session)
        raise _fail_and_commit(db, ServiceError(429, "too many attempts; request a new OTP"))

    if (utcnow() - session.otp_generated_at).total_seconds() > settings.OTP_MAX_AGE_SECONDS:
        _clear_otp(session)
        raise _fail_and_commit(db, ServiceError(410, "otp expired"))

    if not hmac.compare_digest(hash_otp(str(otp)), session.otp_hash):
        session.otp_attempt_count = attempts + 1
        raise _fail_and_commit(db, ServiceError(401, "invalid otp"))

    phone = session.temp_phone
    if not phone:
        raise ServiceError(400, "no phone pending verification")

    now = utcnow()
    session.customer_phone = phone
    session.phone_verified_at = now
    session.status = CheckoutSessionStatus.PHONE_VERIFIED
    _clear_otp(session)

    customer = db.query(CheckoutCustomer).filter(CheckoutCustomer.phone == phone).first()
    if customer is None:
        customer = CheckoutCustomer(phone=phone)
        db.add(customer)
    customer.last_verified_at = now
    db.flush()
    logger.info("Phone verified for checkout session %s", session.id)
    return {"ok": True, "sessionId": session.id, "customerPhoneMasked": mask_phone(phone)}


def _customer_session(db: Session, session_id: str, phone: str) -> CheckoutSession:
    if not session_id or not phone:
        raise ServiceError(400, "missing sessionId or phone")
    session = get_live_session(db, session_id, missing="session not found")
    if session.customer_phone and session.customer_phone != phone:
        raise ServiceError(403, "phone mismatch")
    return session


def get_customer(db: Session, session_id: str, phone: str) -> dict:
    _customer_session(db, session_id, phone)
    customer = db.query(CheckoutCustomer).filter(CheckoutCustomer.phone == phone).first()
    if not customer:
        raise ServiceError(404, "customer not found")
    return {
        "ok": True,
        "phone": customer.phone,
        "name": customer.name,
        "email": customer.email,
        "address": customer.address,
    }


def update_customer(db: Session, session_id: str, phone: str, fields: dict[str, Any]) -> dict:
    """Partially update name, email and address; keys absent from fields are left alone."""
    _customer_session(db, session_id, phone)
    updates = {}
    for key in CUSTOMER_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if value is not None and not isinstance(value, str):
            raise ServiceError(400, f"invalid {key}")
        if key == "email" and value and not EMAIL_RE.match(value):
            raise ServiceError(400, "invalid email format")
        updates[key] = value
    if not updates:
        raise ServiceError(400, "no valid fields to update")

    customer = db.query(CheckoutCustomer).filter(CheckoutCustomer.phone == phone).first()
    if customer is None:
        customer = CheckoutCustomer(phone=phone)
        db.add(customer)
    for key, value in updates.items():
        setattr(customer, key, value)
    customer.updated_at = utcnow()
    db.flush()
    return {"ok": True, "message": "Details updated"}


def _session_order(session: CheckoutSession) -> dict:
    return {
        "id": session.order_id,
        "name": session.order_name,
        "number": session.order_number,
        "statusUrl": session.order_status_url,
    }


def draft_line_items(payload: dict) -> list[dict]:
    items = payload.get("line_items")
    if items is None:
        items = (payload.get("draft_order") or {}).get("line_items")
    return items if isinstance(items, list) else []


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _order_line(li: dict) -> Optional[dict]:
    """Shopify line item for a draft line, None for lines without a variant or quantity."""
    if not li.get("variant_id"):
        return None
    variant_id, quantity = str(li["variant_id"]).strip(), str(li.get("quantity") or 0).strip()
    if not variant_id.isdigit():
        raise ServiceError(400, "invalid variant_id", extra={"variant_id": li["variant_id"]})
    if not quantity.lstrip("-").isdigit():
        raise ServiceError(400, "invalid quantity", extra={"variant_id": li["variant_id"]})
    if int(quantity) <= 0:
        return None
    line = {"variant_id": int(variant_id), "quantity": int(quantity)}
    if li.get("properties"):
        line["properties"] = li["properties"]
    return line


def build_cod_order_payload(
    line_items: list[dict], phone: str, customer: dict[str, Optional[str]], note: Optional[str]
) -> dict:
    first_name, last_name = _clean(customer.get("first_name")), _clean(customer.get("last_name"))
    full_name = " ".join(p for p in (first_name, last_name) if p) or None
    address = _clean(customer.get("address"))

    order: dict[str, Any] = {
        "line_items": [line for line in map(_order_line, line_items) if line],
        "financial_status": "pending",
        "payment_gateway_names": [COD_GATEWAY],
        "phone": phone,
        "tags": COD_TAGS,
    }
    if customer.get("email"):
        order["email"] = customer["email"]
    if address:
        order["shipping_address"] = {
            "address1": address,
            "name": full_name,
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
        }
    if note:
        order["note"] = note
    return {"order": order}


async def create_cod_order(db: Session, session_id: str, override: Optional[dict] = None) -> dict:
    """Create the Shopify COD order for a verified session; repeated calls return the same order."""
    if not session_id:
        raise ServiceError(400, "missing sessionId")
    override = override or {}
    session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).first()
    if not session:
        raise ServiceError(404, "session not found")
    if not session.shop_domain or not session.draft_order_id:
        raise ServiceError(422, "session missing shopDomain or draftOrderId")
    if is_expired(session):
        raise ServiceError(410, "session expired")
    if session.status not in (CheckoutSessionStatus.PHONE_VERIFIED, CheckoutSessionStatus.ORDER_CREATED):
        raise ServiceError(403, "session not verified")
    if session.order_id:
        return {"ok": True, "order": _session_order(session)}

    store = db.query(Store).filter(Store.id == session.shop_domain).first()
    if not store:
        raise ServiceError(404, "account not found")
    if not store.access_token:
        raise ServiceError(500, "shop access token missing")

    draft = db.query(DraftOrder).filter(DraftOrder.id == session.draft_order_id).first()
    if not draft:
        raise ServiceError(404, "draft order not found")
    payload = draft.payload or {}
    line_items = draft_line_items(payload)
    if not line_items:
        raise ServiceError(422, "no line items to order")
    note = payload.get("note") or (payload.get("draft_order") or {}).get("note")

    phone = override.get("phone") or session.customer_phone
    if not phone:
        raise ServiceError(422, "customer phone missing")

    saved = db.query(CheckoutCustomer).filter(CheckoutCustomer.phone == phone).first()
    customer = {
        key: override.get(key) if override.get(key) is not None else getattr(saved, key, None)
        for key in ("first_name", "last_name", "email", "address")
    }

    order_payload = build_cod_order_payload(line_items, phone, customer, note)
    try:
        created = await create_order(
            store.id, decrypt_token(store.access_token), order_payload, request_id=f"cod-{session.id}"
        )
    except ShopifyAPIError as e:
        logger.warning("COD order create failed for session %s: %s", session.id, e)
        raise ServiceError(502, "shopify order create failed", extra={"status": e.status_code})
    if not created.get("id"):
        raise ServiceError(502, "shopify order create returned no order id")

    session.order_id = str(created["id"])
    session.order_name = created.get("name")
    session.order_number = created.get("order_number")
    session.order_status_url = created.get("order_status_url")
    session.status = CheckoutSessionStatus.ORDER_CREATED
    session.updated_at = utcnow()
    db.flush()
    logger.info("COD order %s created for checkout session %s", session.order_name, session.id)
    return {"ok": True, "order": _session_order(session)}


def purge_rate_counters(db: Session) -> int:
    removed = db.query(OtpRateCounter).filter(OtpRateCounter.expires_at <= utcnow()).delete(synchronize_session=False)
    db.flush()
    return removed


def cleanup_expired_sessions(db: Session) -> int:
    """Delete expired sessions that never produced an order, with their drafts."""
    expired = db.query(CheckoutSession).filter(
        CheckoutSession.expires_at <= utcnow(),
        CheckoutSession.order_id.is_(None),
    ).all()
    draft_ids = [s.draft_order_id for s in expired if s.draft_order_id]
    for session in expired:
        db.delete(session)
    if draft_ids:
        db.query(DraftOrder).filter(DraftOrder.id.in_(draft_ids)).delete(synchronize_session=False)
    db.flush()
    return len(expired)
