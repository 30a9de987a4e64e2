"""
Storefront COD checkout routes.

router       - public storefront calls (/api/checkout), origin checked
proxy_router - Shopify App Proxy calls (/api/proxy/checkout), signature checked
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.http.requests.schemas import CodOrderRequest, DraftSessionRequest, SendOtpRequest, VerifyOtpRequest
from app.services import checkout as checkout_service
from app.services.app_proxy import require_app_proxy
from app.services.errors import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()
proxy_router = APIRouter()

NO_STORE = "no-store"


async def _json_body(request: Request) -> dict[str, Any]:
    """JSON object body, or {} when the body is empty."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise ServiceError(400, "invalid JSON body")
    if not isinstance(data, dict):
        raise ServiceError(400, "invalid JSON body")
    return data


@router.post("/draft-session-creation")
async def create_draft_session(
    data: DraftSessionRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    if not checkout_service.origin_allowed(request.headers.get("origin")):
        logger.warning("Draft session rejected for origin %r", request.headers.get("origin"))
        raise ServiceError(403, "origin not allowed")
    session = checkout_service.create_draft_session(
        db, data.shop_domain, data.draft_order, data.cart_token, data.clientNonce
    )
    db.commit()
    return {
        "ok": True,
        "message": "Draft order stored and session created",
        "sessionId": session.id,
        "draftOrderId": session.draft_order_id,
    }


@router.post("/send-otp")
async def send_otp(data: SendOtpRequest, request: Request, db: Session = Depends(get_db)):
    client_ip = request.client.host if request.client else None
    result = await checkout_service.send_otp(
        db, data.sessionId, data.phoneNumber, data.cartToken, data.clientNonce, client_ip
    )
    db.commit()
    return result


@proxy_router.post("/verify-otp")
async def verify_otp(
    data: VerifyOtpRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    require_app_proxy(request.url.query)
    response.headers["Cache-Control"] = NO_STORE
    otp = None if data.otp is None else str(data.otp).strip()
    result = checkout_service.verify_otp(db, data.sessionId, otp, data.cartToken, data.clientNonce)
    db.commit()
    return result


@proxy_router.get("/customer")
async def get_customer(
    request: Request,
    response: Response,
    sessionId: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    require_app_proxy(request.url.query)
    response.headers["Cache-Control"] = NO_STORE
    return checkout_service.get_customer(db, sessionId, phone)


@proxy_router.post("/customer")
async def update_customer(request: Request, response: Response, db: Session = Depends(get_db)):
    """sessionId and phone may come in the body or the query; other body keys are profile fields"""
    require_app_proxy(request.url.query)
    response.headers["Cache-Control"] = NO_STORE
    body = await _json_body(request)
    session_id = body.pop("sessionId", None) or request.query_params.get("sessionId")
    phone = body.pop("phone", None) or request.query_params.get("phone")
    result = checkout_service.update_customer(db, session_id, phone, body)
    db.commit()
    return result


@proxy_router.post("/order-create-cod")
async def create_cod_order(
    data: CodOrderRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    require_app_proxy(request.url.query)
    response.headers["Cache-Control"] = NO_STORE
    override = data.model_dump(exclude={"sessionId"}, exclude_none=True)
    result = await checkout_service.create_cod_order(db, data.sessionId, override)
    db.commit()
    return result
