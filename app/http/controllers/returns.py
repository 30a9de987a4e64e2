"""
Customer self-service routes behind the Shopify App Proxy (/api/proxy).

/book-return/*       - order lookup, return request and withdrawal
/confirm-or-cancel/* - customer confirmation or cancellation of a new order

Every call is signed by Shopify. After start-session, calls carry the session
id (cookie or X-Session-Id) and its X-CSRF-Token.
"""
import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.http.requests.schemas import OrderIdRequest, OrderNumberRequest, ReturnRequest
from app.models import CustomerSession, CustomerSessionPurpose
from app.services import returns as returns_service
from app.services.app_proxy import require_app_proxy
from app.services.errors import ServiceError
from app.services.realtime_service import realtime_service

logger = logging.getLogger(__name__)
router = APIRouter()

SESSION_COOKIE = "customer_session"
NO_STORE = "no-store"


def _proxied_shop(request: Request, response: Response) -> str:
    require_app_proxy(request.url.query)
    response.headers["Cache-Control"] = NO_STORE
    shop = request.query_params.get("shop")
    if not shop:
        raise ServiceError(400, "shop is required")
    return shop


def _client_ip(request: Request):
    return request.client.host if request.client else None


def _session_id(request: Request):
    return request.cookies.get(SESSION_COOKIE) or request.headers.get("x-session-id")


def _customer_session(
    request: Request, response: Response, db: Session, purpose: CustomerSessionPurpose
) -> CustomerSession:
    shop = _proxied_shop(request, response)
    return returns_service.validate_session(
        db,
        _session_id(request),
        request.headers.get("x-csrf-token"),
        shop,
        purpose,
        _client_ip(request),
        request.headers.get("user-agent"),
    )


def _start(request: Request, response: Response, db: Session, purpose: CustomerSessionPurpose) -> dict:
    shop = _proxied_shop(request, response)
    session = returns_service.start_session(
        db, shop, purpose, _client_ip(request), request.headers.get("user-agent"), _session_id(request)
    )
    db.commit()
    response.set_cookie(
        SESSION_COOKIE,
        session.id,
        max_age=settings.CUSTOMER_SESSION_TTL_MINUTES * 60,
        httponly=True,
        secure=settings.IS_PRODUCTION,
        samesite="strict",
        path="/",
    )
    return {"sessionId": session.id, "csrfToken": session.csrf_token}


def book_return_session(request: Request, response: Response, db: Session = Depends(get_db)) -> CustomerSession:
    return _customer_session(request, response, db, CustomerSessionPurpose.BOOK_RETURN)


def confirm_cancel_session(request: Request, response: Response, db: Session = Depends(get_db)) -> CustomerSession:
    return _customer_session(request, response, db, CustomerSessionPurpose.CONFIRM_CANCEL)


# Book return
@router.post("/book-return/start-session")
async def start_book_return_session(request: Request, response: Response, db: Session = Depends(get_db)):
    return _start(request, response, db, CustomerSessionPurpose.BOOK_RETURN)


@router.post("/book-return/order")
async def get_return_order(
    data: OrderNumberRequest,
    session: CustomerSession = Depends(book_return_session),
    db: Session = Depends(get_db),
):
    result = returns_service.lookup_return_order(db, session, data.orderNumber, data.phoneNo)
    db.commit()
    return result


@router.post("/book-return/request")
async def request_return(
    data: ReturnRequest,
    session: CustomerSession = Depends(book_return_session),
    db: Session = Depends(get_db),
):
    result = await returns_service.request_return(
        db, session, data.orderId, data.selectedVariantIds, data.booked_return_images, data.booked_return_reason
    )
    db.commit()
    return result


@router.post("/book-return/cancel-request")
async def cancel_return_request(
    data: OrderIdRequest,
    session: CustomerSession = Depends(book_return_session),
    db: Session = Depends(get_db),
):
    result = returns_service.cancel_return(db, session, data.orderId)
    db.commit()
    return result


# Confirm or cancel
@router.post("/confirm-or-cancel/start-session")
async def start_confirm_cancel_session(request: Request, response: Response, db: Session = Depends(get_db)):
    return _start(request, response, db, CustomerSessionPurpose.CONFIRM_CANCEL)


@router.post("/confirm-or-cancel/order")
async def get_order_to_confirm(
    data: OrderNumberRequest,
    session: CustomerSession = Depends(confirm_cancel_session),
    db: Session = Depends(get_db),
):
    result = returns_service.lookup_order(db, session, data.orderNumber)
    db.commit()
    return result


@router.post("/confirm-or-cancel/confirm-order")
async def confirm_order(
    data: OrderIdRequest,
    session: CustomerSession = Depends(confirm_cancel_session),
    db: Session = Depends(get_db),
):
    order, result = returns_service.confirm_order(db, session, data.orderId)
    db.commit()
    if result["success"]:
        await realtime_service.publish_order(order.store_id, "order_status_changed", order)
    return result


@router.post("/confirm-or-cancel/cancel-order")
async def cancel_order(
    data: OrderIdRequest,
    session: CustomerSession = Depends(confirm_cancel_session),
    db: Session = Depends(get_db),
):
    order, result = returns_service.request_cancellation(db, session, data.orderId)
    db.commit()
    if result["success"]:
        await realtime_service.publish_order(order.store_id, "order_status_changed", order)
    return result
