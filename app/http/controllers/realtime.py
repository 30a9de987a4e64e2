"""
Server-Sent Events stream of order changes for one store.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from app.auth import authorize_store, decode_access_token, security
from app.database import get_db
from app.models import User
from app.services.realtime_service import realtime_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _stream_user(
    credentials: Optional[HTTPAuthorizationCredentials],
    token: Optional[str],
    db: Session,
) -> User:
    # EventSource cannot set headers, so the token may come as a query param
    raw = credentials.credentials if credentials and credentials.credentials else token
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: missing token")
    user_id = decode_access_token(raw)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/stream")
async def order_stream(
    shop: str = Query(...),
    token: Optional[str] = Query(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
):
    user = _stream_user(credentials, token, db)
    access = authorize_store(db, shop, user)
    store_id = access.store.id
    logger.info("User %s subscribed to order stream for %s", user.id, store_id)
    return EventSourceResponse(realtime_service.generate_events(store_id))
