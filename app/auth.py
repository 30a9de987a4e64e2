"""
Authentication (JWT bearer tokens, bcrypt passwords) and tenant authorization helpers.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import (
    Business,
    BusinessMember,
    BusinessStore,
    MemberStatus,
    Order,
    Store,
    StoreMember,
    User,
)

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.AUTH_ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """Return the user id (sub) of a valid token, else None."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.AUTH_ALGORITHM])
    except JWTError as e:
        logger.debug("Token decode failed: %s", e)
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: missing token")
    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@dataclass
class BusinessAccess:
    business: Business
    user: User
    is_owner: bool


@dataclass
class StoreAccess:
    store: Store
    user: User


@dataclass
class BusinessStoreAccess:
    business: Business
    store: Store
    user: User
    is_shared_store: bool


def authorize_business(db: Session, business_id: Optional[str], user: User) -> BusinessAccess:
    """Owner or active member of the business."""
    if not business_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Business ID is required")
    business = db.query(Business).filter(Business.id == business_id).first()
    if not business:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    if business.owner_id == user.id:
        return BusinessAccess(business=business, user=user, is_owner=True)
    member = db.query(BusinessMember).filter(
        BusinessMember.business_id == business.id,
        BusinessMember.user_id == user.id,
        BusinessMember.status == MemberStatus.ACTIVE,
    ).first()
    if not member:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have access to this business")
    return BusinessAccess(business=business, user=user, is_owner=False)


def authorize_store(db: Session, shop: Optional[str], user: User) -> StoreAccess:
    """Active store member, or owner of a business linked to the store."""
    if not shop:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop is required")
    store = db.query(Store).filter(Store.id == shop).first()
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    member = db.query(StoreMember).filter(
        StoreMember.store_id == store.id,
        StoreMember.user_id == user.id,
        StoreMember.status == MemberStatus.ACTIVE,
    ).first()
    if member:
        return StoreAccess(store=store, user=user)
    owned_link = (
        db.query(BusinessStore)
        .join(Business, Business.id == BusinessStore.business_id)
        .filter(BusinessStore.store_id == store.id, Business.owner_id == user.id)
        .first()
    )
    if not owned_link:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User cannot access this store")
    return StoreAccess(store=store, user=user)


def authorize_business_and_store(
    db: Session, business_id: Optional[str], shop: Optional[str], user: User
) -> BusinessStoreAccess:
    access = authorize_business(db, business_id, user)
    if not shop:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop is required")
    store = db.query(Store).filter(Store.id == shop).first()
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    link = db.query(BusinessStore).filter(
        BusinessStore.business_id == access.business.id,
        BusinessStore.store_id == store.id,
    ).first()
    if not link:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Store is not linked to this business")
    is_shared = bool(settings.SHARED_STORE_ID) and store.id == settings.SHARED_STORE_ID
    return BusinessStoreAccess(business=access.business, store=store, user=user, is_shared_store=is_shared)


def shared_store_order_allowed(business: Business, order: Order) -> bool:
    """On the shared store a business may only touch orders carrying its vendor name."""
    if settings.SUPER_ADMIN_ID and business.id == settings.SUPER_ADMIN_ID:
        return True
    return bool(business.vendor_name) and business.vendor_name in (order.vendors or [])


def authorize_shared_store_order(business: Business, order: Order) -> None:
    if not shared_store_order_allowed(business, order):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Order {order.name or order.order_id} does not belong to this business",
        )
