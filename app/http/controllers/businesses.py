"""
Businesses and their linked Shopify stores.
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.auth import authorize_business, get_current_user
from app.database import get_db
from app.http.requests.schemas import BusinessCreate, StoreConnectRequest
from app.models import Business, BusinessStore, Store, User
from app.services.credentials import encrypt_token

logger = logging.getLogger(__name__)
router = APIRouter()


def _store_payload(store: Store) -> dict:
    return {
        "id": store.id,
        "alias": store.alias,
        "sellerName": store.seller_name,
        "connected": bool(store.access_token),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_business(
    data: BusinessCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    business = Business(
        owner_id=current_user.id,
        name=data.name.strip(),
        vendor_name=(data.vendorName or "").strip() or None,
        courier_priority_enabled=False,
        courier_priority_list=[],
    )
    db.add(business)
    db.commit()
    db.refresh(business)
    logger.info("User %s created business %s", current_user.id, business.id)
    return {"id": business.id, "name": business.name, "vendorName": business.vendor_name}


@router.post("/stores", status_code=status.HTTP_201_CREATED)
async def connect_store(
    data: StoreConnectRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Connect a Shopify store (Admin API token is stored encrypted) and link it to the business."""
    access = authorize_business(db, data.businessId, current_user)
    store = db.query(Store).filter(Store.id == data.shop).first()
    if store is None:
        store = Store(id=data.shop, active_templates={})
        db.add(store)
    store.access_token = encrypt_token(data.accessToken)
    for attr, value in (
        ("alias", data.alias),
        ("seller_name", data.sellerName),
        ("seller_gstin", data.sellerGstin),
        ("return_address", data.returnAddress),
    ):
        if value is not None:
            setattr(store, attr, value.strip() or None)

    link = db.query(BusinessStore).filter(
        BusinessStore.business_id == access.business.id,
        BusinessStore.store_id == store.id,
    ).first()
    if link is None:
        db.add(BusinessStore(business_id=access.business.id, store_id=store.id))
    db.commit()
    logger.info("Store %s linked to business %s", store.id, access.business.id)
    return _store_payload(store)


@router.get("/{business_id}/stores")
async def list_business_stores(
    business_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, business_id, current_user)
    stores = (
        db.query(Store)
        .join(BusinessStore, BusinessStore.store_id == Store.id)
        .filter(BusinessStore.business_id == access.business.id)
        .order_by(Store.id)
        .all()
    )
    return [_store_payload(s) for s in stores]
