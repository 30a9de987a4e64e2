"""
Store (Shopify) products mirror and variant-to-SKU mappings
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.auth import authorize_business_and_store, get_current_user
from app.database import get_db
from app.http.requests.schemas import StoreProductsSync, VariantMappingRequest
from app.models import StoreProduct, User
from app.services import shopify_service, variant_mapping
from app.services.credentials import decrypt_token
from app.services.shopify_service import ShopifyAPIError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def list_store_products(
    businessId: str = Query(...),
    shop: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, businessId, shop, current_user)
    rows = (
        db.query(StoreProduct)
        .filter(StoreProduct.store_id == access.store.id)
        .order_by(StoreProduct.title)
        .all()
    )
    return {"products": [variant_mapping.store_product_to_dict(r) for r in rows]}


@router.post("/sync")
async def sync_store_products(
    data: StoreProductsSync,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Pull every product of the shop from Shopify into the local mirror"""
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    token = decrypt_token(access.store.access_token) if access.store.access_token else None
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Store is not connected (missing access token)")
    try:
        products = await shopify_service.get_products(access.store.id, token)
    except ShopifyAPIError as e:
        logger.warning("Shopify product sync failed for %s: %s", access.store.id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch products from Shopify")
    count = variant_mapping.upsert_store_products(db, access.store, products)
    db.commit()
    return {"success": True, "synced": count}


@router.post("/create-mapping")
async def create_variant_mapping(
    data: VariantMappingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    if not data.businessProductSku:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="businessProductSku is required")
    mapping = variant_mapping.create_mapping(
        db,
        access.business.id,
        access.store.id,
        current_user.id,
        data.storeProductId,
        data.storeVariantId,
        data.businessProductSku,
    )
    db.commit()
    return {"success": True, "message": "Variant mapped successfully", "mapping": mapping}


@router.post("/remove-mapping")
async def remove_variant_mapping(
    data: VariantMappingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    mapping = variant_mapping.remove_mapping(
        db, access.business.id, access.store.id, current_user.id, data.storeProductId, data.storeVariantId
    )
    db.commit()
    return {"success": True, "message": "Variant mapping removed successfully", "mapping": mapping}
