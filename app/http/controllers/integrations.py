"""
Courier integrations (per business) and messaging settings (per store).
Secrets are stored encrypted and never returned unmasked.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import authorize_business, authorize_store, get_current_user
from app.database import get_db
from app.http.requests.schemas import (
    ActiveTemplateRequest,
    BlueDartRequest,
    CourierApiKeyRequest,
    CourierLoginRequest,
    CourierPriorityRequest,
    InteraktKeyRequest,
    WhatsAppAccountRequest,
)
from app.models import User
from app.services import couriers, store_settings

logger = logging.getLogger(__name__)
router = APIRouter()


# Couriers
@router.get("")
async def get_business_integrations(
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return couriers.masked_couriers(db, access.business)


@router.post("/courier")
async def update_courier_api_key(
    data: CourierApiKeyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    couriers.save_courier_api_key(db, access.business, data.courierName, data.apiKey)
    db.commit()
    return {"success": True, "message": f"{data.courierName} integration updated"}


@router.post("/shiprocket")
async def connect_shiprocket(
    data: CourierLoginRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    await couriers.connect_login_courier(db, access.business, couriers.SHIPROCKET, data.email, data.password)
    db.commit()
    return {"success": True, "message": "Shiprocket connected successfully"}


@router.post("/xpressbees")
async def connect_xpressbees(
    data: CourierLoginRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    await couriers.connect_login_courier(db, access.business, couriers.XPRESSBEES, data.email, data.password)
    db.commit()
    return {"success": True, "message": "Xpressbees connected successfully"}


@router.post("/xpressbees/refresh-token")
async def refresh_xpressbees_token(
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    await couriers.refresh_courier_token(db, access.business, couriers.XPRESSBEES)
    db.commit()
    return {"success": True, "message": "Xpressbees token refreshed"}


@router.post("/bluedart")
async def connect_bluedart(
    data: BlueDartRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    couriers.save_bluedart(db, access.business, data.customerCode, data.loginId, data.licenceKey)
    db.commit()
    return {"success": True, "message": "Blue Dart integration saved"}


@router.post("/courier-priority")
async def update_courier_priority(
    data: CourierPriorityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    priority = couriers.update_priority(
        db, access.business, data.enabled, [e.model_dump() for e in data.priorityList]
    )
    db.commit()
    return {"success": True, "priorityEnabled": data.enabled, "priorityList": priority}


@router.delete("/courier")
async def delete_courier(
    businessId: str = Query(...),
    courierName: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    couriers.delete_courier(db, access.business, courierName)
    db.commit()
    return {"success": True, "message": f"{courierName} integration removed"}


# Store messaging
@router.get("/store")
async def get_store_integrations(
    shop: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_store(db, shop, current_user)
    return store_settings.masked_store_settings(db, access.store)


@router.post("/interakt")
async def update_interakt_key(
    data: InteraktKeyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_store(db, data.shop, current_user)
    store_settings.save_interakt_key(db, access.store, data.key, data.value)
    db.commit()
    return {"success": True, "message": f"Interakt {data.key} updated"}


@router.post("/whatsapp")
async def update_whatsapp_account(
    data: WhatsAppAccountRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_store(db, data.shop, current_user)
    store_settings.save_whatsapp_account(
        db, access.store, data.phoneNumberId, data.accessToken, data.headerImageUrl
    )
    db.commit()
    return {"success": True, "message": "WhatsApp account updated"}


@router.post("/whatsapp/templates")
async def set_active_whatsapp_template(
    data: ActiveTemplateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_store(db, data.shop, current_user)
    templates = store_settings.set_active_template(db, access.store, data.category, data.templateId)
    db.commit()
    return {"success": True, "activeTemplates": templates}
