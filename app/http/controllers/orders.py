"""
Order routes: listing, custom status workflow, tags, pickup and printable documents
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.auth import (
    BusinessStoreAccess,
    authorize_business_and_store,
    authorize_shared_store_order,
    get_current_user,
)
from app.config import settings
from app.database import get_db
from app.http.requests.schemas import (
    BulkOrderStatusUpdate,
    OrderStatusUpdate,
    OrderTagsUpdate,
    PickupReadyRequest,
    RevertOrderRequest,
    SlipsRequest,
    VendorPickListRequest,
)
from app.models import Order, User
from app.services import order_workflow
from app.services.documents import aggregate_vendor_items, shipping_slips_pdf, vendor_pick_list_pdf
from app.services.realtime_service import realtime_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _load_order(db: Session, access: BusinessStoreAccess, order_id: str) -> Order:
    order = order_workflow.get_order(db, access.store.id, order_id)
    if access.is_shared_store:
        authorize_shared_store_order(access.business, order)
    return order


def _load_orders(db: Session, access: BusinessStoreAccess, order_ids: list[str]) -> list[Order]:
    orders = db.query(Order).filter(
        Order.store_id == access.store.id,
        Order.order_id.in_([str(o) for o in order_ids]),
        Order.is_deleted.is_(False),
    ).all()
    if not orders:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No orders found")
    if access.is_shared_store:
        for order in orders:
            authorize_shared_store_order(access.business, order)
    by_id = {o.order_id: o for o in orders}
    return [by_id[str(o)] for o in order_ids if str(o) in by_id]


def _pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("")
async def list_orders(
    businessId: str = Query(...),
    shop: str = Query(...),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List store orders; on the shared store only the business's vendor orders are visible"""
    access = authorize_business_and_store(db, businessId, shop, current_user)
    orders, total = order_workflow.list_orders(
        db,
        access.store.id,
        status=status_filter,
        limit=limit,
        offset=offset,
        business=access.business if access.is_shared_store else None,
    )
    return {"orders": [order_workflow.order_to_dict(o) for o in orders], "total": total}


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    businessId: str = Query(...),
    shop: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, businessId, shop, current_user)
    order = _load_order(db, access, order_id)
    return order_workflow.order_to_dict(order, include_logs=True)


@router.post("/update-status")
async def update_order_status(
    data: OrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    order = _load_order(db, access, data.orderId)
    order_workflow.update_status(db, order, data.status, current_user.id)
    db.commit()
    await realtime_service.publish_order(access.store.id, "order_status_changed", order)
    return {"success": True, "message": f"Order status updated to {data.status}"}


@router.post("/bulk-update-status")
async def bulk_update_order_status(
    data: BulkOrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Orders that are unknown, or not visible to the business on the shared store, are skipped"""
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    updated = order_workflow.bulk_update_status(
        db,
        access.store.id,
        data.orderIds,
        data.status,
        current_user.id,
        business=access.business if access.is_shared_store else None,
    )
    db.commit()
    for order in updated:
        await realtime_service.publish_order(access.store.id, "order_status_changed", order)
    return {
        "success": True,
        "message": f"{len(updated)} order(s) updated to {data.status}",
        "updatedCount": len(updated),
        "skippedCount": len(data.orderIds) - len(updated),
    }


@router.post("/revert-to-confirmed")
async def revert_order_to_confirmed(
    data: RevertOrderRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    order = _load_order(db, access, data.orderId)
    order_workflow.revert_to_confirmed(db, order, current_user.id)
    db.commit()
    await realtime_service.publish_order(access.store.id, "order_status_changed", order)
    return {"success": True, "message": "Order reverted to Confirmed"}


@router.post("/update-tags")
async def update_order_tags(
    data: OrderTagsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    order = _load_order(db, access, data.orderId)
    tags = order_workflow.update_tags(db, order, data.tag, data.action)
    db.commit()
    return {"success": True, "tags": tags}


@router.post("/make-pickup-ready")
async def make_order_pickup_ready(
    data: PickupReadyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    order = _load_order(db, access, data.orderId)
    result = order_workflow.make_pickup_ready(db, order, data.assignedUpcIds)
    db.commit()
    await realtime_service.publish_order(access.store.id, "order_status_changed", order)
    return {"success": True, "message": "Order marked as pickup ready", **result}


@router.post("/slips")
async def download_shipping_slips(
    data: SlipsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """One shipping slip page per order, returned as a PDF"""
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    orders = _load_orders(db, access, data.orderIds)
    pdf = shipping_slips_pdf(orders, access.store)
    logger.info("Generated %s shipping slip(s) for %s", len(orders), access.store.id)
    return _pdf_response(pdf, f"shipping-slips-{len(orders)}.pdf")


@router.post("/vendor-pick-list")
async def download_vendor_pick_list(
    data: VendorPickListRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Aggregated SKU quantities of one vendor across the selected orders"""
    access = authorize_business_and_store(db, data.businessId, data.shop, current_user)
    vendor = data.vendor.strip()
    if not vendor:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="vendor is required")
    is_super_admin = bool(settings.SUPER_ADMIN_ID) and access.business.id == settings.SUPER_ADMIN_ID
    if access.is_shared_store and not is_super_admin and vendor != access.business.vendor_name:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vendor does not belong to this business")
    orders = _load_orders(db, access, data.orderIds)
    items = aggregate_vendor_items(orders, vendor)
    if not items:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No items found for vendor {vendor}")
    pdf = vendor_pick_list_pdf(vendor, data.poNumber, items)
    return _pdf_response(pdf, f"{data.poNumber}-{vendor}.pdf")
