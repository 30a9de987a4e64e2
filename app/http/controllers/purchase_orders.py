"""
Purchase order routes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.auth import authorize_business, get_current_user
from app.database import get_db
from app.http.requests.schemas import PurchaseOrderCreate, PurchaseOrderUpdate
from app.models import PurchaseOrder, PurchaseOrderStatus, User
from app.services import purchase_orders as po_service
from app.services.documents import purchase_order_pdf
from app.services.errors import validation_error

logger = logging.getLogger(__name__)
router = APIRouter()


def _iso(value):
    return value.isoformat() if value else None


def po_to_dict(po: PurchaseOrder, include_items: bool = True) -> dict:
    data = {
        "id": po.id,
        "poNumber": po.po_number,
        "supplierPartyId": po.supplier_party_id,
        "supplierName": po.supplier_name,
        "warehouseId": po.warehouse_id,
        "warehouseName": po.warehouse_name,
        "status": po.status.value,
        "orderedSkus": po.ordered_skus or [],
        "itemCount": po.item_count,
        "totalAmount": po.total_amount,
        "currency": po.currency,
        "expectedDate": po.expected_date,
        "notes": po.notes,
        "confirmedAt": _iso(po.confirmed_at),
        "completedAt": _iso(po.completed_at),
        "cancelledAt": _iso(po.cancelled_at),
        "cancelReason": po.cancel_reason,
        "createdBy": po.created_by,
        "createdAt": _iso(po.created_at),
        "updatedAt": _iso(po.updated_at),
    }
    if include_items:
        data["items"] = [
            {
                "sku": i.sku,
                "productName": i.product_name,
                "orderedQty": i.ordered_qty,
                "unitCost": i.unit_cost,
                "receivedQty": i.received_qty,
                "rejectedQty": i.rejected_qty,
                "status": i.status.value,
            }
            for i in po.items
        ]
    return data


@router.get("")
async def list_purchase_orders(
    businessId: str = Query(...),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    query = db.query(PurchaseOrder).filter(PurchaseOrder.business_id == access.business.id)
    if status_filter:
        try:
            query = query.filter(PurchaseOrder.status == PurchaseOrderStatus(status_filter))
        except ValueError:
            raise validation_error(f"Invalid status '{status_filter}'")
    orders = query.order_by(PurchaseOrder.created_at.desc()).all()
    return {"purchaseOrders": [po_to_dict(po, include_items=False) for po in orders]}


@router.get("/{po_id}")
async def get_purchase_order(
    po_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return po_to_dict(po_service.get_purchase_order(db, access.business.id, po_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    data: PurchaseOrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    po = po_service.create_purchase_order(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "purchaseOrderId": po.id, "poNumber": po.po_number}


@router.put("/{po_id}")
async def update_purchase_order(
    po_id: str,
    data: PurchaseOrderUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    po, updated = po_service.update_purchase_order(db, access.business.id, current_user.id, po_id, data)
    db.commit()
    return {"success": True, "purchaseOrderId": po.id, "status": po.status.value, "updatedFields": updated}


@router.delete("/{po_id}")
async def delete_purchase_order(
    po_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    po_number = po_service.delete_purchase_order(db, access.business.id, po_id)
    db.commit()
    return {"success": True, "deletedPoNumber": po_number}


@router.get("/{po_id}/pdf")
async def download_purchase_order_pdf(
    po_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    po = po_service.get_purchase_order(db, access.business.id, po_id)
    return Response(
        content=purchase_order_pdf(po),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{po.po_number}.pdf"'},
    )
