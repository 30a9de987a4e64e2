"""
Goods receipt note routes
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth import authorize_business, get_current_user
from app.database import get_db
from app.http.requests.schemas import GRNCreate, GRNUpdate
from app.models import GRN, GRNStatus, User
from app.services import grns as grn_service
from app.services.errors import validation_error

router = APIRouter()


def _iso(value):
    return value.isoformat() if value else None


def grn_to_dict(grn: GRN, include_items: bool = True) -> dict:
    data = {
        "id": grn.id,
        "grnNumber": grn.grn_number,
        "poId": grn.po_id,
        "poNumber": grn.po_number,
        "warehouseId": grn.warehouse_id,
        "warehouseName": grn.warehouse_name,
        "status": grn.status.value,
        "receivedSkus": grn.received_skus or [],
        "totalExpectedQty": grn.total_expected_qty,
        "totalReceivedQty": grn.total_received_qty,
        "totalNotReceivedQty": grn.total_not_received_qty,
        "totalReceivedValue": grn.total_received_value,
        "totalUpcsCreated": grn.total_upcs_created,
        "receivedBy": grn.received_by,
        "receivedAt": _iso(grn.received_at),
        "inspectedBy": grn.inspected_by,
        "notes": grn.notes,
        "completedAt": _iso(grn.completed_at),
        "cancelledAt": _iso(grn.cancelled_at),
        "createdAt": _iso(grn.created_at),
    }
    if include_items:
        data["items"] = [
            {
                "sku": i.sku,
                "productName": i.product_name,
                "expectedQty": i.expected_qty,
                "receivedQty": i.received_qty,
                "notReceivedQty": i.not_received_qty,
                "acceptedQty": i.accepted_qty,
                "rejectedQty": i.rejected_qty,
                "rejectionReason": i.rejection_reason,
                "unitCost": i.unit_cost,
                "totalCost": i.total_cost,
            }
            for i in grn.items
        ]
    return data


@router.get("")
async def list_grns(
    businessId: str = Query(...),
    poId: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    query = db.query(GRN).filter(GRN.business_id == access.business.id)
    if poId:
        query = query.filter(GRN.po_id == poId)
    if status_filter:
        try:
            query = query.filter(GRN.status == GRNStatus(status_filter))
        except ValueError:
            raise validation_error(f"Invalid status '{status_filter}'")
    grns = query.order_by(GRN.created_at.desc()).all()
    return {"grns": [grn_to_dict(g, include_items=False) for g in grns]}


@router.get("/{grn_id}")
async def get_grn(
    grn_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return grn_to_dict(grn_service.get_grn(db, access.business.id, grn_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_grn(
    data: GRNCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Receive goods against a purchase order; the PO's received quantities and status follow"""
    access = authorize_business(db, data.businessId, current_user)
    grn = grn_service.create_grn(db, access.business.id, current_user.id, data)
    db.commit()
    return {
        "success": True,
        "grnId": grn.id,
        "grnNumber": grn.grn_number,
        "poStatus": grn.purchase_order.status.value,
    }


@router.put("/{grn_id}")
async def update_grn(
    grn_id: str,
    data: GRNUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    grn, updated = grn_service.update_grn(db, access.business.id, current_user.id, grn_id, data)
    db.commit()
    return {
        "success": True,
        "grnId": grn.id,
        "status": grn.status.value,
        "poStatus": grn.purchase_order.status.value,
        "updatedFields": updated,
    }


@router.delete("/{grn_id}")
async def delete_grn(
    grn_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    number = grn_service.delete_grn(db, access.business.id, grn_id)
    db.commit()
    return {"success": True, "deletedGrnNumber": number}


@router.post("/{grn_id}/confirm-put-away")
async def confirm_put_away(
    grn_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    grn, summary = grn_service.confirm_put_away(db, access.business.id, current_user.id, grn_id)
    db.commit()
    return {
        "success": True,
        "grnNumber": grn.grn_number,
        "totalUpcsCreated": grn.total_upcs_created,
        "items": summary,
    }
