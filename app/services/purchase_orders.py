"""
Purchase order workflow: creation, status transitions, item edits and receipt math.

Transitions:
    draft              -> confirmed, cancelled
    confirmed          -> partially_received, closed, cancelled
    partially_received -> partially_received, fully_received, closed
    fully_received     -> closed
    closed, cancelled  -> (terminal)
"""
import logging
from collections import Counter as _Counter
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.models import (
    GRN,
    Party,
    PartyType,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderItemStatus,
    PurchaseOrderStatus,
    Warehouse,
    utcnow,
)
from app.services import counters
from app.services.errors import ServiceError, not_found, validation_error

logger = logging.getLogger(__name__)

S = PurchaseOrderStatus

PO_TRANSITIONS: dict[PurchaseOrderStatus, set[PurchaseOrderStatus]] = {
    S.DRAFT: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.PARTIALLY_RECEIVED, S.CLOSED, S.CANCELLED},
    S.PARTIALLY_RECEIVED: {S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED, S.CLOSED},
    S.FULLY_RECEIVED: {S.CLOSED},
    S.CLOSED: set(),
    S.CANCELLED: set(),
}

ITEM_EDITABLE_STATUSES = {S.DRAFT, S.CONFIRMED}
DELETABLE_STATUSES = {S.DRAFT, S.CANCELLED}
# A PO still expecting goods; blocks supplier deactivation
CLOSED_OUT_STATUSES = {S.CLOSED, S.CANCELLED, S.FULLY_RECEIVED}
NOT_RECEIVABLE_STATUSES = {S.DRAFT, S.CLOSED, S.CANCELLED}

DEFAULT_CURRENCY = "INR"


def duplicate_skus(skus: Iterable[str]) -> list[str]:
    counts = _Counter(skus)
    return sorted(sku for sku, n in counts.items() if n > 1)


def ensure_unique_skus(skus: Iterable[str]) -> None:
    dupes = duplicate_skus(skus)
    if dupes:
        raise validation_error(
            f"Duplicate SKUs found in line items: {', '.join(dupes)}. Each product can only appear once."
        )


def ensure_products_exist(db: Session, business_id: str, skus: list[str]) -> dict[str, Product]:
    products = (
        db.query(Product)
        .filter(Product.business_id == business_id, Product.sku.in_(skus))
        .all()
    )
    by_sku = {p.sku: p for p in products}
    missing = [sku for sku in skus if sku not in by_sku]
    if missing:
        raise not_found(f"Products not found: {', '.join(missing)}", missingSkus=missing)
    return by_sku


def validate_supplier(db: Session, business_id: str, party_id: str) -> Party:
    party = db.query(Party).filter(Party.business_id == business_id, Party.id == party_id).first()
    if not party:
        raise not_found("Supplier not found")
    if not party.is_active:
        raise validation_error("Supplier is inactive")
    if party.type not in (PartyType.SUPPLIER, PartyType.BOTH):
        raise validation_error("Party is not a supplier")
    return party


def get_warehouse(db: Session, business_id: str, warehouse_id: str) -> Warehouse:
    warehouse = db.query(Warehouse).filter(
        Warehouse.business_id == business_id,
        Warehouse.id == warehouse_id,
        Warehouse.is_deleted.is_(False),
    ).first()
    if not warehouse:
        raise not_found("Warehouse not found")
    return warehouse


def validate_transition(current: PurchaseOrderStatus, target: PurchaseOrderStatus) -> None:
    if target not in PO_TRANSITIONS[current]:
        raise ServiceError(
            400,
            "Invalid Transition",
            f"Cannot transition from '{current.value}' to '{target.value}'",
        )


def derive_item_status(received_qty: int, ordered_qty: int) -> PurchaseOrderItemStatus:
    if received_qty <= 0:
        return PurchaseOrderItemStatus.PENDING
    if received_qty < ordered_qty:
        return PurchaseOrderItemStatus.PARTIALLY_RECEIVED
    return PurchaseOrderItemStatus.FULLY_RECEIVED


def derive_po_status(items: list[PurchaseOrderItem]) -> PurchaseOrderStatus:
    if items and all(i.status == PurchaseOrderItemStatus.FULLY_RECEIVED for i in items):
        return S.FULLY_RECEIVED
    if any((i.received_qty or 0) > 0 for i in items):
        return S.PARTIALLY_RECEIVED
    return S.CONFIRMED


def apply_receipt_deltas(po: PurchaseOrder, deltas: dict[str, tuple[int, int]]) -> PurchaseOrderStatus:
    """
    Add (received, rejected) deltas per SKU to the PO items, floor at zero and
    re-derive item and PO statuses.
    """
    for item in po.items:
        if item.sku not in deltas:
            continue
        d_received, d_rejected = deltas[item.sku]
        item.received_qty = max(0, (item.received_qty or 0) + d_received)
        item.rejected_qty = max(0, (item.rejected_qty or 0) + d_rejected)
        item.status = derive_item_status(item.received_qty, item.ordered_qty)
    if po.status in (S.CLOSED, S.CANCELLED):
        return po.status
    po.status = derive_po_status(po.items)
    if po.status == S.FULLY_RECEIVED and po.completed_at is None:
        po.completed_at = utcnow()
    return po.status


def _build_items(items: list[Any]) -> list[PurchaseOrderItem]:
    return [
        PurchaseOrderItem(
            position=idx,
            sku=item.sku,
            product_name=item.productName,
            ordered_qty=item.orderedQty,
            unit_cost=item.unitCost,
            received_qty=0,
            rejected_qty=0,
            status=PurchaseOrderItemStatus.PENDING,
        )
        for idx, item in enumerate(items)
    ]


def _apply_item_totals(po: PurchaseOrder) -> None:
    po.ordered_skus = [i.sku for i in po.items]
    po.item_count = len(po.items)
    po.total_amount = round(sum(i.ordered_qty * i.unit_cost for i in po.items), 2)


def create_purchase_order(db: Session, business_id: str, user_id: str, data: Any) -> PurchaseOrder:
    skus = [i.sku for i in data.items]
    ensure_unique_skus(skus)
    party = validate_supplier(db, business_id, data.supplierPartyId)
    warehouse = get_warehouse(db, business_id, data.warehouseId)
    ensure_products_exist(db, business_id, skus)

    number = counters.next_number(db, business_id, counters.PURCHASE_ORDERS)
    po = PurchaseOrder(
        business_id=business_id,
        po_number=counters.format_number("PO", number),
        supplier_party_id=party.id,
        supplier_name=data.supplierName,
        warehouse_id=warehouse.id,
        warehouse_name=data.warehouseName or warehouse.name,
        status=S.DRAFT,
        currency=data.currency or DEFAULT_CURRENCY,
        expected_date=data.expectedDate.isoformat(),
        notes=data.notes,
        confirmed_at=None,
        completed_at=None,
        cancelled_at=None,
        cancel_reason=None,
        created_by=user_id,
        updated_by=user_id,
    )
    po.items = _build_items(data.items)
    _apply_item_totals(po)
    db.add(po)
    db.flush()
    logger.info("Created purchase order %s for business %s", po.po_number, business_id)
    return po


def get_purchase_order(db: Session, business_id: str, po_id: str) -> PurchaseOrder:
    po = db.query(PurchaseOrder).filter(
        PurchaseOrder.business_id == business_id,
        PurchaseOrder.id == po_id,
    ).first()
    if not po:
        raise not_found("Purchase order not found")
    return po


def update_purchase_order(
    db: Session, business_id: str, user_id: str, po_id: str, data: Any
) -> tuple[PurchaseOrder, list[str]]:
    """Apply the supplied fields; returns the PO and the names of the fields changed."""
    po = get_purchase_order(db, business_id, po_id)
    current = po.status
    updated: list[str] = []

    if data.items is not None:
        if current not in ITEM_EDITABLE_STATUSES:
            raise validation_error(
                f"Items can only be edited while the purchase order is draft or confirmed (current: '{current.value}')"
            )
        if not data.items:
            raise validation_error("At least one line item is required")
        skus = [i.sku for i in data.items]
        ensure_unique_skus(skus)
        ensure_products_exist(db, business_id, skus)

    target: Optional[PurchaseOrderStatus] = None
    if data.status is not None:
        validate_transition(current, data.status)
        target = data.status

    if data.supplierPartyId is not None and data.supplierPartyId != po.supplier_party_id:
        party = validate_supplier(db, business_id, data.supplierPartyId)
        po.supplier_party_id = party.id
        po.supplier_name = data.supplierName or party.name
        updated.append("supplierPartyId")
        updated.append("supplierName")
    elif data.supplierName is not None and data.supplierName != po.supplier_name:
        po.supplier_name = data.supplierName
        updated.append("supplierName")

    if data.warehouseId is not None and data.warehouseId != po.warehouse_id:
        warehouse = get_warehouse(db, business_id, data.warehouseId)
        po.warehouse_id = warehouse.id
        po.warehouse_name = data.warehouseName or warehouse.name
        updated.append("warehouseId")

    if data.expectedDate is not None:
        po.expected_date = data.expectedDate.isoformat()
        updated.append("expectedDate")
    if data.notes is not None:
        po.notes = data.notes
        updated.append("notes")
    if data.currency is not None:
        po.currency = data.currency
        updated.append("currency")

    if data.items is not None:
        po.items = _build_items(data.items)
        _apply_item_totals(po)
        updated.extend(["items", "orderedSkus", "itemCount", "totalAmount"])

    if target is not None:
        now = utcnow()
        po.status = target
        updated.append("status")
        if target == S.CONFIRMED and po.confirmed_at is None:
            po.confirmed_at = now
            updated.append("confirmedAt")
        if target in (S.FULLY_RECEIVED, S.CLOSED):
            po.completed_at = now
            updated.append("completedAt")
        if target == S.CANCELLED:
            po.cancelled_at = now
            po.cancel_reason = data.cancelReason
            updated.extend(["cancelledAt", "cancelReason"])

    if updated:
        po.updated_by = user_id
        po.updated_at = utcnow()
    db.flush()
    logger.info("Updated purchase order %s: %s", po.po_number, updated)
    return po, updated


def delete_purchase_order(db: Session, business_id: str, po_id: str) -> str:
    po = get_purchase_order(db, business_id, po_id)
    if po.status not in DELETABLE_STATUSES:
        raise validation_error(
            f"Only draft or cancelled purchase orders can be deleted (current: '{po.status.value}')"
        )
    grn_count = db.query(GRN).filter(GRN.po_id == po.id).count()
    if grn_count:
        raise validation_error(f"Cannot delete purchase order with {grn_count} GRN(s) against it")
    po_number = po.po_number
    db.delete(po)
    db.flush()
    logger.info("Deleted purchase order %s", po_number)
    return po_number


def open_purchase_order_count(db: Session, business_id: str, party_id: str) -> int:
    return (
        db.query(PurchaseOrder)
        .filter(
            PurchaseOrder.business_id == business_id,
            PurchaseOrder.supplier_party_id == party_id,
            PurchaseOrder.status.notin_(list(CLOSED_OUT_STATUSES)),
        )
        .count()
    )
