"""
Goods receipt notes against purchase orders, and put-away into UPC units.
"""
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    GRN,
    GRNItem,
    GRNStatus,
    PutAwayState,
    UPC,
    utcnow,
)
from app.services import counters
from app.services.errors import ServiceError, not_found, validation_error
from app.services.purchase_orders import (
    NOT_RECEIVABLE_STATUSES,
    apply_receipt_deltas,
    ensure_products_exist,
    ensure_unique_skus,
    get_purchase_order,
    get_warehouse,
)

logger = logging.getLogger(__name__)

GRN_TRANSITIONS: dict[GRNStatus, set[GRNStatus]] = {
    GRNStatus.DRAFT: {GRNStatus.COMPLETED, GRNStatus.CANCELLED},
    GRNStatus.COMPLETED: set(),
    GRNStatus.CANCELLED: set(),
}


def _recompute_totals(grn: GRN) -> None:
    grn.received_skus = [i.sku for i in grn.items if (i.received_qty or 0) > 0]
    grn.total_expected_qty = sum(i.expected_qty or 0 for i in grn.items)
    grn.total_received_qty = sum(i.received_qty or 0 for i in grn.items)
    grn.total_not_received_qty = sum(i.not_received_qty or 0 for i in grn.items)
    grn.total_received_value = round(sum(i.total_cost or 0 for i in grn.items), 2)


def get_grn(db: Session, business_id: str, grn_id: str) -> GRN:
    grn = db.query(GRN).filter(GRN.business_id == business_id, GRN.id == grn_id).first()
    if not grn:
        raise not_found("GRN not found")
    return grn


def create_grn(db: Session, business_id: str, user_id: str, data: Any) -> GRN:
    skus = [i.sku for i in data.items]
    ensure_unique_skus(skus)
    ensure_products_exist(db, business_id, skus)

    po = get_purchase_order(db, business_id, data.poId)
    if po.status in NOT_RECEIVABLE_STATUSES:
        raise validation_error(f"Cannot receive goods against a purchase order in '{po.status.value}' status")
    po_items = {i.sku: i for i in po.items}
    not_on_po = [sku for sku in skus if sku not in po_items]
    if not_on_po:
        raise validation_error(f"SKUs not on purchase order {po.po_number}: {', '.join(not_on_po)}")
    warehouse = get_warehouse(db, business_id, data.warehouseId)

    number = counters.next_number(db, business_id, counters.GRNS)
    grn = GRN(
        business_id=business_id,
        grn_number=counters.format_number("GRN", number),
        po_id=po.id,
        po_number=po.po_number,
        warehouse_id=warehouse.id,
        warehouse_name=data.warehouseName or warehouse.name,
        status=GRNStatus.DRAFT,
        received_by=data.receivedBy or user_id,
        received_at=utcnow(),
        inspected_by=data.inspectedBy,
        notes=data.notes,
        created_by=user_id,
        updated_by=user_id,
    )
    for idx, item in enumerate(data.items):
        unit_cost = po_items[item.sku].unit_cost or 0
        grn.items.append(GRNItem(
            position=idx,
            sku=item.sku,
            product_name=item.productName,
            expected_qty=item.expectedQty,
            received_qty=item.receivedQty,
            not_received_qty=max(0, item.expectedQty - item.receivedQty),
            accepted_qty=item.receivedQty,
            rejected_qty=0,
            unit_cost=unit_cost,
            total_cost=round(item.receivedQty * unit_cost, 2),
        ))
    _recompute_totals(grn)
    db.add(grn)

    apply_receipt_deltas(po, {i.sku: (i.receivedQty, 0) for i in data.items})
    po.updated_by = user_id
    db.flush()
    logger.info("Created %s against %s; PO now %s", grn.grn_number, po.po_number, po.status.value)
    return grn


def _edit_items(grn: GRN, updates: list[Any]) -> dict[str, tuple[int, int]]:
    """Apply item edits in place; return per-SKU (accepted, rejected) deltas for the PO."""
    by_sku = {i.sku: i for i in grn.items}
    deltas: dict[str, tuple[int, int]] = {}
    for upd in updates:
        item = by_sku.get(upd.sku)
        if item is None:
            raise validation_error(f"SKU {upd.sku} is not on {grn.grn_number}")
        old_accepted, old_rejected = item.accepted_qty or 0, item.rejected_qty or 0
        if upd.receivedQty is not None:
            item.received_qty = upd.receivedQty
            item.not_received_qty = max(0, (item.expected_qty or 0) - upd.receivedQty)
        if upd.acceptedQty is not None:
            item.accepted_qty = upd.acceptedQty
        if upd.rejectedQty is not None:
            item.rejected_qty = upd.rejectedQty
        if upd.rejectionReason is not None:
            item.rejection_reason = upd.rejectionReason
        if upd.unitCost is not None:
            item.unit_cost = upd.unitCost
        if item.accepted_qty + item.rejected_qty > item.received_qty:
            raise validation_error(
                f"Accepted ({item.accepted_qty}) + rejected ({item.rejected_qty}) exceeds "
                f"received ({item.received_qty}) for SKU {item.sku}"
            )
        item.total_cost = round(item.accepted_qty * (item.unit_cost or 0), 2)
        deltas[item.sku] = (item.accepted_qty - old_accepted, item.rejected_qty - old_rejected)
    return deltas


def update_grn(db: Session, business_id: str, user_id: str, grn_id: str, data: Any) -> tuple[GRN, list[str]]:
    grn = get_grn(db, business_id, grn_id)
    updated: list[str] = []

    if data.status is not None and data.status not in GRN_TRANSITIONS[grn.status]:
        raise ServiceError(
            400,
            "Invalid Transition",
            f"Cannot transition from '{grn.status.value}' to '{data.status.value}'",
        )

    if data.items is not None:
        if grn.status != GRNStatus.DRAFT:
            raise validation_error("Items can only be edited while the GRN is in draft")
        deltas = _edit_items(grn, data.items)
        _recompute_totals(grn)
        if any(d != (0, 0) for d in deltas.values()):
            apply_receipt_deltas(grn.purchase_order, deltas)
        updated.append("items")

    if data.notes is not None:
        grn.notes = data.notes
        updated.append("notes")
    if data.inspectedBy is not None:
        grn.inspected_by = data.inspectedBy
        updated.append("inspectedBy")

    if data.status is not None:
        now = utcnow()
        if data.status == GRNStatus.CANCELLED:
            revert = {i.sku: (-(i.accepted_qty or 0), -(i.rejected_qty or 0)) for i in grn.items}
            po = grn.purchase_order
            apply_receipt_deltas(po, revert)
            grn.cancelled_at = now
            logger.info("Cancelled %s; reverted %s to %s", grn.grn_number, po.po_number, po.status.value)
        elif data.status == GRNStatus.COMPLETED:
            grn.completed_at = now
            grn.completed_by = user_id
        grn.status = data.status
        updated.append("status")

    if updated:
        grn.updated_by = user_id
        grn.updated_at = utcnow()
    db.flush()
    return grn, updated


def delete_grn(db: Session, business_id: str, grn_id: str) -> str:
    grn = get_grn(db, business_id, grn_id)
    if grn.status != GRNStatus.CANCELLED:
        raise validation_error(f"Only cancelled GRNs can be deleted (current: '{grn.status.value}')")
    number = grn.grn_number
    db.delete(grn)
    db.flush()
    return number


def confirm_put_away(db: Session, business_id: str, user_id: str, grn_id: str) -> tuple[GRN, list[dict]]:
    """
    Create one inbound UPC per received unit and complete the GRN.
    UPC rows are flushed in chunks of WRITE_BATCH_LIMIT.
    """
    grn = get_grn(db, business_id, grn_id)
    if grn.status != GRNStatus.DRAFT:
        raise validation_error(f"Only draft GRNs can be put away (current: '{grn.status.value}')")
    total = sum(i.received_qty or 0 for i in grn.items if (i.received_qty or 0) > 0)
    if total == 0:
        raise validation_error("No received units to put away")

    limit = max(1, settings.WRITE_BATCH_LIMIT)
    pending = 0
    summary: list[dict] = []
    for item in grn.items:
        qty = item.received_qty or 0
        if qty <= 0:
            continue
        for _ in range(qty):
            db.add(UPC(
                business_id=business_id,
                product_id=item.sku,
                grn_id=grn.id,
                put_away=PutAwayState.INBOUND,
                warehouse_id=None,
                zone_id=None,
                rack_id=None,
                shelf_id=None,
                placement_id=None,
                store_id=None,
                order_id=None,
                created_by=user_id,
                updated_by=user_id,
            ))
            pending += 1
            if pending >= limit:
                db.flush()
                pending = 0
        summary.append({"sku": item.sku, "productName": item.product_name, "upcsCreated": qty})

    grn.status = GRNStatus.COMPLETED
    grn.completed_at = utcnow()
    grn.completed_by = user_id
    grn.total_upcs_created = total
    grn.updated_by = user_id
    db.flush()
    logger.info("Put away %s: %s UPC(s) created", grn.grn_number, total)
    return grn, summary
