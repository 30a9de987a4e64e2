"""
Warehouse layout (warehouse > zone > rack > shelf) and UPC placement.
"""
import logging
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import PutAwayState, Rack, Shelf, UPC, Warehouse, Zone, utcnow
from app.services.errors import ServiceError, not_found, validation_error

logger = logging.getLogger(__name__)

MAX_PUT_AWAY_BATCH = 500


def normalize_code(code: Optional[str], label: str) -> str:
    code = (code or "").strip().upper()
    if not code:
        raise validation_error(f"{label} code is required")
    return code


def _required_name(name: Optional[str], label: str) -> str:
    name = (name or "").strip()
    if not name:
        raise validation_error(f"{label} name is required")
    return name


def _active(query, model):
    return query.filter(model.is_deleted.is_(False))


def _get(db: Session, model, business_id: str, obj_id: str, label: str):
    obj = _active(db.query(model), model).filter(model.business_id == business_id, model.id == obj_id).first()
    if not obj:
        raise not_found(f"{label} not found")
    return obj


def _soft_delete(obj, user_id: str) -> None:
    now = utcnow()
    obj.is_deleted = True
    obj.deleted_at = now
    obj.updated_by = user_id
    obj.updated_at = now


# Warehouses
def create_warehouse(db: Session, business_id: str, user_id: str, data: Any) -> Warehouse:
    """Create a warehouse, or revive a soft-deleted one with the same code."""
    code = normalize_code(data.code, "Warehouse")
    name = _required_name(data.name, "Warehouse")
    existing = db.query(Warehouse).filter(Warehouse.business_id == business_id, Warehouse.code == code).first()
    if existing and not existing.is_deleted:
        raise ServiceError(409, "Conflict", f'Warehouse with code "{code}" already exists')

    warehouse = existing or Warehouse(business_id=business_id, code=code, created_by=user_id)
    warehouse.name = name
    warehouse.address = (data.address or "").strip() or None
    warehouse.storage_capacity = data.storageCapacity or 0
    warehouse.operational_hours = data.operationalHours or 0
    warehouse.default_gst_state = data.defaultGSTstate
    warehouse.is_deleted = False
    warehouse.deleted_at = None
    warehouse.updated_by = user_id
    if existing is None:
        db.add(warehouse)
    db.flush()
    logger.info("%s warehouse %s for business %s", "Restored" if existing else "Created", code, business_id)
    return warehouse


def list_warehouses(db: Session, business_id: str) -> list[Warehouse]:
    return _active(db.query(Warehouse), Warehouse).filter(Warehouse.business_id == business_id).order_by(Warehouse.code).all()


def delete_warehouse(db: Session, business_id: str, user_id: str, warehouse_id: str) -> None:
    warehouse = _get(db, Warehouse, business_id, warehouse_id, "Warehouse")
    if _active(db.query(Zone), Zone).filter(Zone.warehouse_id == warehouse.id).first():
        raise validation_error("Cannot delete warehouse with active zones. Remove all zones first.")
    _soft_delete(warehouse, user_id)
    db.flush()


# Zones
def create_zone(db: Session, business_id: str, user_id: str, data: Any) -> Zone:
    warehouse = _get(db, Warehouse, business_id, data.warehouseId, "Warehouse")
    code = normalize_code(data.code, "Zone")
    name = _required_name(data.name, "Zone")
    existing = db.query(Zone).filter(Zone.business_id == business_id, Zone.code == code).first()
    if existing:
        raise ServiceError(409, "Conflict", f'Zone with code "{code}" already exists')
    zone = Zone(
        business_id=business_id,
        warehouse_id=warehouse.id,
        code=code,
        name=name,
        description=(data.description or "").strip() or None,
        is_deleted=False,
        created_by=user_id,
        updated_by=user_id,
    )
    db.add(zone)
    db.flush()
    return zone


def list_zones(db: Session, business_id: str, warehouse_id: str) -> list[Zone]:
    return (
        _active(db.query(Zone), Zone)
        .filter(Zone.business_id == business_id, Zone.warehouse_id == warehouse_id)
        .order_by(Zone.code)
        .all()
    )


def delete_zone(db: Session, business_id: str, user_id: str, zone_id: str) -> None:
    zone = _get(db, Zone, business_id, zone_id, "Zone")
    if _active(db.query(Rack), Rack).filter(Rack.zone_id == zone.id).first():
        raise validation_error("Cannot delete zone with active racks. Remove all racks first.")
    _soft_delete(zone, user_id)
    db.flush()


# Racks
def create_rack(db: Session, business_id: str, user_id: str, data: Any) -> Rack:
    """Insert at the given position, shifting later racks down, or append after the last one."""
    zone = _get(db, Zone, business_id, data.zoneId, "Zone")
    name = _required_name(data.name, "Rack")
    siblings = _active(db.query(Rack), Rack).filter(Rack.zone_id == zone.id).all()

    if data.position and data.position > 0:
        position = data.position
        for rack in siblings:
            if (rack.position or 0) >= position:
                rack.position = (rack.position or 0) + 1
                rack.updated_by = user_id
    else:
        position = max((r.position or 0 for r in siblings), default=0) + 1

    rack = Rack(
        business_id=business_id,
        warehouse_id=zone.warehouse_id,
        zone_id=zone.id,
        code=(data.code or "").strip() or None,
        name=name,
        position=position,
        is_deleted=False,
        created_by=user_id,
        updated_by=user_id,
    )
    db.add(rack)
    db.flush()
    return rack


def list_racks(db: Session, business_id: str, zone_id: str) -> list[Rack]:
    return (
        _active(db.query(Rack), Rack)
        .filter(Rack.business_id == business_id, Rack.zone_id == zone_id)
        .order_by(Rack.position)
        .all()
    )


def delete_rack(db: Session, business_id: str, user_id: str, rack_id: str) -> None:
    rack = _get(db, Rack, business_id, rack_id, "Rack")
    if _active(db.query(Shelf), Shelf).filter(Shelf.rack_id == rack.id).first():
        raise validation_error("Cannot delete rack with active shelves. Remove all shelves first.")
    _soft_delete(rack, user_id)
    db.flush()


# Shelves
def create_shelf(db: Session, business_id: str, user_id: str, data: Any) -> Shelf:
    rack = _get(db, Rack, business_id, data.rackId, "Rack")
    name = _required_name(data.name, "Shelf")
    shelf = Shelf(
        business_id=business_id,
        warehouse_id=rack.warehouse_id,
        zone_id=rack.zone_id,
        rack_id=rack.id,
        code=(data.code or "").strip() or None,
        name=name,
        position=data.position or 0,
        capacity=data.capacity,
        is_deleted=False,
        created_by=user_id,
        updated_by=user_id,
    )
    db.add(shelf)
    db.flush()
    return shelf


def list_shelves(db: Session, business_id: str, rack_id: str) -> list[Shelf]:
    return (
        _active(db.query(Shelf), Shelf)
        .filter(Shelf.business_id == business_id, Shelf.rack_id == rack_id)
        .order_by(Shelf.position)
        .all()
    )


def delete_shelf(db: Session, business_id: str, user_id: str, shelf_id: str) -> None:
    shelf = _get(db, Shelf, business_id, shelf_id, "Shelf")
    placed = db.query(func.count(UPC.id)).filter(
        UPC.business_id == business_id,
        UPC.shelf_id == shelf.id,
        UPC.put_away == PutAwayState.NONE,
    ).scalar()
    if placed:
        raise validation_error("Cannot delete shelf with products. Remove all products first.")
    _soft_delete(shelf, user_id)
    db.flush()


# UPC placement
def put_away_batch(db: Session, business_id: str, user_id: str, data: Any) -> int:
    """Move UPCs onto a shelf. Returns the number of distinct UPCs placed."""
    upc_ids = list(dict.fromkeys(data.upcIds))
    if not upc_ids or len(upc_ids) > MAX_PUT_AWAY_BATCH:
        raise validation_error(f"upcIds must be a non-empty array of length at most {MAX_PUT_AWAY_BATCH}")

    warehouse = db.query(Warehouse).filter(Warehouse.business_id == business_id, Warehouse.id == data.warehouseId).first()
    if not warehouse:
        raise not_found("Given Warehouse does not exist")
    zone = db.query(Zone).filter(Zone.business_id == business_id, Zone.id == data.zoneId).first()
    if not zone:
        raise not_found("Given zone does not exist")
    if zone.warehouse_id != warehouse.id:
        raise validation_error("Given zone does not exist in the given warehouse")
    rack = db.query(Rack).filter(Rack.business_id == business_id, Rack.id == data.rackId).first()
    if not rack:
        raise not_found("Given rack does not exist")
    if rack.zone_id != zone.id:
        raise validation_error("Given rack does not exist in the given zone")
    shelf = db.query(Shelf).filter(Shelf.business_id == business_id, Shelf.id == data.shelfId).first()
    if not shelf:
        raise not_found("Given shelf does not exist")
    if shelf.rack_id != rack.id:
        raise validation_error("Given shelf does not exist in the given rack")

    upcs = db.query(UPC).filter(UPC.business_id == business_id, UPC.id.in_(upc_ids)).all()
    found = {u.id for u in upcs}
    missing = [uid for uid in upc_ids if uid not in found]
    if missing:
        raise ServiceError(404, "Not Found", "Some UPCs do not exist", {"missingUpcs": missing})

    now = utcnow()
    for upc in upcs:
        upc.warehouse_id = warehouse.id
        upc.zone_id = zone.id
        upc.rack_id = rack.id
        upc.shelf_id = shelf.id
        upc.placement_id = f"{upc.product_id}_{shelf.id}"
        upc.put_away = PutAwayState.NONE
        upc.updated_by = user_id
        upc.updated_at = now
    db.flush()
    logger.info("Put away %s UPC(s) onto shelf %s", len(upcs), shelf.id)
    return len(upcs)


def list_upcs(db: Session, business_id: str, placement_id: str) -> list[UPC]:
    if not placement_id:
        raise validation_error("Placement ID is required")
    return (
        db.query(UPC)
        .filter(
            UPC.business_id == business_id,
            UPC.placement_id == placement_id,
            UPC.put_away == PutAwayState.NONE,
        )
        .all()
    )


def upc_to_dict(upc: UPC) -> dict:
    return {
        "id": upc.id,
        "productId": upc.product_id,
        "grnId": upc.grn_id,
        "putAway": upc.put_away.value if upc.put_away else None,
        "placementId": upc.placement_id,
        "warehouseId": upc.warehouse_id,
        "zoneId": upc.zone_id,
        "rackId": upc.rack_id,
        "shelfId": upc.shelf_id,
        "storeId": upc.store_id,
        "orderId": upc.order_id,
        "createdAt": upc.created_at.isoformat() if upc.created_at else None,
        "updatedAt": upc.updated_at.isoformat() if upc.updated_at else None,
    }
