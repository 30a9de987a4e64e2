"""
Warehouse layout routes (warehouse > zone > rack > shelf) and UPC put-away
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth import authorize_business, get_current_user
from app.database import get_db
from app.http.requests.schemas import PutAwayBatch, RackCreate, ShelfCreate, WarehouseCreate, ZoneCreate
from app.models import Rack, Shelf, User, Warehouse, Zone
from app.services import warehouse_layout as layout

router = APIRouter()


def _warehouse_dict(w: Warehouse) -> dict:
    return {
        "id": w.id,
        "code": w.code,
        "name": w.name,
        "address": w.address,
        "storageCapacity": w.storage_capacity,
        "operationalHours": w.operational_hours,
        "defaultGSTstate": w.default_gst_state,
        "createdAt": w.created_at.isoformat() if w.created_at else None,
    }


def _zone_dict(z: Zone) -> dict:
    return {"id": z.id, "warehouseId": z.warehouse_id, "code": z.code, "name": z.name, "description": z.description}


def _rack_dict(r: Rack) -> dict:
    return {
        "id": r.id,
        "warehouseId": r.warehouse_id,
        "zoneId": r.zone_id,
        "code": r.code,
        "name": r.name,
        "position": r.position,
    }


def _shelf_dict(s: Shelf) -> dict:
    return {
        "id": s.id,
        "warehouseId": s.warehouse_id,
        "zoneId": s.zone_id,
        "rackId": s.rack_id,
        "code": s.code,
        "name": s.name,
        "position": s.position,
        "capacity": s.capacity,
    }


# Warehouses
@router.get("")
async def list_warehouses(
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return {"warehouses": [_warehouse_dict(w) for w in layout.list_warehouses(db, access.business.id)]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    data: WarehouseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    warehouse = layout.create_warehouse(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "warehouse": _warehouse_dict(warehouse)}


@router.delete("/{warehouse_id}")
async def delete_warehouse(
    warehouse_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    layout.delete_warehouse(db, access.business.id, current_user.id, warehouse_id)
    db.commit()
    return {"success": True, "message": "Warehouse deleted"}


# Zones
@router.get("/zones")
async def list_zones(
    businessId: str = Query(...),
    warehouseId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return {"zones": [_zone_dict(z) for z in layout.list_zones(db, access.business.id, warehouseId)]}


@router.post("/zones", status_code=status.HTTP_201_CREATED)
async def create_zone(
    data: ZoneCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    zone = layout.create_zone(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "zone": _zone_dict(zone)}


@router.delete("/zones/{zone_id}")
async def delete_zone(
    zone_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    layout.delete_zone(db, access.business.id, current_user.id, zone_id)
    db.commit()
    return {"success": True, "message": "Zone deleted"}


# Racks
@router.get("/racks")
async def list_racks(
    businessId: str = Query(...),
    zoneId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return {"racks": [_rack_dict(r) for r in layout.list_racks(db, access.business.id, zoneId)]}


@router.post("/racks", status_code=status.HTTP_201_CREATED)
async def create_rack(
    data: RackCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    rack = layout.create_rack(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "rack": _rack_dict(rack)}


@router.delete("/racks/{rack_id}")
async def delete_rack(
    rack_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    layout.delete_rack(db, access.business.id, current_user.id, rack_id)
    db.commit()
    return {"success": True, "message": "Rack deleted"}


# Shelves
@router.get("/shelves")
async def list_shelves(
    businessId: str = Query(...),
    rackId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return {"shelves": [_shelf_dict(s) for s in layout.list_shelves(db, access.business.id, rackId)]}


@router.post("/shelves", status_code=status.HTTP_201_CREATED)
async def create_shelf(
    data: ShelfCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    shelf = layout.create_shelf(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "shelf": _shelf_dict(shelf)}


@router.delete("/shelves/{shelf_id}")
async def delete_shelf(
    shelf_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    layout.delete_shelf(db, access.business.id, current_user.id, shelf_id)
    db.commit()
    return {"success": True, "message": "Shelf deleted"}


# UPC placement
@router.post("/put-away-batch")
async def put_away_batch(
    data: PutAwayBatch,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    count = layout.put_away_batch(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "message": f"{count} UPC(s) put away", "count": count}


@router.get("/upcs")
async def list_placed_upcs(
    businessId: str = Query(...),
    placementId: str = Query(""),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    upcs = layout.list_upcs(db, access.business.id, placementId)
    return {"upcs": [layout.upc_to_dict(u) for u in upcs]}
