"""
Party (supplier / customer) routes
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth import authorize_business, get_current_user
from app.database import get_db
from app.http.requests.schemas import PartyCreate, PartyUpdate
from app.models import User
from app.services import parties as party_service

router = APIRouter()


@router.get("")
async def list_parties(
    businessId: str = Query(...),
    type: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    parties = party_service.list_parties(db, access.business.id, party_type=type, active=active)
    return {"parties": [party_service.party_to_dict(p) for p in parties]}


@router.get("/{party_id}")
async def get_party(
    party_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return party_service.party_to_dict(party_service.get_party(db, access.business.id, party_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_party(
    data: PartyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    party = party_service.create_party(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "partyId": party.id, "party": party_service.party_to_dict(party)}


@router.put("/{party_id}")
async def update_party(
    party_id: str,
    data: PartyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    party, updated = party_service.update_party(db, access.business.id, current_user.id, party_id, data)
    db.commit()
    return {"success": True, "updatedFields": updated, "party": party_service.party_to_dict(party)}


@router.delete("/{party_id}")
async def deactivate_party(
    party_id: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Parties are never hard-deleted; they are deactivated"""
    access = authorize_business(db, businessId, current_user)
    party = party_service.deactivate_party(db, access.business.id, current_user.id, party_id)
    db.commit()
    return {"success": True, "message": f"Party {party.name} deactivated"}
