"""
Suppliers and customers (parties) of a business.
"""
import logging
import re
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Party, PartyType, utcnow
from app.services.errors import ServiceError, not_found, validation_error
from app.services.purchase_orders import open_purchase_order_count

logger = logging.getLogger(__name__)

GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")
PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]{1}$")

DEFAULT_COUNTRY = "India"

# request field -> column
_TEXT_FIELDS = {
    "contactPerson": "contact_person",
    "phone": "phone",
    "email": "email",
    "defaultPaymentTerms": "default_payment_terms",
    "notes": "notes",
}


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _upper(value: Optional[str]) -> Optional[str]:
    value = _clean(value)
    return value.upper() if value else None


def parse_party_type(value: Any) -> PartyType:
    if isinstance(value, PartyType):
        return value
    try:
        return PartyType(str(value or "").strip().lower())
    except ValueError:
        raise validation_error("type must be one of: supplier, customer, both")


def _normalize_address(address: Optional[dict]) -> Optional[dict]:
    if address is None:
        return None
    cleaned = {k: (v.strip() if isinstance(v, str) else v) for k, v in address.items()}
    if not cleaned.get("country"):
        cleaned["country"] = DEFAULT_COUNTRY
    return cleaned


def _check_gstin(db: Session, business_id: str, gstin: Optional[str], exclude_id: Optional[str] = None) -> None:
    if not gstin:
        return
    if not GSTIN_RE.match(gstin):
        raise validation_error(f"Invalid GSTIN format: {gstin}")
    query = db.query(Party).filter(Party.business_id == business_id, Party.gstin == gstin)
    if exclude_id:
        query = query.filter(Party.id != exclude_id)
    existing = query.first()
    if existing:
        raise ServiceError(
            409,
            "Conflict",
            f"A party with GSTIN {gstin} already exists ({existing.name})",
            {"existingPartyId": existing.id},
        )


def _check_pan(pan: Optional[str]) -> None:
    if pan and not PAN_RE.match(pan):
        raise validation_error(f"Invalid PAN format: {pan}")


def get_party(db: Session, business_id: str, party_id: str) -> Party:
    party = db.query(Party).filter(Party.business_id == business_id, Party.id == party_id).first()
    if not party:
        raise not_found("Party not found")
    return party


def create_party(db: Session, business_id: str, user_id: str, data: Any) -> Party:
    name = _clean(data.name)
    if not name:
        raise validation_error("name is required")
    party_type = parse_party_type(data.type)
    gstin = _upper(data.gstin)
    pan = _upper(data.pan)
    _check_gstin(db, business_id, gstin)
    _check_pan(pan)

    party = Party(
        business_id=business_id,
        name=name,
        type=party_type,
        code=_upper(data.code),
        gstin=gstin,
        pan=pan,
        address=_normalize_address(data.address),
        bank_details=data.bankDetails,
        is_active=True,
        created_by=user_id,
        updated_by=user_id,
    )
    for field, column in _TEXT_FIELDS.items():
        setattr(party, column, _clean(getattr(data, field)))
    db.add(party)
    db.flush()
    logger.info("Created %s party %s (%s)", party_type.value, party.name, party.id)
    return party


def update_party(db: Session, business_id: str, user_id: str, party_id: str, data: Any) -> tuple[Party, list[str]]:
    party = get_party(db, business_id, party_id)
    supplied = data.model_dump(exclude_unset=True)
    updated: list[str] = []

    if "name" in supplied:
        name = _clean(data.name)
        if not name:
            raise validation_error("name cannot be empty")
        party.name = name
        updated.append("name")
    if "type" in supplied:
        party.type = parse_party_type(data.type)
        updated.append("type")
    if "code" in supplied:
        party.code = _upper(data.code)
        updated.append("code")
    if "gstin" in supplied:
        gstin = _upper(data.gstin)
        _check_gstin(db, business_id, gstin, exclude_id=party.id)
        party.gstin = gstin
        updated.append("gstin")
    if "pan" in supplied:
        pan = _upper(data.pan)
        _check_pan(pan)
        party.pan = pan
        updated.append("pan")
    if "address" in supplied:
        party.address = _normalize_address(data.address)
        updated.append("address")
    if "bankDetails" in supplied:
        party.bank_details = data.bankDetails
        updated.append("bankDetails")
    for field, column in _TEXT_FIELDS.items():
        if field in supplied:
            setattr(party, column, _clean(getattr(data, field)))
            updated.append(field)

    if updated:
        party.updated_by = user_id
        party.updated_at = utcnow()
    db.flush()
    return party, updated


def deactivate_party(db: Session, business_id: str, user_id: str, party_id: str) -> Party:
    party = get_party(db, business_id, party_id)
    if not party.is_active:
        raise validation_error("Party is already inactive")
    open_count = open_purchase_order_count(db, business_id, party.id)
    if open_count:
        raise ServiceError(
            409,
            "Conflict",
            f"Cannot deactivate party with {open_count} open purchase order(s)",
            {"openPurchaseOrders": open_count},
        )
    party.is_active = False
    party.updated_by = user_id
    party.updated_at = utcnow()
    db.flush()
    logger.info("Deactivated party %s", party.id)
    return party


def list_parties(
    db: Session, business_id: str, party_type: Optional[str] = None, active: Optional[bool] = None
) -> list[Party]:
    query = db.query(Party).filter(Party.business_id == business_id)
    if party_type:
        query = query.filter(Party.type == parse_party_type(party_type))
    if active is not None:
        query = query.filter(Party.is_active.is_(active))
    return query.order_by(Party.name).all()


def party_to_dict(party: Party) -> dict:
    return {
        "id": party.id,
        "name": party.name,
        "type": party.type.value if party.type else None,
        "code": party.code,
        "contactPerson": party.contact_person,
        "phone": party.phone,
        "email": party.email,
        "address": party.address,
        "gstin": party.gstin,
        "pan": party.pan,
        "bankDetails": party.bank_details,
        "defaultPaymentTerms": party.default_payment_terms,
        "notes": party.notes,
        "isActive": bool(party.is_active),
        "createdAt": party.created_at.isoformat() if party.created_at else None,
        "updatedAt": party.updated_at.isoformat() if party.updated_at else None,
    }
