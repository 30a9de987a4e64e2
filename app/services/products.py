"""
Business product catalogue with a per-product change log.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import DeletedProductLog, Product, ProductLog, utcnow
from app.services.errors import not_found, validation_error

logger = logging.getLogger(__name__)

FIELD_LABELS = {
    "name": "Product Name",
    "weight": "Weight",
    "category": "Category",
    "description": "Description",
    "price": "Price",
    "stock": "Stock",
    "status": "Status",
}
TRACKED_FIELDS = tuple(FIELD_LABELS)

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_MAPPING_CREATED = "mapping_created"
ACTION_MAPPING_REMOVED = "mapping_removed"


def normalize_sku(sku: Optional[str]) -> str:
    return (sku or "").strip().upper()


def _normalized(value: Any) -> Any:
    """Treat None and '' as the same empty value."""
    return None if value is None or value == "" else value


def detect_changes(old: dict[str, Any], new: dict[str, Any]) -> list[dict[str, Any]]:
    changes = []
    for field in TRACKED_FIELDS:
        if field not in new:
            continue
        old_value, new_value = _normalized(old.get(field)), _normalized(new.get(field))
        if old_value != new_value:
            changes.append({
                "field": field,
                "fieldLabel": FIELD_LABELS[field],
                "oldValue": old_value,
                "newValue": new_value,
            })
    return changes


def product_snapshot(product: Product) -> dict[str, Any]:
    return {field: getattr(product, field) for field in TRACKED_FIELDS}


def get_product(db: Session, business_id: str, sku: str) -> Product:
    product = db.query(Product).filter(
        Product.business_id == business_id,
        Product.sku == normalize_sku(sku),
    ).first()
    if not product:
        raise not_found("Product with this SKU does not exist")
    return product


def add_log(
    db: Session,
    product: Product,
    action: str,
    user_id: Optional[str],
    changes: Optional[list] = None,
    details: Optional[dict] = None,
) -> ProductLog:
    log = ProductLog(
        business_id=product.business_id,
        product_id=product.id,
        action=action,
        changes=changes or [],
        details=details,
        performed_by=user_id,
        performed_at=utcnow(),
    )
    db.add(log)
    return log


def create_product(db: Session, business_id: str, user_id: str, data: Any) -> Product:
    sku = normalize_sku(data.sku)
    if not sku or not (data.name or "").strip() or not data.weight or not (data.category or "").strip():
        raise validation_error("Missing required fields: name, sku, weight, or category")
    exists = db.query(Product.id).filter(Product.business_id == business_id, Product.sku == sku).first()
    if exists:
        raise validation_error("Product with this SKU already exists")

    product = Product(
        business_id=business_id,
        sku=sku,
        name=data.name.strip(),
        weight=data.weight,
        category=data.category.strip(),
        description=_normalized(data.description),
        price=data.price,
        stock=data.stock,
        status=data.status or "active",
        mapped_variants=[],
        created_by=user_id,
        updated_by=user_id,
    )
    db.add(product)
    db.flush()
    add_log(db, product, ACTION_CREATED, user_id, details={"product": product_snapshot(product)})
    db.flush()
    logger.info("Created product %s for business %s", sku, business_id)
    return product


def update_product(db: Session, business_id: str, user_id: str, sku: str, data: Any) -> tuple[Product, list]:
    """Apply the supplied tracked fields. Returns the product and the change list (empty if nothing changed)."""
    product = get_product(db, business_id, sku)
    new_values = data.model_dump(exclude_unset=True)
    for required in ("name", "weight", "category"):
        if required in new_values and not new_values[required]:
            raise validation_error(f"{required} cannot be empty")

    changes = detect_changes(product_snapshot(product), new_values)
    if not changes:
        return product, []

    for change in changes:
        setattr(product, change["field"], change["newValue"])
    product.updated_by = user_id
    product.updated_at = utcnow()
    add_log(db, product, ACTION_UPDATED, user_id, changes=changes)
    db.flush()
    logger.info("Updated product %s: %s", product.sku, [c["field"] for c in changes])
    return product, changes


def delete_product(db: Session, business_id: str, user_id: str, sku: str) -> DeletedProductLog:
    product = get_product(db, business_id, sku)
    snapshot = product_to_dict(product)
    tombstone = DeletedProductLog(
        business_id=business_id,
        product_id=product.id,
        sku=product.sku,
        product_data=snapshot,
        deleted_by=user_id,
        deleted_at=utcnow(),
    )
    db.add(tombstone)
    db.query(ProductLog).filter(ProductLog.product_id == product.id).delete(synchronize_session=False)
    db.delete(product)
    db.flush()
    logger.info("Deleted product %s from business %s", snapshot["sku"], business_id)
    return tombstone


def list_logs(db: Session, business_id: str, sku: str) -> list[ProductLog]:
    product = get_product(db, business_id, sku)
    return (
        db.query(ProductLog)
        .filter(ProductLog.product_id == product.id)
        .order_by(ProductLog.performed_at.desc())
        .all()
    )


def product_to_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "weight": product.weight,
        "category": product.category,
        "description": product.description,
        "price": product.price,
        "stock": product.stock,
        "status": product.status,
        "mappedVariants": product.mapped_variants or [],
        "createdBy": product.created_by,
        "updatedBy": product.updated_by,
        "createdAt": product.created_at.isoformat() if product.created_at else None,
        "updatedAt": product.updated_at.isoformat() if product.updated_at else None,
    }


def log_to_dict(log: ProductLog) -> dict:
    return {
        "id": log.id,
        "action": log.action,
        "changes": log.changes or [],
        "details": log.details,
        "performedBy": log.performed_by,
        "performedAt": log.performed_at.isoformat() if log.performed_at else None,
    }
