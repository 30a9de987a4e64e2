"""
Map Shopify store variants to business product SKUs, and mirror store products.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Product, Store, StoreProduct, utcnow
from app.services.errors import ServiceError, not_found, validation_error
from app.services.products import ACTION_MAPPING_CREATED, ACTION_MAPPING_REMOVED, add_log, normalize_sku

logger = logging.getLogger(__name__)

DEFAULT_VARIANT_TITLE = "Default Title"


def get_store_product(db: Session, shop: str, product_id: str) -> StoreProduct:
    product = db.query(StoreProduct).filter(
        StoreProduct.store_id == shop,
        StoreProduct.product_id == str(product_id),
    ).first()
    if not product:
        raise not_found("Store product not found")
    return product


def _find_variant(store_product: StoreProduct, variant_id: str) -> Optional[dict]:
    for variant in store_product.variants or []:
        if str(variant.get("id")) == variant_id:
            return variant
    return None


def _mapping_label(shop: str, store_product: StoreProduct, variant: dict) -> str:
    title = variant.get("title") or DEFAULT_VARIANT_TITLE
    description = f"{variant['sku']} ({title})" if variant.get("sku") else title
    return f"{shop.replace('.myshopify.com', '')} → {store_product.title or 'Unknown'} → {description}"


def create_mapping(
    db: Session, business_id: str, shop: str, user_id: str, product_id: str, variant_id: str, sku: str
) -> dict:
    sku = normalize_sku(sku)
    variant_id = str(variant_id)
    product = db.query(Product).filter(Product.business_id == business_id, Product.sku == sku).first()
    if not product:
        raise not_found(f"Business product {sku} not found")
    store_product = get_store_product(db, shop, product_id)
    variant = _find_variant(store_product, variant_id)
    if variant is None:
        raise not_found("Variant not found in product")

    mappings = dict(store_product.variant_mappings or {})
    if mappings.get(variant_id):
        raise ServiceError(409, "Conflict", f"Variant is already mapped to {mappings[variant_id]}")

    now = utcnow().isoformat()
    mappings[variant_id] = sku
    details = dict(store_product.variant_mapping_details or {})
    details[variant_id] = {
        "business_id": business_id,
        "business_product_sku": sku,
        "mapped_at": now,
        "mapped_by": user_id,
    }
    # Reassign JSON columns so the change is flushed
    store_product.variant_mappings = mappings
    store_product.variant_mapping_details = details

    entry = {
        "shop": shop,
        "product_id": store_product.product_id,
        "product_title": store_product.title or "Unknown",
        "variant_id": variant_id,
        "variant_title": variant.get("title") or DEFAULT_VARIANT_TITLE,
        "variant_sku": variant.get("sku"),
        "mapped_at": now,
    }
    product.mapped_variants = [
        m for m in (product.mapped_variants or [])
        if not (m.get("shop") == shop and str(m.get("variant_id")) == variant_id)
    ] + [entry]
    product.updated_at = utcnow()

    add_log(
        db, product, ACTION_MAPPING_CREATED, user_id,
        changes=[{
            "field": "variantMapping",
            "fieldLabel": "Variant Mapping",
            "oldValue": None,
            "newValue": _mapping_label(shop, store_product, variant),
        }],
        details={"shop": shop, "productId": store_product.product_id, "variantId": variant_id},
    )
    db.flush()
    logger.info("Mapped %s variant %s to %s", shop, variant_id, sku)
    return {"businessProductSku": sku, "storeId": shop, "productId": store_product.product_id, "variantId": variant_id}


def remove_mapping(db: Session, business_id: str, shop: str, user_id: str, product_id: str, variant_id: str) -> dict:
    variant_id = str(variant_id)
    store_product = get_store_product(db, shop, product_id)
    mappings = dict(store_product.variant_mappings or {})
    sku = mappings.get(variant_id)
    if not sku:
        raise validation_error("Variant is not mapped")

    details = dict(store_product.variant_mapping_details or {})
    owner = (details.get(variant_id) or {}).get("business_id")
    if owner and owner != business_id:
        raise ServiceError(403, "Forbidden", "Variant is mapped by another business")

    mappings.pop(variant_id, None)
    details.pop(variant_id, None)
    store_product.variant_mappings = mappings
    store_product.variant_mapping_details = details

    product = db.query(Product).filter(Product.business_id == business_id, Product.sku == sku).first()
    if product is not None:
        product.mapped_variants = [
            m for m in (product.mapped_variants or [])
            if not (m.get("shop") == shop and str(m.get("variant_id")) == variant_id)
        ]
        product.updated_at = utcnow()
        variant = _find_variant(store_product, variant_id) or {"id": variant_id}
        add_log(
            db, product, ACTION_MAPPING_REMOVED, user_id,
            changes=[{
                "field": "variantMapping",
                "fieldLabel": "Variant Mapping",
                "oldValue": _mapping_label(shop, store_product, variant),
                "newValue": None,
            }],
            details={"shop": shop, "productId": store_product.product_id, "variantId": variant_id},
        )
    else:
        logger.warning("Business product %s missing while unmapping %s variant %s", sku, shop, variant_id)
    db.flush()
    return {"businessProductSku": sku, "storeId": shop, "productId": store_product.product_id, "variantId": variant_id}


def upsert_store_products(db: Session, store: Store, products: list[dict[str, Any]]) -> int:
    """Mirror Shopify products into store_products, keeping existing mappings."""
    count = 0
    for payload in products:
        product_id = str(payload.get("id"))
        row = db.query(StoreProduct).filter(
            StoreProduct.store_id == store.id,
            StoreProduct.product_id == product_id,
        ).first()
        if row is None:
            row = StoreProduct(store_id=store.id, product_id=product_id, variant_mappings={}, variant_mapping_details={})
            db.add(row)
        row.title = payload.get("title")
        row.vendor = payload.get("vendor")
        row.variants = [
            {
                "id": str(v.get("id")),
                "title": v.get("title"),
                "sku": v.get("sku"),
                "price": v.get("price"),
            }
            for v in payload.get("variants") or []
        ]
        count += 1
    db.flush()
    logger.info("Synced %s product(s) for store %s", count, store.id)
    return count


def store_product_to_dict(row: StoreProduct) -> dict:
    return {
        "id": row.id,
        "productId": row.product_id,
        "title": row.title,
        "vendor": row.vendor,
        "variants": row.variants or [],
        "variantMappings": row.variant_mappings or {},
        "variantMappingDetails": row.variant_mapping_details or {},
    }
