"""
Per-store messaging settings: Interakt keys and the active WhatsApp template per status.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Store
from app.services.credentials import (
    OWNER_STORE,
    encrypt_token,
    get_provider_credentials,
    mask_secret,
    save_provider_credentials,
)
from app.services.errors import validation_error

logger = logging.getLogger(__name__)

INTERAKT = "interakt"
INTERAKT_KEYS = ("apiKey", "webhookKey")

TEMPLATE_CATEGORIES = ("New", "Confirmed", "Ready To Dispatch", "Dispatched")


def save_interakt_key(db: Session, store: Store, key: str, value: str) -> None:
    if key not in INTERAKT_KEYS:
        raise validation_error("Invalid key specified")
    if not value:
        raise validation_error("value is required")
    save_provider_credentials(db, OWNER_STORE, store.id, INTERAKT, {key: value})
    logger.info("Updated Interakt %s for store %s", key, store.id)


def set_active_template(db: Session, store: Store, category: str, template_id: Optional[str]) -> dict:
    if category not in TEMPLATE_CATEGORIES:
        raise validation_error(
            f"Invalid category '{category}'. Allowed: {', '.join(TEMPLATE_CATEGORIES)}"
        )
    templates = dict(store.active_templates or {})
    templates[category] = template_id
    store.active_templates = templates
    db.flush()
    return templates


def save_whatsapp_account(
    db: Session, store: Store, phone_number_id: str, access_token: str, header_image_url: Optional[str] = None
) -> None:
    if not phone_number_id or not access_token:
        raise validation_error("phoneNumberId and accessToken are required")
    store.whatsapp_phone_number_id = phone_number_id
    store.whatsapp_access_token = encrypt_token(access_token)
    if header_image_url is not None:
        store.whatsapp_header_image_url = header_image_url or None
    db.flush()


def masked_store_settings(db: Session, store: Store) -> dict[str, Any]:
    interakt = get_provider_credentials(db, OWNER_STORE, store.id, INTERAKT) or {}
    return {
        "interakt": {key: mask_secret(interakt.get(key)) for key in INTERAKT_KEYS},
        "whatsapp": {
            "phoneNumberId": store.whatsapp_phone_number_id,
            "connected": bool(store.whatsapp_access_token),
            "headerImageUrl": store.whatsapp_header_image_url,
        },
        "activeTemplates": {c: (store.active_templates or {}).get(c) for c in TEMPLATE_CATEGORIES},
    }
