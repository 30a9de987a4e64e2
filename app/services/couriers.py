"""
Courier integrations for a business: credentials, vendor logins and priority list.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Business
from app.services.credentials import (
    OWNER_BUSINESS,
    delete_provider_credentials,
    get_provider_credentials,
    list_providers,
    mask_secret,
    save_provider_credentials,
)
from app.services.errors import ServiceError, not_found, validation_error
from app.services.http_client import post_no_retry, safe_json

logger = logging.getLogger(__name__)

SHIPROCKET = "shiprocket"
XPRESSBEES = "xpressbees"
BLUEDART = "bluedart"

SHIPROCKET_LOGIN_URL = "https://apiv2.shiprocket.in/v1/external/auth/login"
XPRESSBEES_LOGIN_URL = "https://shipment.xpressbees.com/api/users/login"

DEFAULT_MODE = "Surface"
SECRET_KEYS = ("apiKey", "password", "licenceKey")


class CourierAuthError(ServiceError):
    def __init__(self, courier: str, details: Any = None):
        super().__init__(400, "Courier authentication failed", f"{courier} login was rejected", {"details": details})


async def _login(courier: str, url: str, email: str, password: str, token_key: str) -> str:
    resp = await post_no_retry(url, json={"email": email, "password": password})
    data = safe_json(resp) or {}
    token = data.get(token_key) if isinstance(data, dict) else None
    if resp.status_code >= 400 or not token or not isinstance(token, str):
        logger.warning("%s auth failed: %s %s", courier, resp.status_code, str(data)[:200])
        raise CourierAuthError(courier, data)
    return token


async def shiprocket_login(email: str, password: str) -> str:
    return await _login(SHIPROCKET, SHIPROCKET_LOGIN_URL, email, password, "token")


async def xpressbees_login(email: str, password: str) -> str:
    return await _login(XPRESSBEES, XPRESSBEES_LOGIN_URL, email, password, "data")


def _ensure_priority_entry(business: Business, courier: str) -> None:
    entries = list(business.courier_priority_list or [])
    if not any(e.get("name") == courier for e in entries):
        entries.append({"name": courier, "mode": DEFAULT_MODE})
        business.courier_priority_list = entries


def save_courier_api_key(db: Session, business: Business, courier: str, api_key: str) -> None:
    courier = (courier or "").strip().lower()
    if not courier or not api_key:
        raise validation_error("courierName and apiKey are required")
    save_provider_credentials(db, OWNER_BUSINESS, business.id, courier, {"apiKey": api_key})
    logger.info("Updated %s credentials for business %s", courier, business.id)


async def connect_login_courier(db: Session, business: Business, courier: str, email: str, password: str) -> None:
    """Log in to Shiprocket or Xpressbees and store email, password and token."""
    if not email or not password:
        raise validation_error("Email and password are required")
    login = shiprocket_login if courier == SHIPROCKET else xpressbees_login
    token = await login(email, password)
    save_provider_credentials(
        db, OWNER_BUSINESS, business.id, courier,
        {"email": email, "password": password, "apiKey": token},
        merge=False,
    )
    _ensure_priority_entry(business, courier)
    db.flush()
    logger.info("Connected %s for business %s", courier, business.id)


async def refresh_courier_token(db: Session, business: Business, courier: str) -> None:
    creds = get_provider_credentials(db, OWNER_BUSINESS, business.id, courier)
    if not creds or not creds.get("email") or not creds.get("password"):
        raise validation_error(f"{courier} credentials not found for this business.")
    login = shiprocket_login if courier == SHIPROCKET else xpressbees_login
    token = await login(creds["email"], creds["password"])
    save_provider_credentials(db, OWNER_BUSINESS, business.id, courier, {"apiKey": token})
    logger.info("Refreshed %s token for business %s", courier, business.id)


def save_bluedart(db: Session, business: Business, customer_code: str, login_id: str, licence_key: str) -> None:
    if not customer_code or not login_id or not licence_key:
        raise validation_error("customerCode, loginId, and licenceKey are all required")
    save_provider_credentials(
        db, OWNER_BUSINESS, business.id, BLUEDART,
        {"customerCode": customer_code, "loginId": login_id, "licenceKey": licence_key},
        merge=False,
    )


def update_priority(db: Session, business: Business, enabled: bool, priority_list: list[dict]) -> list[dict]:
    configured = set(list_providers(db, OWNER_BUSINESS, business.id))
    cleaned = []
    for entry in priority_list:
        name = (entry.get("name") or "").strip().lower()
        if name not in configured:
            raise validation_error(f"Courier '{name}' is not configured")
        cleaned.append({"name": name, "mode": entry.get("mode") or DEFAULT_MODE})
    business.courier_priority_enabled = bool(enabled)
    business.courier_priority_list = cleaned
    db.flush()
    return cleaned


def delete_courier(db: Session, business: Business, courier: str) -> None:
    courier = (courier or "").strip().lower()
    if not courier:
        raise validation_error("courierName is required")
    if not delete_provider_credentials(db, OWNER_BUSINESS, business.id, courier):
        raise not_found(f"{courier} integration not found")
    business.courier_priority_list = [
        e for e in (business.courier_priority_list or []) if e.get("name") != courier
    ]
    db.flush()
    logger.info("Removed %s integration from business %s", courier, business.id)


def masked_couriers(db: Session, business: Business) -> dict[str, Any]:
    couriers: dict[str, Optional[dict]] = {}
    for provider in list_providers(db, OWNER_BUSINESS, business.id):
        creds = get_provider_credentials(db, OWNER_BUSINESS, business.id, provider) or {}
        couriers[provider] = {
            k: (mask_secret(v) if k in SECRET_KEYS else v) for k, v in creds.items()
        }
    return {
        "couriers": couriers,
        "priorityEnabled": bool(business.courier_priority_enabled),
        "priorityList": business.courier_priority_list or [],
    }
