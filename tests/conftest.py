"""
Shared fixtures: in-memory SQLite database, API client and seeded tenants.
"""
import base64
import hashlib
import hmac
import json
import os
from urllib.parse import urlencode

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "DEV"
os.environ["SHOPIFY_API_SECRET"] = "test-shopify-secret-0123456789"
os.environ["CHECKOUT_ALLOWED_ORIGINS"] = "https://storefront.example.com"
os.environ["INTERAKT_API_KEY"] = "test-interakt-key"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-32-bytes!!!!"
os.environ["SHARED_STORE_ID"] = "shared.myshopify.com"
os.environ["SUPER_ADMIN_ID"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import create_access_token, get_password_hash
from app.config import settings
from app.database import Base, get_db
from app.models import Business, BusinessStore, Party, PartyType, Product, Store, User, Warehouse
from app.services.app_proxy import signature_message
from app.services.credentials import encrypt_token
from main import app

SHOPIFY_SECRET = os.environ["SHOPIFY_API_SECRET"]
STOREFRONT_ORIGIN = "https://storefront.example.com"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


def make_user(db, email="owner@example.com", name="Owner") -> User:
    user = User(email=email, name=name, password_hash=get_password_hash("password123"))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}


@pytest.fixture
def user(db_session):
    return make_user(db_session)


@pytest.fixture
def auth_headers(user):
    return auth_headers_for(user)


@pytest.fixture
def business(db_session, user):
    business = Business(
        owner_id=user.id,
        name="Acme Apparel",
        vendor_name="Acme",
        courier_priority_enabled=False,
        courier_priority_list=[],
    )
    db_session.add(business)
    db_session.commit()
    db_session.refresh(business)
    return business


@pytest.fixture
def store(db_session, business):
    store = Store(
        id="acme.myshopify.com",
        alias="Acme",
        access_token=encrypt_token("shpat_test_token"),
        seller_name="Acme Apparel Pvt Ltd",
        active_templates={},
    )
    db_session.add(store)
    db_session.add(BusinessStore(business_id=business.id, store_id=store.id))
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def shared_store(db_session, business):
    store = Store(id=settings.SHARED_STORE_ID, alias="Shared", access_token=encrypt_token("shpat_shared"), active_templates={})
    db_session.add(store)
    db_session.add(BusinessStore(business_id=business.id, store_id=store.id))
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def supplier(db_session, business):
    party = Party(business_id=business.id, name="Cotton Mills", type=PartyType.SUPPLIER, is_active=True)
    db_session.add(party)
    db_session.commit()
    db_session.refresh(party)
    return party


@pytest.fixture
def warehouse(db_session, business):
    warehouse = Warehouse(business_id=business.id, code="WH-MAIN", name="Main Warehouse", is_deleted=False)
    db_session.add(warehouse)
    db_session.commit()
    db_session.refresh(warehouse)
    return warehouse


@pytest.fixture
def products(db_session, business):
    rows = [
        Product(business_id=business.id, sku="TSHIRT-001", name="Cotton T-Shirt", weight=250, category="Apparel", mapped_variants=[]),
        Product(business_id=business.id, sku="JEANS-001", name="Denim Jeans", weight=600, category="Apparel", mapped_variants=[]),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


def sign_webhook(body: bytes, secret: str = SHOPIFY_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def webhook_headers(body: bytes, topic: str, shop: str = "acme.myshopify.com") -> dict:
    return {
        "X-Shopify-Hmac-Sha256": sign_webhook(body),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "Content-Type": "application/json",
    }


def order_payload(order_id=1001, name="#1001", vendor="Acme", **overrides) -> dict:
    payload = {
        "id": order_id,
        "name": name,
        "created_at": "2026-10-01T10:00:00+05:30",
        "updated_at": "2026-10-01T10:00:00+05:30",
        "financial_status": "pending",
        "total_price": "999.00",
        "currency": "INR",
        "customer": {"email": "buyer@example.com", "first_name": "Asha", "last_name": "Rao"},
        "line_items": [
            {"product_id": 501, "variant_id": 9001, "sku": "TSHIRT-001", "vendor": vendor, "quantity": 2, "title": "Tee"},
        ],
        "payment_gateway_names": ["Cash on Delivery (COD)"],
        "tags": "",
    }
    payload.update(overrides)
    return payload


def post_webhook(client, payload: dict, topic: str, shop: str = "acme.myshopify.com"):
    body = json.dumps(payload).encode()
    return client.post("/api/webhooks/orders", content=body, headers=webhook_headers(body, topic, shop))


def proxy_params(**extra) -> dict:
    """Query params of an App Proxy request signed the way Shopify signs them."""
    params = {"shop": "acme.myshopify.com", "timestamp": "1760000000", **extra}
    params["signature"] = hmac.new(
        SHOPIFY_SECRET.encode(), signature_message(urlencode(params)).encode(), hashlib.sha256
    ).hexdigest()
    return params
