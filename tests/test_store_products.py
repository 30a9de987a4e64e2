"""
Store product mirror and variant mappings
"""
from unittest.mock import AsyncMock

import pytest

from app.models import Product, ProductLog, StoreProduct
from app.services import shopify_service
from app.services.shopify_service import ShopifyAPIError

SHOPIFY_PRODUCTS = [
    {
        "id": 501,
        "title": "Tee",
        "vendor": "Acme",
        "variants": [
            {"id": 9001, "title": "S", "sku": "TEE-S", "price": "499.00"},
            {"id": 9002, "title": "M", "sku": "TEE-M", "price": "499.00"},
        ],
    },
]


def _ref(business, store, **extra):
    return {"businessId": business.id, "shop": store.id, **extra}


@pytest.fixture
def synced(client, business, store, auth_headers, monkeypatch):
    monkeypatch.setattr(shopify_service, "get_products", AsyncMock(return_value=SHOPIFY_PRODUCTS))
    resp = client.post("/api/store-products/sync", json=_ref(business, store), headers=auth_headers)
    assert resp.json() == {"success": True, "synced": 1}


class TestSync:
    def test_sync_mirrors_variants(self, client, business, store, synced, auth_headers):
        resp = client.get("/api/store-products", params={"businessId": business.id, "shop": store.id}, headers=auth_headers)
        product = resp.json()["products"][0]
        assert product["productId"] == "501"
        assert [v["id"] for v in product["variants"]] == ["9001", "9002"]
        shopify_service.get_products.assert_awaited_once_with(store.id, "shpat_test_token")

    def test_shopify_failure_is_bad_gateway(self, client, business, store, auth_headers, monkeypatch):
        monkeypatch.setattr(shopify_service, "get_products", AsyncMock(side_effect=ShopifyAPIError(500, "boom")))
        resp = client.post("/api/store-products/sync", json=_ref(business, store), headers=auth_headers)
        assert resp.status_code == 502

    def test_store_without_token(self, client, db_session, business, store, auth_headers):
        store.access_token = None
        db_session.commit()
        resp = client.post("/api/store-products/sync", json=_ref(business, store), headers=auth_headers)
        assert resp.status_code == 400


class TestVariantMapping:
    def test_create_and_remove(self, client, db_session, business, store, products, synced, auth_headers):
        body = _ref(business, store, storeProductId="501", storeVariantId="9001", businessProductSku="tshirt-001")
        resp = client.post("/api/store-products/create-mapping", json=body, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["mapping"]["businessProductSku"] == "TSHIRT-001"

        row = db_session.query(StoreProduct).one()
        assert row.variant_mappings == {"9001": "TSHIRT-001"}
        assert row.variant_mapping_details["9001"]["business_id"] == business.id
        tee = db_session.query(Product).filter(Product.sku == "TSHIRT-001").one()
        assert [m["variant_id"] for m in tee.mapped_variants] == ["9001"]

        resp = client.post("/api/store-products/create-mapping", json=body, headers=auth_headers)
        assert resp.status_code == 409

        resp = client.post("/api/store-products/remove-mapping", json=body, headers=auth_headers)
        assert resp.status_code == 200
        db_session.expire_all()
        assert db_session.query(StoreProduct).one().variant_mappings == {}
        actions = sorted(log.action for log in db_session.query(ProductLog).all())
        assert actions == ["mapping_created", "mapping_removed"]

    def test_unknown_variant(self, client, business, store, products, synced, auth_headers):
        body = _ref(business, store, storeProductId="501", storeVariantId="7", businessProductSku="TSHIRT-001")
        resp = client.post("/api/store-products/create-mapping", json=body, headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Variant not found in product"

    def test_sku_required(self, client, business, store, synced, auth_headers):
        body = _ref(business, store, storeProductId="501", storeVariantId="9001")
        resp = client.post("/api/store-products/create-mapping", json=body, headers=auth_headers)
        assert resp.status_code == 400

    def test_remove_unmapped(self, client, business, store, synced, auth_headers):
        body = _ref(business, store, storeProductId="501", storeVariantId="9002")
        resp = client.post("/api/store-products/remove-mapping", json=body, headers=auth_headers)
        assert resp.status_code == 400
