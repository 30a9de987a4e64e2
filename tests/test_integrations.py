"""
Courier integrations and store messaging settings
"""
from unittest.mock import AsyncMock

import httpx

from app.models import ProviderCredential
from app.services import couriers
from app.services.credentials import (
    OWNER_BUSINESS,
    get_provider_credentials,
    mask_secret,
    save_provider_credentials,
)


def _login_response(status_code, payload):
    return httpx.Response(status_code, json=payload, request=httpx.Request("POST", "https://courier.example"))


class TestCredentials:
    def test_mask_secret(self):
        assert mask_secret(None) is None
        assert mask_secret("abc") == "****"
        assert mask_secret("secret-key-1234") == "***********1234"

    def test_merge_keeps_existing_keys(self, db_session, business):
        save_provider_credentials(db_session, OWNER_BUSINESS, business.id, "delhivery", {"apiKey": "k1", "region": "north"})
        save_provider_credentials(db_session, OWNER_BUSINESS, business.id, "delhivery", {"apiKey": "k2"})
        creds = get_provider_credentials(db_session, OWNER_BUSINESS, business.id, "delhivery")
        assert creds == {"apiKey": "k2", "region": "north"}

        row = db_session.query(ProviderCredential).one()
        assert "k2" not in row.value_encrypted


class TestCouriers:
    def test_api_key_is_masked(self, client, business, auth_headers):
        resp = client.post(
            "/api/integrations/courier",
            json={"businessId": business.id, "courierName": "Delhivery", "apiKey": "dlv-secret-9876"},
            headers=auth_headers,
        )
        assert resp.status_code == 200

        resp = client.get("/api/integrations", params={"businessId": business.id}, headers=auth_headers)
        assert resp.json()["couriers"] == {"delhivery": {"apiKey": "***********9876"}}

    def test_shiprocket_login_stores_token(self, client, db_session, business, auth_headers, monkeypatch):
        post = AsyncMock(return_value=_login_response(200, {"token": "sr-token-abcd"}))
        monkeypatch.setattr(couriers, "post_no_retry", post)
        resp = client.post(
            "/api/integrations/shiprocket",
            json={"businessId": business.id, "email": "ops@acme.in", "password": "pw-1234"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert post.await_args.kwargs["json"] == {"email": "ops@acme.in", "password": "pw-1234"}

        creds = get_provider_credentials(db_session, OWNER_BUSINESS, business.id, "shiprocket")
        assert creds["apiKey"] == "sr-token-abcd"

        body = client.get("/api/integrations", params={"businessId": business.id}, headers=auth_headers).json()
        assert body["priorityList"] == [{"name": "shiprocket", "mode": "Surface"}]
        assert body["couriers"]["shiprocket"]["password"] == "***1234"

    def test_rejected_login(self, client, business, auth_headers, monkeypatch):
        monkeypatch.setattr(
            couriers, "post_no_retry", AsyncMock(return_value=_login_response(401, {"message": "bad"}))
        )
        resp = client.post(
            "/api/integrations/xpressbees",
            json={"businessId": business.id, "email": "ops@acme.in", "password": "nope"},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Courier authentication failed"

    def test_refresh_without_credentials(self, client, business, auth_headers):
        resp = client.post(
            "/api/integrations/xpressbees/refresh-token", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 400

    def test_priority_requires_configured_courier(self, client, business, auth_headers):
        resp = client.post(
            "/api/integrations/courier-priority",
            json={"businessId": business.id, "enabled": True, "priorityList": [{"name": "delhivery"}]},
            headers=auth_headers,
        )
        assert resp.status_code == 400

    def test_bluedart_and_priority(self, client, business, auth_headers):
        client.post(
            "/api/integrations/bluedart",
            json={"businessId": business.id, "customerCode": "C1", "loginId": "L1", "licenceKey": "LK-5555"},
            headers=auth_headers,
        )
        resp = client.post(
            "/api/integrations/courier-priority",
            json={"businessId": business.id, "enabled": True, "priorityList": [{"name": "BlueDart", "mode": "Air"}]},
            headers=auth_headers,
        )
        assert resp.json()["priorityList"] == [{"name": "bluedart", "mode": "Air"}]

    def test_delete_courier(self, client, business, auth_headers):
        client.post(
            "/api/integrations/courier",
            json={"businessId": business.id, "courierName": "delhivery", "apiKey": "k"},
            headers=auth_headers,
        )
        params = {"businessId": business.id, "courierName": "delhivery"}
        assert client.delete("/api/integrations/courier", params=params, headers=auth_headers).status_code == 200
        assert client.delete("/api/integrations/courier", params=params, headers=auth_headers).status_code == 404


class TestStoreMessaging:
    def test_interakt_key(self, client, store, auth_headers):
        resp = client.post(
            "/api/integrations/interakt",
            json={"shop": store.id, "key": "apiKey", "value": "interakt-secret"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        settings = client.get("/api/integrations/store", params={"shop": store.id}, headers=auth_headers).json()
        assert settings["interakt"] == {"apiKey": "***********cret", "webhookKey": None}

    def test_invalid_interakt_key(self, client, store, auth_headers):
        resp = client.post(
            "/api/integrations/interakt",
            json={"shop": store.id, "key": "password", "value": "x"},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid key specified"

    def test_whatsapp_account(self, client, db_session, store, auth_headers):
        resp = client.post(
            "/api/integrations/whatsapp",
            json={"shop": store.id, "phoneNumberId": "1122", "accessToken": "EAAB-token"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        whatsapp = client.get("/api/integrations/store", params={"shop": store.id}, headers=auth_headers).json()["whatsapp"]
        assert whatsapp["phoneNumberId"] == "1122"
        assert whatsapp["connected"] is True

    def test_active_template(self, client, store, auth_headers):
        resp = client.post(
            "/api/integrations/whatsapp/templates",
            json={"shop": store.id, "category": "Confirmed", "templateId": "order_confirmed_v2"},
            headers=auth_headers,
        )
        assert resp.json()["activeTemplates"]["Confirmed"] == "order_confirmed_v2"

        resp = client.post(
            "/api/integrations/whatsapp/templates",
            json={"shop": store.id, "category": "Lost", "templateId": "x"},
            headers=auth_headers,
        )
        assert resp.status_code == 400
