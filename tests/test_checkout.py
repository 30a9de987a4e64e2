"""
Storefront COD checkout: draft sessions, OTP verification, customers and orders
"""
from datetime import timedelta
from unittest.mock import AsyncMock
from urllib.parse import urlencode

import pytest

from app.config import settings
from app.models import CheckoutCustomer, CheckoutSession, CheckoutSessionStatus, DraftOrder, OtpRateCounter, utcnow
from app.services import checkout as checkout_service
from app.services import interakt_service
from app.services.app_proxy import signature_message, verify_app_proxy_signature
from app.services.checkout import (
    build_cod_order_payload,
    bump_hourly_counter,
    cleanup_expired_sessions,
    hash_otp,
    mask_phone,
    purge_rate_counters,
)
from conftest import SHOPIFY_SECRET, STOREFRONT_ORIGIN, proxy_params

PHONE = "+919876543210"
DRAFT = {"line_items": [{"variant_id": 9001, "quantity": 2}], "note": "gift wrap"}


def _new_session(client, **extra):
    resp = client.post(
        "/api/checkout/draft-session-creation",
        json={"shop_domain": "acme.myshopify.com", "draft_order": DRAFT, **extra},
        headers={"Origin": STOREFRONT_ORIGIN},
    )
    assert resp.status_code == 200
    return resp.json()["sessionId"]


@pytest.fixture
def session_id(client, store):
    return _new_session(client)


@pytest.fixture
def pending_otp(db_session, session_id):
    session = db_session.get(CheckoutSession, session_id)
    session.otp_hash = hash_otp("123456")
    session.otp_generated_at = utcnow()
    session.otp_attempt_count = 0
    session.temp_phone = PHONE
    db_session.commit()
    return session_id


@pytest.fixture
def verified_session(client, pending_otp):
    resp = client.post("/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": pending_otp, "otp": "123456"})
    assert resp.status_code == 200
    return pending_otp


@pytest.fixture
def sent_otp(monkeypatch):
    send = AsyncMock(return_value={"result": True})
    monkeypatch.setattr(interakt_service, "send_otp", send)
    return send


class TestHelpers:
    def test_mask_phone(self):
        assert mask_phone(PHONE) == "+91******3210"
        assert mask_phone(None) == "your number"

    def test_signature_message_sorts_and_drops_signature(self):
        message = signature_message("timestamp=1&shop=a.myshopify.com&signature=abc&ids=1&ids=2")
        assert message == "ids=1,2shop=a.myshopify.comtimestamp=1"

    def test_verify_signature(self):
        params = proxy_params()
        query = urlencode(params)
        assert verify_app_proxy_signature(query, SHOPIFY_SECRET)
        assert not verify_app_proxy_signature(query, "another-secret-value-1234")
        assert not verify_app_proxy_signature("shop=a.myshopify.com", SHOPIFY_SECRET)


class TestDraftSession:
    def test_creates_session_and_draft(self, client, db_session, store):
        resp = client.post(
            "/api/checkout/draft-session-creation",
            json={"shop_domain": store.id, "draft_order": DRAFT, "cart_token": "cart-1"},
            headers={"Origin": STOREFRONT_ORIGIN},
        )
        body = resp.json()
        assert body["ok"] is True
        session = db_session.get(CheckoutSession, body["sessionId"])
        assert session.status == CheckoutSessionStatus.PENDING
        assert session.cart_token == "cart-1"
        assert session.expires_at > utcnow() + timedelta(minutes=29)
        assert db_session.get(DraftOrder, body["draftOrderId"]).payload == DRAFT

    def test_origin_not_allowed(self, client, store):
        resp = client.post(
            "/api/checkout/draft-session-creation",
            json={"shop_domain": store.id, "draft_order": DRAFT},
            headers={"Origin": "https://evil.example.com"},
        )
        assert resp.status_code == 403

    def test_requires_draft(self, client, store):
        resp = client.post(
            "/api/checkout/draft-session-creation",
            json={"shop_domain": store.id},
            headers={"Origin": STOREFRONT_ORIGIN},
        )
        assert resp.status_code == 400


class TestSendOtp:
    def test_sends_and_stores_hash(self, client, db_session, session_id, sent_otp):
        resp = client.post("/api/checkout/send-otp", json={"sessionId": session_id, "phoneNumber": PHONE})
        assert resp.status_code == 200
        assert resp.json()["message"] == "OTP sent to +91******3210."
        assert resp.json()["alreadyVerified"] is False

        api_key, phone, otp = sent_otp.await_args.args
        assert (api_key, phone) == ("test-interakt-key", PHONE)
        session = db_session.get(CheckoutSession, session_id)
        assert session.otp_hash == hash_otp(otp)
        assert session.temp_phone == PHONE

    def test_invalid_phone(self, client, session_id, sent_otp):
        resp = client.post("/api/checkout/send-otp", json={"sessionId": session_id, "phoneNumber": "9876543210"})
        assert resp.status_code == 400
        sent_otp.assert_not_awaited()

    def test_resend_cooldown(self, client, session_id, sent_otp):
        body = {"sessionId": session_id, "phoneNumber": PHONE}
        client.post("/api/checkout/send-otp", json=body)
        resp = client.post("/api/checkout/send-otp", json=body)
        assert resp.status_code == 429
        assert 0 < int(resp.headers["retry-after"]) <= settings.OTP_RESEND_COOLDOWN_SECONDS + 1

    def test_unknown_session(self, client, store, sent_otp):
        resp = client.post("/api/checkout/send-otp", json={"sessionId": "nope", "phoneNumber": PHONE})
        assert resp.status_code == 404

    def test_expired_session(self, client, db_session, session_id, sent_otp):
        db_session.get(CheckoutSession, session_id).expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()
        resp = client.post("/api/checkout/send-otp", json={"sessionId": session_id, "phoneNumber": PHONE})
        assert resp.status_code == 410

    def test_cart_binding(self, client, store, sent_otp):
        sid = _new_session(client, cart_token="cart-1")
        resp = client.post(
            "/api/checkout/send-otp", json={"sessionId": sid, "phoneNumber": PHONE, "cartToken": "cart-2"}
        )
        assert resp.status_code == 403

    def test_verified_session_keeps_its_phone(self, client, verified_session, sent_otp):
        resp = client.post(
            "/api/checkout/send-otp", json={"sessionId": verified_session, "phoneNumber": "+919123456789"}
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "PHONE_MISMATCH"

    def test_completed_session(self, client, db_session, verified_session, sent_otp):
        db_session.get(CheckoutSession, verified_session).status = CheckoutSessionStatus.ORDER_CREATED
        db_session.commit()
        resp = client.post("/api/checkout/send-otp", json={"sessionId": verified_session, "phoneNumber": PHONE})
        assert resp.status_code == 403
        assert resp.json()["code"] == "CHECKOUT_COMPLETED"


class TestSendLimits:
    def test_hourly_session_limit(self, client, session_id, sent_otp, monkeypatch):
        monkeypatch.setattr(settings, "OTP_RESEND_COOLDOWN_SECONDS", 0)
        body = {"sessionId": session_id, "phoneNumber": PHONE}
        for _ in range(settings.OTP_MAX_PER_SESSION_HOUR):
            assert client.post("/api/checkout/send-otp", json=body).status_code == 200

        resp = client.post("/api/checkout/send-otp", json=body)
        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limited"
        assert 0 < int(resp.headers["retry-after"]) <= 3600
        assert sent_otp.await_count == settings.OTP_MAX_PER_SESSION_HOUR

    def test_failed_send_still_counts(self, client, db_session, session_id, monkeypatch):
        failing = AsyncMock(side_effect=interakt_service.InteraktError(502, {"message": "upstream"}))
        monkeypatch.setattr(interakt_service, "send_otp", failing)
        resp = client.post("/api/checkout/send-otp", json={"sessionId": session_id, "phoneNumber": PHONE})
        assert resp.status_code == 502
        assert resp.json()["details"] == {"message": "upstream"}

        counts = {c.kind: c.count for c in db_session.query(OtpRateCounter).all()}
        assert counts["session"] == 1
        assert counts["phone"] == 1
        assert db_session.get(CheckoutSession, session_id).otp_generated_at is not None

    def test_counter_buckets_by_hour(self, db_session):
        now = utcnow().replace(minute=59, second=30, microsecond=0)
        assert bump_hourly_counter(db_session, "phone", PHONE, 2, now) == (True, 30)
        assert bump_hourly_counter(db_session, "phone", PHONE, 2, now)[0] is True
        assert bump_hourly_counter(db_session, "phone", PHONE, 2, now)[0] is False

        later = now + timedelta(minutes=1)
        assert bump_hourly_counter(db_session, "phone", PHONE, 2, later)[0] is True
        assert db_session.query(OtpRateCounter).count() == 2

    def test_purge_expired_counters(self, db_session):
        bump_hourly_counter(db_session, "ip", "10.0.0.1", 20, utcnow() - timedelta(hours=3))
        bump_hourly_counter(db_session, "ip", "10.0.0.1", 20, utcnow())
        assert purge_rate_counters(db_session) == 1
        assert db_session.query(OtpRateCounter).count() == 1


class TestVerifyOtp:
    def test_verifies_phone(self, client, db_session, pending_otp):
        resp = client.post(
            "/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": pending_otp, "otp": 123456}
        )
        assert resp.status_code == 200
        assert resp.json()["customerPhoneMasked"] == "+91******3210"
        assert resp.headers["cache-control"] == "no-store"

        session = db_session.get(CheckoutSession, pending_otp)
        assert session.status == CheckoutSessionStatus.PHONE_VERIFIED
        assert session.customer_phone == PHONE
        assert session.otp_hash is None
        assert db_session.get(CheckoutCustomer, PHONE) is not None

    def test_bad_signature(self, client, pending_otp):
        params = {**proxy_params(), "signature": "0" * 64}
        resp = client.post("/api/proxy/checkout/verify-otp", params=params, json={"sessionId": pending_otp, "otp": "123456"})
        assert resp.status_code == 401

    def test_missing_secret(self, client, pending_otp, monkeypatch):
        monkeypatch.setattr(settings, "SHOPIFY_API_SECRET", "")
        resp = client.post("/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": pending_otp, "otp": "1"})
        assert resp.status_code == 500

    def test_wrong_otp_counts_attempt(self, client, db_session, pending_otp):
        resp = client.post("/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": pending_otp, "otp": "000000"})
        assert resp.status_code == 401
        assert db_session.get(CheckoutSession, pending_otp).otp_attempt_count == 1

    def test_attempts_exhausted(self, client, db_session, pending_otp):
        db_session.get(CheckoutSession, pending_otp).otp_attempt_count = settings.OTP_MAX_ATTEMPTS
        db_session.commit()
        resp = client.post("/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": pending_otp, "otp": "123456"})
        assert resp.status_code == 429
        db_session.expire_all()
        assert db_session.get(CheckoutSession, pending_otp).otp_hash is None

    def test_otp_expired(self, client, db_session, pending_otp):
        db_session.get(CheckoutSession, pending_otp).otp_generated_at = utcnow() - timedelta(minutes=10)
        db_session.commit()
        resp = client.post("/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": pending_otp, "otp": "123456"})
        assert resp.status_code == 410

    def test_no_pending_otp(self, client, session_id):
        resp = client.post("/api/proxy/checkout/verify-otp", params=proxy_params(), json={"sessionId": session_id, "otp": "123456"})
        assert resp.status_code == 400


class TestCustomer:
    def test_update_and_get(self, client, verified_session):
        resp = client.post(
            "/api/proxy/checkout/customer",
            params=proxy_params(),
            json={"sessionId": verified_session, "phone": PHONE, "name": "Asha Rao", "address": "12 MG Road"},
        )
        assert resp.json() == {"ok": True, "message": "Details updated"}

        params = proxy_params(sessionId=verified_session, phone=PHONE)
        resp = client.get("/api/proxy/checkout/customer", params=params)
        body = resp.json()
        assert body["name"] == "Asha Rao"
        assert body["address"] == "12 MG Road"
        assert body["email"] is None

    def test_invalid_email(self, client, verified_session):
        resp = client.post(
            "/api/proxy/checkout/customer",
            params=proxy_params(),
            json={"sessionId": verified_session, "phone": PHONE, "email": "not-an-email"},
        )
        assert resp.status_code == 400

    def test_phone_mismatch(self, client, verified_session):
        params = proxy_params(sessionId=verified_session, phone="+919123456789")
        assert client.get("/api/proxy/checkout/customer", params=params).status_code == 403


class TestCodOrder:
    @pytest.fixture
    def shopify_order(self, monkeypatch):
        create = AsyncMock(return_value={
            "id": 7001,
            "name": "#1055",
            "order_number": 1055,
            "order_status_url": "https://acme.example/orders/7001",
        })
        monkeypatch.setattr(checkout_service, "create_order", create)
        return create

    def test_creates_order_once(self, client, db_session, verified_session, shopify_order):
        body = {"sessionId": verified_session, "first_name": "Asha", "last_name": "Rao", "address": "12 MG Road"}
        resp = client.post("/api/proxy/checkout/order-create-cod", params=proxy_params(), json=body)
        assert resp.status_code == 200
        assert resp.json()["order"] == {
            "id": "7001",
            "name": "#1055",
            "number": 1055,
            "statusUrl": "https://acme.example/orders/7001",
        }

        shop, token, payload = shopify_order.await_args.args
        assert (shop, token) == ("acme.myshopify.com", "shpat_test_token")
        order = payload["order"]
        assert order["line_items"] == [{"variant_id": 9001, "quantity": 2}]
        assert order["payment_gateway_names"] == ["Cash on Delivery"]
        assert order["phone"] == PHONE
        assert order["note"] == "gift wrap"
        assert order["shipping_address"]["name"] == "Asha Rao"
        assert shopify_order.await_args.kwargs["request_id"] == f"cod-{verified_session}"

        resp = client.post("/api/proxy/checkout/order-create-cod", params=proxy_params(), json=body)
        assert resp.json()["order"]["id"] == "7001"
        shopify_order.assert_awaited_once()
        assert db_session.get(CheckoutSession, verified_session).status == CheckoutSessionStatus.ORDER_CREATED

    def test_unverified_session(self, client, session_id, shopify_order):
        resp = client.post("/api/proxy/checkout/order-create-cod", params=proxy_params(), json={"sessionId": session_id})
        assert resp.status_code == 403
        shopify_order.assert_not_awaited()

    def test_empty_draft(self, client, db_session, verified_session, shopify_order):
        session = db_session.get(CheckoutSession, verified_session)
        db_session.get(DraftOrder, session.draft_order_id).payload = {"line_items": []}
        db_session.commit()
        resp = client.post("/api/proxy/checkout/order-create-cod", params=proxy_params(), json={"sessionId": verified_session})
        assert resp.status_code == 422

    def test_non_numeric_variant_id(self, client, db_session, verified_session, shopify_order):
        session = db_session.get(CheckoutSession, verified_session)
        db_session.get(DraftOrder, session.draft_order_id).payload = {
            "line_items": [{"variant_id": "gid://shopify/ProductVariant/9001", "quantity": 1}]
        }
        db_session.commit()
        resp = client.post("/api/proxy/checkout/order-create-cod", params=proxy_params(), json={"sessionId": verified_session})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid variant_id"
        shopify_order.assert_not_awaited()

    def test_line_item_mapping(self):
        payload = build_cod_order_payload(
            [{"variant_id": "9001", "quantity": "2"}, {"variant_id": 9002, "quantity": 0}, {"quantity": 1}],
            PHONE, {}, None,
        )
        assert payload["order"]["line_items"] == [{"variant_id": 9001, "quantity": 2}]


class TestCleanup:
    def test_removes_only_abandoned_expired_sessions(self, db_session):
        past = utcnow() - timedelta(hours=1)
        drafts = [DraftOrder(store_id="acme.myshopify.com", payload=DRAFT) for _ in range(3)]
        db_session.add_all(drafts)
        db_session.flush()
        db_session.add_all([
            CheckoutSession(shop_domain="acme.myshopify.com", draft_order_id=drafts[0].id, expires_at=past),
            CheckoutSession(shop_domain="acme.myshopify.com", draft_order_id=drafts[1].id, expires_at=past, order_id="7001"),
            CheckoutSession(
                shop_domain="acme.myshopify.com", draft_order_id=drafts[2].id, expires_at=utcnow() + timedelta(hours=1)
            ),
        ])
        db_session.commit()

        assert cleanup_expired_sessions(db_session) == 1
        db_session.commit()
        assert db_session.query(CheckoutSession).count() == 2
        assert db_session.query(DraftOrder).count() == 2
