"""
Customer self-service pages behind the app proxy: book return and confirm or cancel
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.models import CustomerSession, CustomerSessionPurpose, Order, OrderStatusLog, utcnow
from app.services import returns as returns_service
from app.services.credentials import OWNER_BUSINESS, save_provider_credentials
from conftest import order_payload, proxy_params
from main import app

BOOK_RETURN = "/api/proxy/book-return"
CONFIRM_CANCEL = "/api/proxy/confirm-or-cancel"


@pytest.fixture
def pages_store(db_session, store):
    store.book_return_enabled = True
    store.confirm_cancel_enabled = True
    db_session.commit()
    return store


def make_order(db_session, status="Delivered", **fields) -> Order:
    raw = order_payload(
        shipping_address={"name": "Asha Rao", "phone": "+91 98765 43210"},
        line_items=[{"variant_id": 9001, "name": "Tee - M", "quantity": 2, "price": "499.00"}],
    )
    order = Order(
        store_id="acme.myshopify.com",
        order_id="1001",
        name="#1001",
        raw=raw,
        custom_status=status,
        **fields,
    )
    db_session.add(order)
    db_session.commit()
    return order


def reload_order(db_session) -> Order:
    db_session.expire_all()
    return db_session.query(Order).filter(Order.order_id == "1001").one()


def start(client, page=BOOK_RETURN, **params) -> dict:
    resp = client.post(f"{page}/start-session", params=proxy_params(**params))
    assert resp.status_code == 200
    data = resp.json()
    return {"X-Session-Id": data["sessionId"], "X-CSRF-Token": data["csrfToken"]}


def post(client, path, headers, body, **params):
    return client.post(path, params=proxy_params(**params), headers=headers, json=body)


@pytest.fixture
def return_headers(client, pages_store):
    return start(client)


def return_body(**overrides) -> dict:
    body = {
        "orderId": "1001",
        "selectedVariantIds": [9001],
        "booked_return_images": ["https://cdn.example.com/r/1.jpg"],
        "booked_return_reason": "Size too small",
    }
    body.update(overrides)
    return body


class TestCustomerSession:
    def test_start_session(self, client, db_session, pages_store):
        resp = client.post(f"{BOOK_RETURN}/start-session", params=proxy_params())
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert "customer_session" in resp.headers["set-cookie"]

        session = db_session.get(CustomerSession, data["sessionId"])
        assert session.store_id == "acme.myshopify.com"
        assert session.purpose == CustomerSessionPurpose.BOOK_RETURN
        assert session.csrf_token == data["csrfToken"]
        assert session.expires_at > utcnow() + timedelta(minutes=110)

    def test_page_must_be_enabled(self, client, store):
        resp = client.post(f"{BOOK_RETURN}/start-session", params=proxy_params())
        assert resp.status_code == 404

    def test_bad_signature(self, client, pages_store):
        params = proxy_params()
        params["signature"] = "0" * 64
        resp = client.post(f"{BOOK_RETURN}/start-session", params=params)
        assert resp.status_code == 401

    def test_reuses_live_session(self, client, pages_store):
        first = start(client)
        second = client.post(f"{BOOK_RETURN}/start-session", params=proxy_params(), headers=first)
        assert second.json()["sessionId"] == first["X-Session-Id"]

    def test_expired_session_is_replaced(self, client, db_session, pages_store):
        first = start(client)
        db_session.get(CustomerSession, first["X-Session-Id"]).expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        second = client.post(f"{BOOK_RETURN}/start-session", params=proxy_params(), headers=first)
        assert second.json()["sessionId"] != first["X-Session-Id"]
        db_session.expire_all()
        old = db_session.get(CustomerSession, first["X-Session-Id"])
        assert old.is_active is False
        assert old.end_reason == "expired_or_invalid"

    def test_active_sessions_per_ip_are_limited(self, client, db_session, pages_store, monkeypatch):
        monkeypatch.setattr(settings, "CUSTOMER_SESSION_MAX_PER_IP", 1)
        db_session.add(CustomerSession(
            store_id=pages_store.id,
            purpose=CustomerSessionPurpose.BOOK_RETURN,
            csrf_token="t",
            ip="testclient",
            expires_at=utcnow() + timedelta(hours=1),
        ))
        db_session.commit()
        resp = client.post(f"{BOOK_RETURN}/start-session", params=proxy_params())
        assert resp.status_code == 429

    def test_calls_need_a_session(self, pages_store):
        fresh = TestClient(app)
        resp = post(fresh, f"{BOOK_RETURN}/order", {}, {"orderNumber": "1001", "phoneNo": "9876543210"})
        assert resp.status_code == 401
        assert resp.json()["sessionError"] is True

    def test_csrf_token_must_match(self, client, return_headers):
        headers = {**return_headers, "X-CSRF-Token": "forged"}
        resp = post(client, f"{BOOK_RETURN}/order", headers, {"orderNumber": "1001", "phoneNo": "9876543210"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Security validation failed. Please refresh the page."

    def test_session_is_bound_to_shop(self, client, return_headers):
        resp = post(
            client, f"{BOOK_RETURN}/order", return_headers,
            {"orderNumber": "1001", "phoneNo": "9876543210"}, shop="other.myshopify.com",
        )
        assert resp.status_code == 401

    def test_session_is_bound_to_page(self, client, return_headers):
        resp = post(client, f"{CONFIRM_CANCEL}/order", return_headers, {"orderNumber": "1001"})
        assert resp.status_code == 401

    def test_expired_session(self, client, db_session, return_headers):
        db_session.get(CustomerSession, return_headers["X-Session-Id"]).expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()
        resp = post(client, f"{BOOK_RETURN}/order", return_headers, {"orderNumber": "1001", "phoneNo": "9876543210"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Your session has expired. Please refresh the page."

    def test_requests_are_counted(self, client, db_session, return_headers):
        make_order(db_session)
        post(client, f"{BOOK_RETURN}/order", return_headers, {"orderNumber": "1001", "phoneNo": "9876543210"})
        db_session.expire_all()
        assert db_session.get(CustomerSession, return_headers["X-Session-Id"]).request_count == 1


class TestReturnOrderLookup:
    def test_finds_order_by_number_and_phone(self, client, db_session, return_headers):
        make_order(db_session, awb="AWB123")
        resp = post(client, f"{BOOK_RETURN}/order", return_headers, {"orderNumber": "1001", "phoneNo": "098765-43210"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == "1001"
        assert data["name"] == "#1001"
        assert data["status"] == "Delivered"
        assert data["awb"] == "AWB123"
        assert data["awbReverse"] == ""
        assert data["items"] == [{"name": "Tee - M", "variantId": 9001, "quantity": 2, "price": "499.00"}]
        assert data["returnItemsVariantIds"] is None

    def test_phone_must_match(self, client, db_session, return_headers):
        make_order(db_session)
        resp = post(client, f"{BOOK_RETURN}/order", return_headers, {"orderNumber": "#1001", "phoneNo": "9000000000"})
        assert resp.status_code == 403

    def test_unknown_order(self, client, return_headers):
        resp = post(client, f"{BOOK_RETURN}/order", return_headers, {"orderNumber": "2002", "phoneNo": "9876543210"})
        assert resp.status_code == 404

    def test_fields_required(self, client, return_headers):
        resp = post(client, f"{BOOK_RETURN}/order", return_headers, {"orderNumber": "1001"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Order Number and Phone Number are required."

    def test_phone_candidates(self):
        raw = {"billing_address": {"phone": "+91-9876543210"}, "customer": {"phone": None}}
        assert returns_service.order_phones(raw) == {"9876543210"}


class TestReturnRequest:
    def test_delivered_order_books_return(self, client, db_session, return_headers):
        make_order(db_session)
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json() == {"success": True, "message": returns_service.MSG_RETURN_BOOKED}

        order = reload_order(db_session)
        assert order.custom_status == "DTO Requested"
        assert order.return_variant_ids == [9001]
        assert order.return_images == ["https://cdn.example.com/r/1.jpg"]
        assert order.return_reason == "Size too small"
        assert order.return_requested_at is not None
        log = order.status_logs[-1]
        assert log.status == "DTO Requested"
        assert log.remarks.endswith("Reason: Size too small")

    def test_repeat_request_is_logged_again(self, client, db_session, return_headers):
        make_order(db_session, status="DTO Requested")
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json()["success"] is True
        order = reload_order(db_session)
        assert order.custom_status == "DTO Requested"
        assert order.status_logs[-1].status == "DTO Requested Again"

    @pytest.mark.parametrize("status", ["DTO Booked", "DTO In Transit", "DTO Delivered"])
    def test_processed_return_is_locked(self, client, db_session, return_headers, status):
        make_order(db_session, status=status)
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.status_code == 200
        assert resp.json() == {"success": False, "message": returns_service.MSG_RETURN_LOCKED}
        assert reload_order(db_session).custom_status == status

    def test_undelivered_order_not_eligible(self, client, db_session, return_headers):
        make_order(db_session, status="Confirmed")
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json() == {"success": False, "message": returns_service.MSG_NOT_RETURNABLE}

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"orderId": " "}, "Valid Order ID is required."),
            ({"selectedVariantIds": []}, "At least one item variant must be selected for return."),
            ({"selectedVariantIds": ["9001", -1]}, "Valid item variant IDs are required."),
            ({"booked_return_images": None}, "At least one image is required for return request."),
            ({"booked_return_images": ["https://cdn.example.com/x.jpg"] * 11}, "Maximum 10 images are allowed."),
            ({"booked_return_reason": "  "}, "Return reason is required."),
            ({"booked_return_reason": "x" * 501}, "Return reason must not exceed 500 characters."),
        ],
    )
    def test_input_validation(self, client, db_session, return_headers, overrides, message):
        make_order(db_session)
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body(**overrides))
        assert resp.status_code == 400
        assert resp.json()["error"] == message
        assert reload_order(db_session).custom_status == "Delivered"

    def test_unknown_order(self, client, return_headers):
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body(orderId="2002"))
        assert resp.status_code == 404


def tracking_response(status: str, status_type: str) -> httpx.Response:
    body = {"ShipmentData": [{"Shipment": {"Status": {"Status": status, "StatusType": status_type}}}]}
    return httpx.Response(200, json=body, request=httpx.Request("GET", returns_service.DELHIVERY_TRACKING_URL))


class TestInTransitReturn:
    @pytest.fixture
    def delhivery(self, db_session, business):
        save_provider_credentials(db_session, OWNER_BUSINESS, business.id, "delhivery", {"apiKey": "dl-key"})
        db_session.commit()

    def test_delivered_per_tracking_books_return(self, client, db_session, return_headers, delhivery, monkeypatch):
        make_order(db_session, status="In Transit", awb="AWB123")
        track = AsyncMock(return_value=tracking_response("Delivered", "DL"))
        monkeypatch.setattr(returns_service, "get_with_retry", track)

        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json()["success"] is True
        assert reload_order(db_session).custom_status == "DTO Requested"
        assert track.await_args.kwargs["params"] == {"waybill": "AWB123"}
        assert track.await_args.kwargs["headers"]["Authorization"] == "Token dl-key"

    def test_newer_tracking_status_is_saved(self, client, db_session, return_headers, delhivery, monkeypatch):
        make_order(db_session, status="In Transit", awb="AWB123")
        monkeypatch.setattr(returns_service, "get_with_retry", AsyncMock(return_value=tracking_response("Dispatched", "UD")))

        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json() == {"success": False, "message": returns_service.MSG_NOT_DELIVERED}
        order = reload_order(db_session)
        assert order.custom_status == "Out For Delivery"
        assert order.return_variant_ids is None

    def test_tracking_not_configured(self, client, db_session, return_headers):
        make_order(db_session, status="In Transit", awb="AWB123")
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json() == {"success": False, "message": returns_service.MSG_TRACKING_UNAVAILABLE}

    def test_tracking_outage(self, client, db_session, return_headers, delhivery, monkeypatch):
        make_order(db_session, status="Out For Delivery", awb="AWB123")
        monkeypatch.setattr(returns_service, "get_with_retry", AsyncMock(side_effect=httpx.ConnectError("down")))
        resp = post(client, f"{BOOK_RETURN}/request", return_headers, return_body())
        assert resp.json()["message"] == returns_service.MSG_TRACKING_UNAVAILABLE
        assert reload_order(db_session).custom_status == "Out For Delivery"


class TestCancelReturn:
    def test_withdraws_pending_return(self, client, db_session, return_headers):
        make_order(db_session)
        post(client, f"{BOOK_RETURN}/request", return_headers, return_body())

        resp = post(client, f"{BOOK_RETURN}/cancel-request", return_headers, {"orderId": "1001"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        order = reload_order(db_session)
        assert order.custom_status == "Delivered"
        assert order.return_variant_ids is None
        assert order.return_images is None
        assert order.return_reason is None
        assert db_session.query(OrderStatusLog).count() == 0

    def test_only_pending_return_can_be_withdrawn(self, client, db_session, return_headers):
        make_order(db_session, status="DTO Booked")
        resp = post(client, f"{BOOK_RETURN}/cancel-request", return_headers, {"orderId": "1001"})
        assert resp.status_code == 400
        assert reload_order(db_session).custom_status == "DTO Booked"


class TestConfirmOrCancel:
    @pytest.fixture
    def headers(self, client, pages_store):
        return start(client, page=CONFIRM_CANCEL)

    def test_page_must_be_enabled(self, client, db_session, store):
        store.book_return_enabled = True
        db_session.commit()
        resp = client.post(f"{CONFIRM_CANCEL}/start-session", params=proxy_params())
        assert resp.status_code == 404

    def test_lookup(self, client, db_session, headers):
        make_order(db_session, status=None)
        resp = post(client, f"{CONFIRM_CANCEL}/order", headers, {"orderNumber": "#1001"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == "1001"
        assert data["customStatus"] == "New"
        assert data["totalPrice"] == "999.00"

    def test_confirm_new_order(self, client, db_session, headers):
        make_order(db_session, status="New")
        resp = post(client, f"{CONFIRM_CANCEL}/confirm-order", headers, {"orderId": "1001"})
        assert resp.json()["success"] is True

        order = reload_order(db_session)
        assert order.custom_status == "Confirmed"
        assert order.confirmed_at is not None
        assert order.last_updated_by == "customer"
        assert order.status_logs[-1].remarks == "Order was confirmed by the customer via confirm/cancel link"

    def test_request_cancellation(self, client, db_session, headers):
        make_order(db_session, status="New")
        resp = post(client, f"{CONFIRM_CANCEL}/cancel-order", headers, {"orderId": "1001"})
        assert resp.json()["success"] is True
        order = reload_order(db_session)
        assert order.custom_status == "Cancellation Requested"
        assert order.cancellation_requested_at is not None

    def test_only_new_orders(self, client, db_session, headers):
        make_order(db_session, status="Dispatched")
        resp = post(client, f"{CONFIRM_CANCEL}/cancel-order", headers, {"orderId": "1001"})
        assert resp.status_code == 200
        assert resp.json() == {
            "success": False,
            "message": 'This order cannot be cancelled as it is currently in "Dispatched" status.',
        }
        assert reload_order(db_session).custom_status == "Dispatched"
