"""
Purchase orders, goods receipt notes and put-away
"""
import pytest

from app.models import (
    PartyType,
    Product,
    PurchaseOrderItem,
    PurchaseOrderItemStatus,
    PurchaseOrderStatus,
    PutAwayState,
    UPC,
)
from app.services.errors import ServiceError
from app.services.purchase_orders import derive_item_status, derive_po_status, validate_transition


@pytest.fixture
def po_payload(business, supplier, warehouse, products):
    return {
        "businessId": business.id,
        "supplierPartyId": supplier.id,
        "supplierName": supplier.name,
        "warehouseId": warehouse.id,
        "expectedDate": "2026-11-15",
        "items": [
            {"sku": "tshirt-001", "productName": "Cotton T-Shirt", "orderedQty": 10, "unitCost": 150},
            {"sku": "JEANS-001", "productName": "Denim Jeans", "orderedQty": 4, "unitCost": 500.5},
        ],
    }


@pytest.fixture
def confirmed_po(client, business, po_payload, auth_headers):
    po_id = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers).json()["purchaseOrderId"]
    resp = client.put(
        f"/api/purchase-orders/{po_id}",
        json={"businessId": business.id, "status": "confirmed"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    return po_id


class TestStatusRules:
    @pytest.mark.parametrize("target", list(PurchaseOrderStatus))
    def test_closed_is_terminal(self, target):
        with pytest.raises(ServiceError) as exc:
            validate_transition(PurchaseOrderStatus.CLOSED, target)
        assert exc.value.message == f"Cannot transition from 'closed' to '{target.value}'"

    def test_partial_receipt_may_repeat(self):
        validate_transition(PurchaseOrderStatus.PARTIALLY_RECEIVED, PurchaseOrderStatus.PARTIALLY_RECEIVED)

    def test_item_status(self):
        assert derive_item_status(0, 5) == PurchaseOrderItemStatus.PENDING
        assert derive_item_status(3, 5) == PurchaseOrderItemStatus.PARTIALLY_RECEIVED
        assert derive_item_status(6, 5) == PurchaseOrderItemStatus.FULLY_RECEIVED

    def test_po_status(self):
        done = PurchaseOrderItem(received_qty=5, status=PurchaseOrderItemStatus.FULLY_RECEIVED)
        waiting = PurchaseOrderItem(received_qty=0, status=PurchaseOrderItemStatus.PENDING)
        assert derive_po_status([done, done]) == PurchaseOrderStatus.FULLY_RECEIVED
        assert derive_po_status([done, waiting]) == PurchaseOrderStatus.PARTIALLY_RECEIVED
        assert derive_po_status([waiting]) == PurchaseOrderStatus.CONFIRMED


def _get_po(client, business, po_id, headers):
    return client.get(f"/api/purchase-orders/{po_id}", params={"businessId": business.id}, headers=headers).json()


def _receive(client, business, warehouse, po_id, headers, tshirts=4, jeans=None):
    items = [{"sku": "TSHIRT-001", "productName": "Cotton T-Shirt", "expectedQty": 10, "receivedQty": tshirts}]
    if jeans is not None:
        items.append({"sku": "JEANS-001", "productName": "Denim Jeans", "expectedQty": 4, "receivedQty": jeans})
    return client.post(
        "/api/grns",
        json={"businessId": business.id, "poId": po_id, "warehouseId": warehouse.id, "items": items},
        headers=headers,
    )


class TestPurchaseOrders:
    def test_create_numbers_and_totals(self, client, business, po_payload, auth_headers):
        resp = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers)
        assert resp.status_code == 201
        assert resp.json()["poNumber"] == "PO-00001"
        second = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers)
        assert second.json()["poNumber"] == "PO-00002"

        po = _get_po(client, business, resp.json()["purchaseOrderId"], auth_headers)
        assert po["status"] == "draft"
        assert po["orderedSkus"] == ["TSHIRT-001", "JEANS-001"]
        assert po["itemCount"] == 2
        assert po["totalAmount"] == 3502.0
        assert po["warehouseName"] == "Main Warehouse"
        assert po["currency"] == "INR"

    def test_duplicate_skus_rejected(self, client, po_payload, auth_headers):
        po_payload["items"][1]["sku"] = "TSHIRT-001"
        resp = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers)
        assert resp.status_code == 400
        assert "TSHIRT-001" in resp.json()["message"]

    def test_unknown_product_rejected(self, client, po_payload, auth_headers):
        po_payload["items"][0]["sku"] = "NOPE-1"
        resp = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["missingSkus"] == ["NOPE-1"]

    def test_customer_is_not_a_supplier(self, client, db_session, supplier, po_payload, auth_headers):
        supplier.type = PartyType.CUSTOMER
        db_session.commit()
        resp = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Party is not a supplier"

    def test_invalid_transition(self, client, business, po_payload, auth_headers):
        po_id = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers).json()["purchaseOrderId"]
        resp = client.put(
            f"/api/purchase-orders/{po_id}",
            json={"businessId": business.id, "status": "fully_received"},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid Transition"

    def test_confirm_sets_timestamp(self, client, business, confirmed_po, auth_headers):
        po = _get_po(client, business, confirmed_po, auth_headers)
        assert po["status"] == "confirmed"
        assert po["confirmedAt"] is not None

    def test_cancel_then_delete(self, client, business, confirmed_po, auth_headers):
        resp = client.put(
            f"/api/purchase-orders/{confirmed_po}",
            json={"businessId": business.id, "status": "cancelled", "cancelReason": "Supplier out of stock"},
            headers=auth_headers,
        )
        assert "cancelReason" in resp.json()["updatedFields"]

        resp = client.delete(
            f"/api/purchase-orders/{confirmed_po}", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.json()["deletedPoNumber"] == "PO-00001"

    def test_confirmed_po_cannot_be_deleted(self, client, business, confirmed_po, auth_headers):
        resp = client.delete(
            f"/api/purchase-orders/{confirmed_po}", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 400

    def test_list_with_invalid_status(self, client, business, auth_headers):
        resp = client.get(
            "/api/purchase-orders", params={"businessId": business.id, "status": "bogus"}, headers=auth_headers
        )
        assert resp.status_code == 400

    def test_pdf(self, client, business, confirmed_po, auth_headers):
        resp = client.get(
            f"/api/purchase-orders/{confirmed_po}/pdf", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.content.startswith(b"%PDF")


class TestGoodsReceipt:
    def test_draft_po_cannot_receive(self, client, business, warehouse, po_payload, auth_headers):
        po_id = client.post("/api/purchase-orders", json=po_payload, headers=auth_headers).json()["purchaseOrderId"]
        resp = _receive(client, business, warehouse, po_id, auth_headers)
        assert resp.status_code == 400

    def test_partial_then_full_receipt(self, client, business, warehouse, confirmed_po, auth_headers):
        resp = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=4)
        assert resp.status_code == 201
        assert resp.json()["grnNumber"] == "GRN-00001"
        assert resp.json()["poStatus"] == "partially_received"

        resp = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=6, jeans=4)
        assert resp.json()["poStatus"] == "fully_received"

        po = _get_po(client, business, confirmed_po, auth_headers)
        assert [i["receivedQty"] for i in po["items"]] == [10, 4]
        assert [i["status"] for i in po["items"]] == ["fully_received", "fully_received"]
        assert po["completedAt"] is not None

    def test_grn_totals(self, client, business, warehouse, confirmed_po, auth_headers):
        grn_id = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=4).json()["grnId"]
        grn = client.get(f"/api/grns/{grn_id}", params={"businessId": business.id}, headers=auth_headers).json()
        assert grn["totalExpectedQty"] == 10
        assert grn["totalReceivedQty"] == 4
        assert grn["totalNotReceivedQty"] == 6
        assert grn["totalReceivedValue"] == 600.0
        assert grn["receivedSkus"] == ["TSHIRT-001"]

    def test_sku_not_on_po(self, client, db_session, business, warehouse, confirmed_po, auth_headers):
        db_session.add(Product(business_id=business.id, sku="CAP-001", name="Cap", weight=80, category="Accessories"))
        db_session.commit()
        resp = client.post(
            "/api/grns",
            json={
                "businessId": business.id,
                "poId": confirmed_po,
                "warehouseId": warehouse.id,
                "items": [{"sku": "CAP-001", "productName": "Cap", "expectedQty": 1, "receivedQty": 1}],
            },
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert "CAP-001" in resp.json()["message"]

    def test_rejection_adjusts_po(self, client, business, warehouse, confirmed_po, auth_headers):
        grn_id = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=4).json()["grnId"]
        resp = client.put(
            f"/api/grns/{grn_id}",
            json={
                "businessId": business.id,
                "items": [{"sku": "TSHIRT-001", "acceptedQty": 3, "rejectedQty": 1, "rejectionReason": "Torn"}],
            },
            headers=auth_headers,
        )
        assert resp.status_code == 200
        po = _get_po(client, business, confirmed_po, auth_headers)
        assert po["items"][0]["receivedQty"] == 3
        assert po["items"][0]["rejectedQty"] == 1

    def test_over_acceptance_rejected(self, client, business, warehouse, confirmed_po, auth_headers):
        grn_id = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=4).json()["grnId"]
        resp = client.put(
            f"/api/grns/{grn_id}",
            json={"businessId": business.id, "items": [{"sku": "TSHIRT-001", "acceptedQty": 4, "rejectedQty": 1}]},
            headers=auth_headers,
        )
        assert resp.status_code == 400

    def test_cancel_reverts_po_and_allows_delete(self, client, business, warehouse, confirmed_po, auth_headers):
        grn_id = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=4).json()["grnId"]

        resp = client.delete(f"/api/grns/{grn_id}", params={"businessId": business.id}, headers=auth_headers)
        assert resp.status_code == 400

        resp = client.put(
            f"/api/grns/{grn_id}", json={"businessId": business.id, "status": "cancelled"}, headers=auth_headers
        )
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["poStatus"] == "confirmed"

        resp = client.delete(f"/api/grns/{grn_id}", params={"businessId": business.id}, headers=auth_headers)
        assert resp.json()["deletedGrnNumber"] == "GRN-00001"


class TestPutAway:
    def test_confirm_creates_one_upc_per_unit(
        self, client, db_session, business, warehouse, confirmed_po, auth_headers
    ):
        grn_id = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=3, jeans=2).json()["grnId"]
        resp = client.post(
            f"/api/grns/{grn_id}/confirm-put-away", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["totalUpcsCreated"] == 5
        assert [(i["sku"], i["upcsCreated"]) for i in body["items"]] == [("TSHIRT-001", 3), ("JEANS-001", 2)]

        upcs = db_session.query(UPC).filter(UPC.grn_id == grn_id).all()
        assert len(upcs) == 5
        assert all(u.put_away == PutAwayState.INBOUND for u in upcs)

        resp = client.post(
            f"/api/grns/{grn_id}/confirm-put-away", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 400

    def test_nothing_received(self, client, business, warehouse, confirmed_po, auth_headers):
        grn_id = _receive(client, business, warehouse, confirmed_po, auth_headers, tshirts=0).json()["grnId"]
        resp = client.post(
            f"/api/grns/{grn_id}/confirm-put-away", params={"businessId": business.id}, headers=auth_headers
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "No received units to put away"
