"""
HTTP tests: routes, status codes and error mapping through the FastAPI app.
"""
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from fulfillment.core.config import settings
from fulfillment.core.security import get_current_user_id
from fulfillment.db.session import get_db
from fulfillment.main import create_app


class Actor:
    """Mutable acting user for the overridden auth dependency."""

    def __init__(self, user_id: int):
        self.user_id = user_id


@pytest.fixture
def actor(refs):
    return Actor(refs.coordinator)


@pytest.fixture
def app(session_factory, actor):
    app = create_app(run_startup=False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = lambda: actor.user_id
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def order_payload(n: int, **overrides):
    payload = {
        "order_ginee_id": f"GIN-API-{n}",
        "tracking_number": f"JNE{n:06d}",
        "sent_before": "2030-01-01T12:00:00Z",
        "channel": "Shopee",
        "buyer": "Buyer",
        "details": [
            {"sku": "SKU-A", "product_name": "Satin Ribbon", "variant": "Red", "quantity": 2, "price": 15000},
            {"sku": "SKU-B", "product_name": "Gift Card", "quantity": 1, "price": 5000},
        ],
    }
    payload.update(overrides)
    return payload


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAuth:
    """Bearer tokens are verified with the shared secret."""

    @pytest.fixture
    def auth_client(self, session_factory, refs):
        app = create_app(run_startup=False)

        def override_get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        return TestClient(app)

    def test_missing_token(self, auth_client):
        response = auth_client.get("/api/tracking/JNE1")
        assert response.status_code in (401, 403)

    def test_invalid_token(self, auth_client):
        response = auth_client.get("/api/tracking/JNE1", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_non_numeric_subject(self, auth_client):
        token = jwt.encode({"sub": "sarah"}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        response = auth_client.get("/api/tracking/JNE1", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_valid_token_reaches_the_route(self, auth_client, refs):
        token = jwt.encode({"sub": str(refs.coordinator)}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        response = auth_client.get("/api/tracking/JNE1", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestOrderRoutes:

    def test_create_and_get(self, client):
        response = client.post("/api/orders", json=order_payload(1))
        assert response.status_code == 201
        body = response.json()
        assert body["processing_status"] == "ready_to_pick"
        assert body["processing_status_label"] == "Ready to Pick"
        assert body["event_status_label"] == "In Progress"
        assert len(body["details"]) == 2

        fetched = client.get(f"/api/orders/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["tracking_number"] == "JNE000001"

    def test_conflict_maps_to_409(self, client):
        client.post("/api/orders", json=order_payload(1))

        response = client.post("/api/orders", json=order_payload(1))

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"
        assert "already exists" in response.json()["detail"]

    def test_validation_maps_to_422(self, client):
        response = client.post("/api/orders", json=order_payload(1, details=[]))

        assert response.status_code == 422
        assert response.json()["error"] == "validation"

    def test_missing_order_is_404(self, client):
        response = client.get("/api/orders/999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_bulk_status_codes(self, client):
        first = client.post("/api/orders/bulk", json={"orders": [order_payload(1), order_payload(2)]})
        assert first.status_code == 201
        assert first.json()["summary"] == {"total": 2, "created": 2, "skipped": 0, "failed": 0}

        again = client.post("/api/orders/bulk", json={"orders": [order_payload(1)]})
        assert again.status_code == 200
        assert again.json()["skipped"][0]["reason"] == "Order already exists"

        bad = client.post("/api/orders/bulk", json={"orders": [order_payload(3, details=[])]})
        assert bad.status_code == 400
        assert bad.json()["summary"]["failed"] == 1

        mixed = client.post("/api/orders/bulk", json={"orders": [order_payload(1), order_payload(4, details=[])]})
        assert mixed.status_code == 200
        assert mixed.json()["summary"] == {"total": 2, "created": 0, "skipped": 1, "failed": 1}

    def test_bulk_assign(self, client, refs):
        client.post("/api/orders/bulk", json={"orders": [order_payload(1), order_payload(2)]})

        response = client.post(
            "/api/orders/bulk-assign-picker",
            json={"picker_id": refs.picker, "tracking_numbers": ["JNE000001", "JNE000002", "JNE000404"]},
        )

        assert response.status_code == 200
        assert response.json()["summary"] == {"total": 3, "created": 2, "skipped": 1, "failed": 0}

    def test_duplicate_returns_both_orders(self, client):
        order_id = client.post("/api/orders", json=order_payload(5)).json()["id"]

        response = client.post(f"/api/orders/{order_id}/duplicate")

        assert response.status_code == 201
        body = response.json()
        assert body["original_order"]["tracking_number"] == "X-JNE000005"
        assert body["original_order"]["order_ginee_id"] == "GIN-API-5-X2"
        assert body["duplicated_order"]["tracking_number"] == "JNE000005"
        assert body["duplicated_order"]["event_status"] == "duplicated"

    def test_update_details_and_cancel(self, client):
        order_id = client.post("/api/orders", json=order_payload(6)).json()["id"]

        updated = client.put(
            f"/api/orders/{order_id}",
            json={"details": [{"sku": "SKU-C", "product_name": "Bow", "quantity": 3, "price": 900}]},
        )
        assert updated.status_code == 200
        assert [d["sku"] for d in updated.json()["details"]] == ["SKU-C"]

        canceled = client.post(f"/api/orders/{order_id}/cancel")
        assert canceled.status_code == 200
        assert canceled.json()["event_status"] == "canceled"
        assert canceled.json()["details"][0]["quantity"] == 0


class TestPipelineOverHttp:
    """Order -> pick -> ribbon QC -> outbound -> complaint, as each role."""

    def test_happy_path(self, client, actor, refs):
        order = client.post("/api/orders", json=order_payload(123456)).json()
        tn = order["tracking_number"]

        assigned = client.post("/api/orders/assign-picker", json={"tracking_number": tn, "picker_id": refs.picker})
        assert assigned.json()["processing_status"] == "picking_progress"

        denied = client.post(f"/api/orders/{order['id']}/complete-picking")
        assert denied.status_code == 404

        actor.user_id = refs.picker
        picked = client.post(f"/api/orders/{order['id']}/complete-picking")
        assert picked.json()["processing_status"] == "picking_completed"

        actor.user_id = refs.qc
        qc = client.post("/api/ribbons/qc-ribbons", json={"tracking_number": tn})
        assert qc.status_code == 201
        qc_id = qc.json()["id"]
        assert qc.json()["lane"] == "ribbon"

        cross = client.post("/api/onlines/qc-onlines", json={"tracking_number": tn})
        assert cross.status_code == 409
        assert cross.json()["error"] == "cross_lane_conflict"

        mismatch = client.post(f"/api/ribbons/qc-ribbons/{qc_id}/validate", json={"sku": "SKU-A", "quantity": 5})
        assert mismatch.status_code == 400
        assert mismatch.json()["error"] == "quantity_mismatch"

        early = client.post(f"/api/ribbons/qc-ribbons/{qc_id}/complete", json={"details": [{"box_id": refs.box_small, "quantity": 1}]})
        assert early.status_code == 409
        assert early.json()["error"] == "validation_incomplete"

        for sku, qty in (("SKU-A", 2), ("SKU-B", 1)):
            validated = client.post(f"/api/ribbons/qc-ribbons/{qc_id}/validate", json={"sku": sku, "quantity": qty})
            assert validated.json()["is_valid"] is True

        dup_box = client.post(
            f"/api/ribbons/qc-ribbons/{qc_id}/complete",
            json={"details": [{"box_id": refs.box_small, "quantity": 1}, {"box_id": refs.box_small, "quantity": 2}]},
        )
        assert dup_box.status_code == 400
        assert dup_box.json()["error"] == "duplicate_box_id"

        done = client.post(f"/api/ribbons/qc-ribbons/{qc_id}/complete", json={"details": [{"box_id": refs.box_small, "quantity": 3}]})
        assert done.status_code == 200
        assert done.json()["completed"] is True
        assert done.json()["qc"]["status"] == "completed"
        assert done.json()["qc"]["details"] == [{"box_id": refs.box_small, "quantity": 3}]

        again = client.post(f"/api/ribbons/qc-ribbons/{qc_id}/complete", json={"details": [{"box_id": refs.box_large, "quantity": 1}]})
        assert again.status_code == 200
        assert again.json()["completed"] is False

        actor.user_id = refs.outbound
        outbound = client.post("/api/outbounds", json={"tracking_number": tn})
        assert outbound.status_code == 201
        assert outbound.json()["expedition"] == "JNE"
        assert client.get(f"/api/outbounds/{outbound.json()['id']}").status_code == 200

        flow = client.get(f"/api/tracking/{tn.lower()}").json()
        assert flow["order"]["processing_status"] == "outbound_completed"
        assert flow["qc"]["lane"] == "ribbon"
        assert flow["outbound"]["expedition_slug"] == "jne"

        actor.user_id = refs.coordinator
        complaint = client.post(
            "/api/complains",
            json={"tracking_number": tn, "channel_id": refs.channel, "store_id": refs.store, "reason": "Damaged"},
        )
        assert complaint.status_code == 201
        body = complaint.json()
        assert {u["user_id"] for u in body["user_details"]} == {refs.coordinator, refs.picker, refs.qc, refs.outbound}
        assert [p["product_sku"] for p in body["product_details"]] == ["SKU-A", "SKU-B"]

        reviewed = client.put(
            f"/api/complains/{body['id']}",
            json={"solution": "Refund", "total_fee": 10000, "user_details": [{"user_id": refs.picker, "fee_charge": 10000}]},
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["user_details"] == [{"user_id": refs.picker, "fee_charge": 10000}]

        checked = client.put(f"/api/complains/{body['id']}/check", json={"checked": True})
        assert checked.json()["checked"] is True

    def test_unknown_carrier_is_422(self, client, actor, refs, qc_completed_order):
        order, _ = qc_completed_order(tracking_number="ZZZ0001")
        actor.user_id = refs.outbound

        response = client.post("/api/outbounds", json={"tracking_number": order.tracking_number})

        assert response.status_code == 422
        assert response.json()["error"] == "no_expedition_found"

    def test_manual_carrier_outbound_and_correction(self, client, actor, refs, qc_completed_order):
        qc_completed_order(tracking_number="TKP0123")
        actor.user_id = refs.outbound

        created = client.post("/api/outbounds", json={"tracking_number": "TKP0123"})
        assert created.status_code == 201
        assert created.json()["expedition"] == ""

        corrected = client.put(
            f"/api/outbounds/{created.json()['id']}",
            json={"expedition": "Tokopedia Kurir", "expedition_slug": "tokopedia-kurir", "expedition_color": "#16A34A"},
        )
        assert corrected.status_code == 200
        assert corrected.json()["expedition_slug"] == "tokopedia-kurir"

    def test_carrier_correction_refused_for_detected_carrier(self, client, actor, refs, qc_completed_order):
        order, _ = qc_completed_order()
        actor.user_id = refs.outbound
        outbound_id = client.post("/api/outbounds", json={"tracking_number": order.tracking_number}).json()["id"]

        response = client.put(f"/api/outbounds/{outbound_id}", json={"expedition": "Other"})

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"
        assert client.put("/api/outbounds/999", json={"expedition": "X"}).status_code == 404

    def test_qc_pending_and_resume(self, client, actor, refs, picked_order):
        order = picked_order()
        actor.user_id = refs.qc
        qc_id = client.post("/api/onlines/qc-onlines", json={"tracking_number": order.tracking_number}).json()["id"]

        pending = client.post(f"/api/onlines/qc-onlines/{qc_id}/pending")
        assert pending.json()["status"] == "pending"
        assert pending.json()["status_label"] == "Pending"

        resumed = client.post(f"/api/onlines/qc-onlines/{qc_id}/resume")
        assert resumed.json()["status"] == "in_progress"

        assert client.get(f"/api/onlines/qc-onlines/{qc_id}").json()["tracking_number"] == order.tracking_number
