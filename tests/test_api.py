"""Tests for the Flask API used in local development."""

import pytest

import main
from payout_engine import DeductionLedger, MonthlyStatementBuilder
from payout_engine.errors import StaleRateConfig


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "ledger", DeductionLedger())
    monkeypatch.setattr(main, "statement_builder", MonthlyStatementBuilder())
    main.app.config["TESTING"] = True
    with main.app.test_client() as client:
        yield client


WORK_RECORD = {
    "orderId": 1,
    "helperId": "helper-1",
    "workDate": "2025-03-10",
    "pricePerUnit": 1500,
    "deliveredCount": 120,
    "returnedCount": 10,
    "etcCount": 5,
    "etcPricePerUnit": 1800,
}
RATE_CONFIG = {"commissionRate": 5, "insuranceRate": 0.7}


def create_deduction(client, amount=20000, **extra):
    body = {"target": {"type": "helper", "id": "helper-1"}, "amount": amount, "reason": "damage", "orderId": 1}
    body.update(extra)
    return client.post("/deductions", json=body)


class TestInfoRoutes:

    def test_health(self, client):
        assert client.get("/health").get_json()["status"] == "healthy"

    def test_api_info(self, client):
        response = client.get("/api")
        assert response.status_code == 200
        assert "build_statement" in response.get_json()["endpoints"]


class TestDeductionRoutes:

    def test_create(self, client):
        response = create_deduction(client, memo="front panel")
        body = response.get_json()

        assert response.status_code == 201
        assert body["status"] == "pending"
        assert body["category"] == "other"
        assert body["memo"] == "front panel"

    def test_create_from_incident(self, client):
        body = create_deduction(client, incidentId=12).get_json()

        assert body["category"] == "damage"
        assert body["incidentId"] == 12

    def test_invalid_amount(self, client):
        response = create_deduction(client, amount=0)

        assert response.status_code == 400
        assert response.get_json()["status"] == "validation_failed"

    def test_apply_twice_conflicts(self, client):
        deduction_id = create_deduction(client).get_json()["id"]

        first = client.post(f"/deductions/{deduction_id}/apply", json={"settlementId": 1})
        second = client.post(f"/deductions/{deduction_id}/apply", json={"settlementId": 1})

        assert first.status_code == 200
        assert first.get_json()["status"] == "applied"
        assert second.status_code == 409
        assert second.get_json()["status"] == "conflict"

    def test_cancel(self, client):
        deduction_id = create_deduction(client).get_json()["id"]
        response = client.post(f"/deductions/{deduction_id}/cancel", json={"reason": "duplicate"})

        assert response.get_json()["status"] == "cancelled"
        assert response.get_json()["cancelReason"] == "duplicate"

    def test_reverse(self, client):
        deduction_id = create_deduction(client).get_json()["id"]
        client.post(f"/deductions/{deduction_id}/apply", json={"settlementId": 1})

        response = client.post(f"/deductions/{deduction_id}/reverse", json={"reason": "withdrawn"})

        assert response.status_code == 201
        assert response.get_json()["reversesId"] == deduction_id

    def test_get_and_list(self, client):
        deduction_id = create_deduction(client).get_json()["id"]
        create_deduction(client, orderId=2)

        assert client.get(f"/deductions/{deduction_id}").get_json()["id"] == deduction_id
        listed = client.get("/deductions?orderId=1").get_json()
        assert [d["id"] for d in listed] == [deduction_id]

    def test_unknown_deduction(self, client):
        response = client.get("/deductions/999")

        assert response.status_code == 404
        assert response.get_json()["status"] == "not_found"


class TestSettlementAndStatementRoutes:

    def test_compute_uses_applied_deductions(self, client):
        deduction_id = create_deduction(client).get_json()["id"]
        client.post(f"/deductions/{deduction_id}/apply", json={"settlementId": 1})

        response = client.post("/settlements/compute", json={"workRecord": WORK_RECORD, "rateConfig": RATE_CONFIG})
        body = response.get_json()

        assert response.status_code == 200
        assert body["netAmount"] == 192395
        assert body["appliedDeductionIds"] == [deduction_id]

    def test_empty_body(self, client):
        response = client.post("/settlements/compute", data="")
        assert response.status_code == 400

    def test_statement_lifecycle(self, client):
        request = {"helperId": "helper-1", "year": 2025, "month": 3, "rateConfig": RATE_CONFIG,
                   "workRecords": [WORK_RECORD]}
        built = client.post("/statements/build", json=request).get_json()
        assert built["status"] == "draft"
        assert built["payoutAmount"] == 212395

        sent = client.post(f"/statements/{built['id']}/send", json={"expectedVersion": built["version"]})
        assert sent.get_json()["status"] == "sent"

        viewed = client.post(f"/statements/{built['id']}/view")
        assert viewed.get_json()["status"] == "viewed"

        fetched = client.get(f"/statements/{built['id']}").get_json()
        assert fetched["view"]["header"]["revisionLabel"] == "original"
        assert fetched["view"]["summary"]["totalNetAmount"] == 212395

    def test_send_twice_conflicts(self, client):
        request = {"helperId": "helper-1", "year": 2025, "month": 3, "rateConfig": RATE_CONFIG,
                   "workRecords": [WORK_RECORD]}
        statement_id = client.post("/statements/build", json=request).get_json()["id"]

        client.post(f"/statements/{statement_id}/send")
        response = client.post(f"/statements/{statement_id}/send")

        assert response.status_code == 409

    def test_stale_rates_handler(self, client):
        with main.app.test_request_context():
            response, status = main.handle_stale_rates(StaleRateConfig([1, 2], None, []))

        assert status == 409
        assert response.get_json()["status"] == "stale_rate_config"
        assert response.get_json()["orderIds"] == [1, 2]

    def test_unknown_statement(self, client):
        assert client.get("/statements/404").status_code == 404

    def test_compute_from_closing_report(self, client):
        body = {
            "closingReport": {
                "helperId": "helper-1",
                "workDate": "2025-03-10",
                "deliveredCount": 120,
                "returnedCount": 10,
                "etcCount": 5,
                "extraCostsJson": '[{"code": "FUEL", "amount": 10000}]',
            },
            "order": {"id": 1, "pricePerUnit": 1500},
            "rateConfig": RATE_CONFIG,
        }
        response = client.post("/settlements/compute", json=body)

        assert response.status_code == 200
        assert response.get_json()["supplyAmount"] == 214000
        assert response.get_json()["orderId"] == 1


class TestSettlementLifecycleRoutes:

    def test_new_settlement_is_pending(self, client):
        body = client.get("/settlements/1/status").get_json()

        assert body["settlementId"] == 1
        assert body["status"] == "pending"
        assert body["closed"] is False

    def test_ready_confirm_pay(self, client):
        assert client.post("/settlements/1/ready", json={"updatedBy": "ops-1"}).get_json()["status"] == "ready"
        assert client.post("/settlements/1/confirm").get_json()["status"] == "confirmed"

        paid = client.post("/settlements/1/pay", json={"updatedBy": "finance-1"}).get_json()
        assert paid["status"] == "paid"
        assert paid["closed"] is True
        assert paid["paidAt"] is not None
        assert paid["updatedBy"] == "finance-1"

    def test_pay_before_confirm_conflicts(self, client):
        response = client.post("/settlements/1/pay")

        assert response.status_code == 409
        assert response.get_json()["status"] == "conflict"

    def test_apply_to_paid_settlement_conflicts(self, client):
        client.post("/settlements/1/confirm")
        client.post("/settlements/1/pay")
        deduction_id = create_deduction(client).get_json()["id"]

        response = client.post(f"/deductions/{deduction_id}/apply", json={"settlementId": 1})

        assert response.status_code == 409
        assert client.get(f"/deductions/{deduction_id}").get_json()["status"] == "pending"

    def test_hold_and_release(self, client):
        held = client.post("/settlements/S-7/hold", json={"reason": "bank account mismatch"}).get_json()
        assert held["settlementId"] == "S-7"
        assert held["status"] == "on_hold"
        assert held["notes"] == "bank account mismatch"

        assert client.post("/settlements/S-7/release").get_json()["status"] == "ready"

    def test_hold_requires_reason(self, client):
        assert client.post("/settlements/1/hold", json={}).status_code == 400

    def test_lock_blocks_recompute_changes(self, client):
        client.post("/settlements/compute", json={"workRecord": WORK_RECORD, "rateConfig": RATE_CONFIG})
        locked = client.post("/settlements/1/lock", json={"updatedBy": "admin-1"}).get_json()
        assert locked["locked"] is True
        assert locked["lockedBy"] == "admin-1"

        changed = dict(WORK_RECORD, deliveredCount=121)
        response = client.post("/settlements/compute", json={"workRecord": changed, "rateConfig": RATE_CONFIG})
        assert response.status_code == 409

        client.post("/settlements/1/unlock")
        response = client.post("/settlements/compute", json={"workRecord": changed, "rateConfig": RATE_CONFIG})
        assert response.status_code == 200

    def test_unknown_action(self, client):
        assert client.post("/settlements/1/explode").status_code == 404
