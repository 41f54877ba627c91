"""Tests for AWS Lambda handler."""

import base64
import json

from lambda_handler import lambda_handler


def compute_payload(**work_overrides) -> dict:
    work_record = {
        "orderId": 1,
        "helperId": "helper-1",
        "workDate": "2025-03-10",
        "pricePerUnit": 1500,
        "deliveredCount": 120,
        "returnedCount": 10,
        "etcCount": 5,
        "etcPricePerUnit": 1800,
    }
    work_record.update(work_overrides)
    return {"workRecord": work_record, "rateConfig": {"commissionRate": 5, "insuranceRate": 0.7}}


def post(body, **extra) -> dict:
    event = {"httpMethod": "POST", "path": "/compute_settlement", "body": body}
    event.update(extra)
    return event


class TestLambdaHandler:
    """Test the Lambda handler routes and responses."""

    def test_health_check(self):
        response = lambda_handler({"httpMethod": "GET", "path": "/health"}, None)

        assert response["statusCode"] == 200
        assert json.loads(response["body"])["status"] == "healthy"

    def test_api_info(self):
        response = lambda_handler({"httpMethod": "GET", "path": "/api"}, None)

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert "compute_settlement" in body["endpoints"]

    def test_cors_preflight(self):
        response = lambda_handler({"httpMethod": "OPTIONS", "path": "/compute_settlement"}, None)

        assert response["statusCode"] == 200
        assert "Access-Control-Allow-Origin" in response["headers"]

    def test_not_found(self):
        response = lambda_handler({"httpMethod": "GET", "path": "/unknown"}, None)
        assert response["statusCode"] == 404

    def test_http_api_event_format(self):
        """HTTP API (v2) events carry method and path elsewhere."""
        event = {"rawPath": "/health", "requestContext": {"http": {"method": "GET"}}}
        assert lambda_handler(event, None)["statusCode"] == 200


class TestComputeSettlementRoute:

    def test_success(self):
        response = lambda_handler(post(json.dumps(compute_payload())), None)

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert body["totalAmount"] == 224400
        assert body["netAmount"] == 212395

    def test_base64_body(self):
        encoded = base64.b64encode(json.dumps(compute_payload()).encode("utf-8")).decode("ascii")
        response = lambda_handler(post(encoded, isBase64Encoded=True), None)

        assert response["statusCode"] == 200

    def test_empty_body(self):
        response = lambda_handler(post(""), None)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["status"] == "failed"

    def test_invalid_json(self):
        response = lambda_handler(post("{not json"), None)

        assert response["statusCode"] == 400
        assert "Invalid JSON" in json.loads(response["body"])["error"]

    def test_validation_error_names_field(self):
        response = lambda_handler(post(json.dumps(compute_payload(deliveredCount=-3))), None)

        body = json.loads(response["body"])
        assert response["statusCode"] == 400
        assert body["status"] == "validation_failed"
        assert body["field"] == "deliveredCount"

    def test_missing_key(self):
        response = lambda_handler(post(json.dumps({"rateConfig": {"commissionRate": 5}})), None)
        assert response["statusCode"] == 400

    def test_pending_deduction_is_conflict(self):
        payload = compute_payload()
        payload["appliedDeductions"] = [
            {"id": 1, "targetId": "helper-1", "amount": 100, "reason": "x", "orderId": 1, "status": "pending"}
        ]
        response = lambda_handler(post(json.dumps(payload)), None)

        assert response["statusCode"] == 409
        assert json.loads(response["body"])["status"] == "conflict"

    def test_negative_payout_returned(self):
        payload = compute_payload()
        payload["appliedDeductions"] = [
            {"id": 1, "targetId": "helper-1", "amount": 500000, "reason": "x", "orderId": 1, "status": "applied"}
        ]
        response = lambda_handler(post(json.dumps(payload)), None)

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert body["negativePayout"] is True
        assert body["warnings"] == ["NegativePayout"]
