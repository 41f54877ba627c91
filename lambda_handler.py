"""
AWS Lambda handler for the Helper Settlement & Payout Engine.

This is the stateless production entry point: it computes settlements from
the data in the request and never holds ledger or statement state.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import os

from payout_engine import SettlementProcessor
from payout_engine.errors import SettlementEngineError

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Environment (dev, staging, prod)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# Initialize processor (reused across warm invocations)
processor = SettlementProcessor()

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}


def _response(status_code: int, body) -> dict:
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body, ensure_ascii=False)}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for:
    - GET /health
    - GET /api
    - POST /compute_settlement
    - OPTIONS (CORS preflight)
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/compute_settlement" and http_method == "POST":
        return handle_compute_settlement(event)
    elif path == "/api" and http_method == "GET":
        return handle_api_info()
    else:
        return _response(404, {"error": "Not found", "path": path})


def handle_health():
    """Health check endpoint."""
    return _response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return _response(
        200,
        {
            "status": "ok",
            "message": "Helper Settlement & Payout API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {"compute_settlement": "/compute_settlement [POST]", "health": "/health [GET]"},
        },
    )


def _parse_body(event):
    body = event.get("body", "")
    if not isinstance(body, str):
        return body
    if not body:
        return None
    # Handle base64 encoded body (API Gateway)
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    return json.loads(body)


def handle_compute_settlement(event):
    """Compute one order's settlement from workRecord, rateConfig and appliedDeductions."""
    try:
        input_data = _parse_body(event)
        if not input_data:
            return _response(400, {"error": "No input data provided", "status": "failed"})

        # Log request
        order_id = input_data.get("workRecord", {}).get("orderId", "Unknown")
        logger.info(f"Computing settlement: order {order_id}")

        result = processor.compute_from_dict(input_data)

        if result["negativePayout"]:
            logger.warning(f"Negative payout for order {order_id}: {result['netAmount']}")
        logger.info(f"Settlement computed successfully: order {order_id}")

        return _response(200, result)

    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return _response(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from engine (missing fields, invalid values, etc.)
        logger.error(f"Validation error: {str(e)}")
        field = getattr(e, "field", None)
        return _response(
            400,
            {"error": f"Validation error: {str(e)}", "status": "validation_failed", "field": field},
        )

    except SettlementEngineError as e:
        # Lifecycle errors (e.g. a pending deduction passed as applied)
        logger.error(f"Conflict: {str(e)}")
        return _response(409, {"error": str(e), "status": "conflict"})

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return _response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})
