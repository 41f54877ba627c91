from flask import Flask, request, jsonify
from flask_cors import CORS
from payout_engine import DeductionLedger, MonthlyStatementBuilder, SettlementProcessor, parse_closing_report
from payout_engine.errors import (
    ConcurrentModification,
    DeductionNotFound,
    InvalidDeductionState,
    InvalidSettlementState,
    InvalidStatementState,
    StaleRateConfig,
    StatementNotFound,
    ValidationError,
)
from payout_engine.models import DeductionCategory, DeductionTarget, RateConfig, SettlementContext, StatementRequest, WorkRecord
from payout_engine.output import OutputBuilder
import os
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (admin panel and helper app call the API directly)
CORS(app)

# Engine components (process-local ledger and statement store)
processor = SettlementProcessor()
ledger = DeductionLedger()
statement_builder = MonthlyStatementBuilder()
output = OutputBuilder()


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if not data:
        raise ValueError("No input data provided")
    return data


def _settlement_id(raw: str):
    # Settlements default to their order id, which is numeric
    return int(raw) if raw.isdigit() else raw


@app.errorhandler(DeductionNotFound)
@app.errorhandler(StatementNotFound)
def handle_not_found(e):
    logger.error(f"Not found: {str(e)}")
    return jsonify({"error": str(e), "status": "not_found"}), 404


@app.errorhandler(ValidationError)
@app.errorhandler(ValueError)
@app.errorhandler(KeyError)
@app.errorhandler(TypeError)
def handle_validation_error(e):
    # Validation errors from engine (missing fields, invalid values, etc.)
    logger.error(f"Validation error: {str(e)}")
    return jsonify({"error": str(e), "status": "validation_failed"}), 400


@app.errorhandler(StaleRateConfig)
def handle_stale_rates(e):
    logger.error(f"Stale rate config: {str(e)}")
    return jsonify({
        "error": str(e),
        "status": "stale_rate_config",
        "orderIds": e.order_ids
    }), 409


@app.errorhandler(InvalidDeductionState)
@app.errorhandler(InvalidSettlementState)
@app.errorhandler(InvalidStatementState)
@app.errorhandler(ConcurrentModification)
def handle_conflict(e):
    logger.error(f"Conflict: {str(e)}")
    return jsonify({"error": str(e), "status": "conflict"}), 409


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Helper Settlement & Payout API",
        "version": "1.0",
        "endpoints": {
            "compute_settlement": "/settlements/compute [POST]",
            "settlement_status": "/settlements/<id>/status [GET]",
            "settlement_actions": "/settlements/<id>/ready|confirm|pay|hold|release|lock|unlock [POST]",
            "deductions": "/deductions [GET, POST]",
            "deduction_actions": "/deductions/<id>/apply|cancel|reverse [POST]",
            "build_statement": "/statements/build [POST]",
            "statement_actions": "/statements/<id>/send|view [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


# =============================================================================
# SETTLEMENTS
# =============================================================================


@app.route("/settlements/compute", methods=["POST"])
def compute_settlement():
    """
    Compute one order's settlement using the deductions applied in the ledger.

    Accepts either a workRecord or a stored closingReport with its order.
    """
    data = _body()
    if "closingReport" in data:
        record = parse_closing_report(data["closingReport"], data["order"])
    else:
        record = WorkRecord.from_dict(data["workRecord"])
    rate_config = RateConfig.from_dict(data["rateConfig"])

    logger.info(f"Computing settlement: order {record.order_id}")
    settlement = processor.compute_for_ledger(record, rate_config, ledger)

    return jsonify(output.settlement(settlement)), 200


@app.route("/settlements/<settlement_id>/status", methods=["GET"])
def settlement_status(settlement_id):
    state = ledger.settlements.get(_settlement_id(settlement_id))
    return jsonify(output.settlement_state(state)), 200


@app.route("/settlements/<settlement_id>/<action>", methods=["POST"])
def settlement_action(settlement_id, action):
    """
    Payout lifecycle: ready, confirm, pay, hold, release, lock, unlock
    """
    data = request.get_json(force=True, silent=True) or {}
    settlement_id = _settlement_id(settlement_id)
    actor = data.get("updatedBy")
    book = ledger.settlements

    if action == "ready":
        state = book.mark_ready(settlement_id, actor)
    elif action == "confirm":
        state = book.confirm(settlement_id, actor)
    elif action == "pay":
        state = book.mark_paid(settlement_id, actor)
    elif action == "hold":
        if not data.get("reason"):
            raise ValueError("reason is required to hold a settlement")
        state = book.hold(settlement_id, data["reason"], actor)
    elif action == "release":
        state = book.release(settlement_id, actor)
    elif action == "lock":
        state = book.lock(settlement_id, actor)
    elif action == "unlock":
        state = book.unlock(settlement_id, actor)
    else:
        return jsonify({"error": f"Unknown settlement action: {action}", "status": "not_found"}), 404

    return jsonify(output.settlement_state(state)), 200


# =============================================================================
# DEDUCTIONS
# =============================================================================


@app.route("/deductions", methods=["POST"])
def create_deduction():
    data = _body()
    target = DeductionTarget.from_dict(data["target"])
    if data.get("incidentId") is not None:
        deduction = ledger.create_from_incident(
            incident_id=data["incidentId"],
            order_id=data.get("orderId"),
            target=target,
            amount=data.get("amount"),
            reason=data.get("reason"),
            created_by=data.get("createdBy"),
            memo=data.get("memo"),
        )
    else:
        deduction = ledger.create(
            target=target,
            amount=data.get("amount"),
            reason=data.get("reason"),
            category=DeductionCategory(data.get("category") or "other"),
            memo=data.get("memo"),
            created_by=data.get("createdBy"),
            order_id=data.get("orderId"),
        )
    return jsonify(output.deduction(deduction)), 201


@app.route("/deductions", methods=["GET"])
def list_deductions():
    order_id = request.args.get("orderId")
    deductions = ledger.find(
        target_id=request.args.get("targetId"),
        order_id=int(order_id) if order_id and order_id.isdigit() else order_id,
        status=request.args.get("status"),
    )
    return jsonify([output.deduction(d) for d in deductions]), 200


@app.route("/deductions/<int:deduction_id>", methods=["GET"])
def get_deduction(deduction_id):
    return jsonify(output.deduction(ledger.get(deduction_id))), 200


@app.route("/deductions/<int:deduction_id>/apply", methods=["POST"])
def apply_deduction(deduction_id):
    data = _body()
    context = SettlementContext(settlement_id=data["settlementId"], applied_by=data.get("appliedBy"))
    return jsonify(output.deduction(ledger.apply(deduction_id, context))), 200


@app.route("/deductions/<int:deduction_id>/cancel", methods=["POST"])
def cancel_deduction(deduction_id):
    data = _body()
    deduction = ledger.cancel(deduction_id, data["reason"], cancelled_by=data.get("cancelledBy"))
    return jsonify(output.deduction(deduction)), 200


@app.route("/deductions/<int:deduction_id>/reverse", methods=["POST"])
def reverse_deduction(deduction_id):
    data = _body()
    deduction = ledger.reverse(deduction_id, data["reason"], created_by=data.get("createdBy"))
    return jsonify(output.deduction(deduction)), 201


# =============================================================================
# MONTHLY STATEMENTS
# =============================================================================


@app.route("/statements/build", methods=["POST"])
def build_statement():
    statement_request = StatementRequest.from_dict(_body())
    logger.info(
        f"Building statement: {statement_request.helper_id} "
        f"{statement_request.year:04d}-{statement_request.month:02d}"
    )
    statement = processor.build_statement(statement_request, statement_builder, ledger)
    return jsonify(output.statement(statement)), 200


@app.route("/statements/<int:statement_id>", methods=["GET"])
def get_statement(statement_id):
    statement = statement_builder.get(statement_id)
    result = output.statement(statement)
    result["view"] = output.statement_view(statement)
    return jsonify(result), 200


@app.route("/statements/<int:statement_id>/send", methods=["POST"])
def send_statement(statement_id):
    data = request.get_json(force=True, silent=True) or {}
    statement = statement_builder.send(statement_id, expected_version=data.get("expectedVersion"))
    return jsonify(output.statement(statement)), 200


@app.route("/statements/<int:statement_id>/view", methods=["POST"])
def view_statement(statement_id):
    statement = statement_builder.mark_viewed(statement_id)
    return jsonify(output.statement(statement)), 200


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
