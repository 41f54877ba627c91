"""
Settlement Processor - Main Orchestrator

Coordinates settlement computation through discrete, testable steps and
exposes the engine's entry points to collaborators.
"""

import json
from typing import Any, Dict

from .calculators import LineItemCalculator, PayoutCalculator
from .errors import SettlementEngineError
from .ledger import DeductionLedger
from .models import (
    Deduction,
    MonthlyStatement,
    RateConfig,
    Settlement,
    StatementRequest,
    WorkRecord,
)
from .output import OutputBuilder
from .statements import MonthlyStatementBuilder
from .validators import InputValidator


class SettlementProcessor:
    """
    Main orchestrator for settlement processing.

    Implements a clear pipeline pattern:
    1. Validate Rate Config
    2. Resolve Per-Unit Prices
    3. Calculate Line Items (supply, VAT, total)
    4. Calculate Payout (commission, insurance, deductions, net)
    5. Build Settlement

    Pure: the same work record, rate config and applied deductions always
    produce an equal Settlement.
    """

    def __init__(self):
        self.validator = InputValidator()
        self.line_item_calculator = LineItemCalculator(self.validator)
        self.payout_calculator = PayoutCalculator()
        self.output_builder = OutputBuilder()

    def compute(
        self,
        record: WorkRecord,
        rate_config: RateConfig,
        applied_deductions: list[Deduction] = (),
    ) -> Settlement:
        # Step 1: Validate rates
        self.validator.validate_rate_config(rate_config)

        # Step 2: Fill prices the record does not carry
        record = record.with_prices(rate_config)

        # Step 3: Line items
        line_items = self.line_item_calculator.calculate(record)

        # Step 4: Payout
        payout = self.payout_calculator.calculate(record, line_items, rate_config, applied_deductions)

        # Step 5: Settlement
        return Settlement(
            work_record=record,
            rate_config=rate_config,
            line_items=line_items,
            payout=payout,
        )

    def compute_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Compute a settlement from raw dictionary input.

        Convenience method for API usage. Expects workRecord, rateConfig and
        optionally appliedDeductions.
        """
        record = WorkRecord.from_dict(data["workRecord"])
        rate_config = RateConfig.from_dict(data["rateConfig"])
        deductions = [Deduction.from_dict(d) for d in data.get("appliedDeductions", [])]
        settlement = self.compute(record, rate_config, deductions)
        return self.output_builder.settlement(settlement)

    def compute_for_ledger(
        self, record: WorkRecord, rate_config: RateConfig, ledger: DeductionLedger
    ) -> Settlement:
        """
        Compute with whatever the ledger currently has applied for the order.

        The result is recorded in the ledger's settlement book, which refuses
        to let a paid or locked settlement change.
        """
        applied = ledger.applied_for_order(record.order_id, record.helper_id, record.settlement_id)
        return ledger.settlements.record(self.compute(record, rate_config, applied))

    def build_statement(
        self,
        request: StatementRequest,
        builder: MonthlyStatementBuilder,
        ledger: DeductionLedger,
    ) -> MonthlyStatement:
        """Compute every work record of the month, then build the statement."""
        settlements = [
            self.compute_for_ledger(record, request.rate_config, ledger)
            for record in request.work_records
        ]
        return builder.build(
            request.helper_id,
            request.year,
            request.month,
            settlements,
            request.rate_config,
            confirm_historical_rates=request.confirm_historical_rates,
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_processor = SettlementProcessor()


def compute_settlement(
    work_record: WorkRecord,
    rate_config: RateConfig,
    applied_deductions: list[Deduction] = (),
) -> Settlement:
    """computeSettlement(workRecord, rateConfig, appliedDeductions)."""
    return _processor.compute(work_record, rate_config, applied_deductions)


def build_monthly_statement(
    helper_id: str,
    year: int,
    month: int,
    settlements: list[Settlement],
    rate_config: RateConfig,
    builder: MonthlyStatementBuilder,
    confirm_historical_rates: bool = False,
) -> MonthlyStatement:
    """buildMonthlyStatement(helperId, year, month, settlements, rateConfig)."""
    return builder.build(
        helper_id, year, month, settlements, rate_config,
        confirm_historical_rates=confirm_historical_rates,
    )


def process_settlement_from_dict(input_data: Dict[str, Any]) -> Dict[str, Any]:
    """Compute a settlement from a Python dict and return a Python dict."""
    return _processor.compute_from_dict(input_data)


def process_settlement_from_json(json_input: str) -> str:
    """
    Compute a settlement from a JSON string and return a JSON string.
    Failures are reported in the body rather than raised.
    """
    try:
        input_data = json.loads(json_input)
        result = _processor.compute_from_dict(input_data)
        return json.dumps(result, indent=2, ensure_ascii=False)

    except (ValueError, KeyError, TypeError) as e:
        error_response = {"error": str(e), "status": "validation_failed"}
        return json.dumps(error_response, indent=2, ensure_ascii=False)

    except SettlementEngineError as e:
        error_response = {"error": str(e), "status": "conflict"}
        return json.dumps(error_response, indent=2, ensure_ascii=False)
