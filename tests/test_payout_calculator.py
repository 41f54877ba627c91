"""
Unit Tests for Payout Calculator

Tests verify commission, insurance withholding, deductions and net payout.
"""

from decimal import Decimal

import pytest

from payout_engine.calculators.line_items import LineItemCalculator
from payout_engine.calculators.payout import PayoutCalculator
from payout_engine.errors import InvalidDeductionState
from payout_engine.models import (
    Deduction,
    DeductionStatus,
    DeductionTarget,
    RateConfig,
    WorkRecord,
)


RATES = RateConfig(commission_rate=Decimal("5"), insurance_rate=Decimal("0.7"))


def make_record(**overrides) -> WorkRecord:
    fields = {
        "order_id": 1,
        "helper_id": "helper-1",
        "work_date": "2025-03-10",
        "price_per_unit": 1500,
        "delivered_count": 120,
        "returned_count": 10,
        "etc_count": 5,
        "etc_price_per_unit": 1800,
    }
    fields.update(overrides)
    return WorkRecord(**fields)


def applied(deduction_id, amount, order_id=1, **overrides) -> Deduction:
    fields = {
        "id": deduction_id,
        "target": DeductionTarget.helper("helper-1"),
        "amount": amount,
        "reason": "cargo damage",
        "status": DeductionStatus.APPLIED,
        "order_id": order_id,
    }
    fields.update(overrides)
    return Deduction(**fields)


class TestPayoutCalculation:
    """Test the net payout formula."""

    @pytest.fixture
    def calculator(self):
        return PayoutCalculator()

    @pytest.fixture
    def record(self):
        return make_record()

    @pytest.fixture
    def line_items(self, record):
        return LineItemCalculator().calculate(record)

    def test_commission_and_insurance(self, calculator, record, line_items):
        """5% of 224,400 and 0.7% × 50% of 224,400"""
        result = calculator.calculate(record, line_items, RATES)

        assert result.commission_amount == 11220
        assert result.insurance_deduction == 785
        assert result.other_deductions_amount == 0
        assert result.net_amount == 224400 - 11220 - 785
        assert result.negative_payout is False

    def test_applied_deduction_reduces_payout(self, calculator, record, line_items):
        result = calculator.calculate(record, line_items, RATES, [applied(7, 20000)])

        assert result.other_deductions_amount == 20000
        assert result.net_amount == 192395
        assert result.applied_deduction_ids == (7,)

    def test_multiple_deductions_sum(self, calculator, record, line_items):
        result = calculator.calculate(record, line_items, RATES, [applied(9, 1000), applied(3, 2500)])

        assert result.other_deductions_amount == 3500
        assert result.applied_deduction_ids == (3, 9)

    def test_zero_rates(self, calculator, record, line_items):
        rates = RateConfig(commission_rate=Decimal("0"), insurance_rate=Decimal("0"))
        result = calculator.calculate(record, line_items, rates)

        assert result.commission_amount == 0
        assert result.insurance_deduction == 0
        assert result.net_amount == line_items.total_amount

    def test_commission_rounds_half_up(self, calculator):
        """Total 1,001 × 15% = 150.15 → 150; total 1,010 × 15% = 151.5 → 152"""
        rates = RateConfig(commission_rate=Decimal("15"), insurance_rate=Decimal("0"))
        record = make_record(price_per_unit=910, delivered_count=1, returned_count=0, etc_count=0)
        items = LineItemCalculator().calculate(record)
        assert items.total_amount == 1001
        assert calculator.calculate(record, items, rates).commission_amount == 150

        record = make_record(price_per_unit=918, delivered_count=1, returned_count=0, etc_count=0)
        items = LineItemCalculator().calculate(record)
        assert items.total_amount == 1010
        assert calculator.calculate(record, items, rates).commission_amount == 152

    def test_negative_payout_is_flagged_not_clamped(self, calculator, record, line_items):
        result = calculator.calculate(record, line_items, RATES, [applied(1, 300000)])

        assert result.net_amount == 224400 - 11220 - 785 - 300000
        assert result.net_amount < 0
        assert result.negative_payout is True

    def test_compensating_deduction_gives_money_back(self, calculator, record, line_items):
        deductions = [applied(1, 20000), applied(2, 20000, reverses_id=1)]
        result = calculator.calculate(record, line_items, RATES, deductions)

        assert result.other_deductions_amount == 0
        assert result.net_amount == 224400 - 11220 - 785

    def test_deduction_matched_by_settlement_id(self, calculator, record, line_items):
        """A helper-level deduction with no order counts once applied to this settlement."""
        deduction = applied(4, 5000, order_id=None, applied_to_settlement_id=1)
        result = calculator.calculate(record, line_items, RATES, [deduction])

        assert result.other_deductions_amount == 5000

    def test_idempotent(self, calculator, record, line_items):
        deductions = [applied(7, 20000)]
        first = calculator.calculate(record, line_items, RATES, deductions)
        second = calculator.calculate(record, line_items, RATES, deductions)

        assert first == second


class TestDeductionSelection:
    """Only applied deductions for this order may reduce the payout."""

    @pytest.fixture
    def calculator(self):
        return PayoutCalculator()

    @pytest.fixture
    def record(self):
        return make_record()

    @pytest.fixture
    def line_items(self, record):
        return LineItemCalculator().calculate(record)

    def test_pending_deduction_rejected(self, calculator, record, line_items):
        pending = applied(1, 1000, status=DeductionStatus.PENDING)
        with pytest.raises(InvalidDeductionState):
            calculator.calculate(record, line_items, RATES, [pending])

    def test_cancelled_deduction_rejected(self, calculator, record, line_items):
        cancelled = applied(1, 1000, status=DeductionStatus.CANCELLED)
        with pytest.raises(InvalidDeductionState):
            calculator.calculate(record, line_items, RATES, [cancelled])

    def test_same_deduction_twice_rejected(self, calculator, record, line_items):
        deduction = applied(1, 1000)
        with pytest.raises(InvalidDeductionState):
            calculator.calculate(record, line_items, RATES, [deduction, deduction])

    def test_other_order_rejected(self, calculator, record, line_items):
        with pytest.raises(ValueError, match="does not belong"):
            calculator.calculate(record, line_items, RATES, [applied(1, 1000, order_id=99)])

    def test_requester_deduction_rejected(self, calculator, record, line_items):
        deduction = applied(1, 1000, target=DeductionTarget.requester("req-1"))
        with pytest.raises(ValueError, match="requester"):
            calculator.calculate(record, line_items, RATES, [deduction])

    def test_other_helper_rejected(self, calculator, record, line_items):
        deduction = applied(1, 1000, target=DeductionTarget.helper("helper-2"))
        with pytest.raises(ValueError, match="targets helper helper-2, not helper-1"):
            calculator.calculate(record, line_items, RATES, [deduction])

    def test_other_order_applied_to_this_settlement_rejected(self, calculator, record, line_items):
        """An order-linked deduction belongs to its own order wherever it was applied."""
        deduction = applied(1, 1000, order_id=10, applied_to_settlement_id=1)
        with pytest.raises(ValueError, match="does not belong"):
            calculator.calculate(record, line_items, RATES, [deduction])
