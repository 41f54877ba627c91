"""
Payout Calculator

Calculates the net payout to the helper after commission, insurance
withholding and applied deductions.
"""

import logging
from decimal import Decimal

from ..errors import InvalidDeductionState
from ..models import Deduction, DeductionStatus, LineItems, PayoutBreakdown, RateConfig, TargetType, WorkRecord
from .line_items import round_won

logger = logging.getLogger(__name__)


class PayoutCalculator:
    """Calculates net payout to the helper. Pure: same inputs, same result."""

    # Statutory insurance is split 50/50; only the helper's half is withheld
    HELPER_INSURANCE_SHARE = Decimal("0.5")

    def calculate(
        self,
        record: WorkRecord,
        line_items: LineItems,
        rate_config: RateConfig,
        applied_deductions=(),
    ) -> PayoutBreakdown:
        """
        Calculate net payout after all deductions.

        Net Payout = Total Amount
                   - Commission          (total × commission rate)
                   - Insurance           (total × insurance rate × 50%)
                   - Applied Deductions  (for this order)

        A negative net payout is reported as-is and flagged.
        """
        total = Decimal(line_items.total_amount)

        commission_amount = round_won(total * rate_config.commission_rate / Decimal("100"))
        insurance_deduction = round_won(
            total * rate_config.insurance_rate / Decimal("100") * self.HELPER_INSURANCE_SHARE
        )

        deductions = self._select_deductions(record, applied_deductions)
        other_deductions = sum(d.signed_amount for d in deductions)

        net = line_items.total_amount - commission_amount - insurance_deduction - other_deductions
        negative = net < 0
        if negative:
            logger.warning(
                f"Negative payout for order {record.order_id} (helper {record.helper_id}): {net}"
            )

        return PayoutBreakdown(
            commission_rate=rate_config.commission_rate,
            insurance_rate=rate_config.insurance_rate,
            commission_amount=commission_amount,
            insurance_deduction=insurance_deduction,
            other_deductions_amount=other_deductions,
            net_amount=net,
            applied_deduction_ids=tuple(sorted(d.id for d in deductions)),
            negative_payout=negative,
        )

    def _select_deductions(self, record: WorkRecord, deductions) -> list[Deduction]:
        """
        Check every deduction belongs on this settlement.

        Anything that does not (wrong status, wrong order, another helper,
        requester-side or listed twice) is an error, never silently skipped.
        """
        seen = set()
        selected = []
        for deduction in deductions:
            if deduction.status is not DeductionStatus.APPLIED:
                raise InvalidDeductionState(
                    deduction.id,
                    deduction.status.value,
                    "count",
                    f"Deduction {deduction.id} is {deduction.status.value}; only applied deductions reduce a payout",
                )
            if deduction.id in seen:
                raise InvalidDeductionState(
                    deduction.id,
                    deduction.status.value,
                    "count",
                    f"Deduction {deduction.id} was passed twice for order {record.order_id}",
                )
            if deduction.target.type is not TargetType.HELPER:
                raise ValueError(
                    f"Deduction {deduction.id} targets a requester and cannot reduce a helper payout"
                )
            if deduction.target.id != record.helper_id:
                raise ValueError(
                    f"Deduction {deduction.id} targets helper {deduction.target.id}, not {record.helper_id}"
                )
            if not deduction.counts_against(record.order_id, record.settlement_key):
                raise ValueError(
                    f"Deduction {deduction.id} does not belong to order {record.order_id}"
                )
            seen.add(deduction.id)
            selected.append(deduction)
        return selected
