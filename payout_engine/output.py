"""
Output Builder

Constructs API responses from settlements, deductions and statements.
Field names and units (integer won, percentages) are the stable schema
consumed by detail screens, CSV export and email rendering.
"""

from datetime import datetime
from decimal import Decimal

from .models import Deduction, MonthlyStatement, Settlement, SettlementState


def to_rate(value: Decimal) -> int | float:
    """Percentages go out as whole numbers where possible (5, not 5.0)."""
    return int(value) if value == value.to_integral_value() else float(value)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _fmt(value: int) -> str:
    """Format a whole-won amount for descriptions."""
    return f"₩{value:,}"


class OutputBuilder:
    """Builds dictionaries for API responses."""

    def settlement(self, settlement: Settlement) -> dict:
        record = settlement.work_record
        items = settlement.line_items
        payout = settlement.payout
        return {
            "orderId": record.order_id,
            "helperId": record.helper_id,
            "workDate": record.work_date,
            "settlementId": record.settlement_key,
            "deliveredCount": items.delivered_count,
            "returnedCount": items.returned_count,
            "pickupCount": record.pickup_count,
            "etcCount": items.etc_count,
            "totalBillableCount": items.total_billable_count,
            "deliveryReturnAmount": items.delivery_return_amount,
            "etcAmount": items.etc_amount,
            "extraCostsTotal": items.extra_costs_total,
            "taxableExtraTotal": items.taxable_extra_total,
            "exemptExtraTotal": items.exempt_extra_total,
            "supplyAmount": items.supply_amount,
            "vatAmount": items.vat_amount,
            "totalAmount": items.total_amount,
            "depositAmount": items.deposit_amount,
            "balanceAmount": items.balance_amount,
            "commissionRate": to_rate(payout.commission_rate),
            "insuranceRate": to_rate(payout.insurance_rate),
            "commissionAmount": payout.commission_amount,
            "insuranceDeduction": payout.insurance_deduction,
            "otherDeductionsAmount": payout.other_deductions_amount,
            "netAmount": payout.net_amount,
            "appliedDeductionIds": list(payout.applied_deduction_ids),
            "negativePayout": payout.negative_payout,
            "warnings": settlement.warnings,
            "calculations": self._calculations(settlement),
        }

    def _calculations(self, settlement: Settlement) -> dict:
        """Each computed line with the arithmetic that produced it."""
        record = settlement.work_record
        items = settlement.line_items
        payout = settlement.payout

        return {
            "delivery_return_amount": {
                "value": items.delivery_return_amount,
                "description": (
                    f"{_fmt(record.price_per_unit)} × ({items.delivered_count} delivered + "
                    f"{items.returned_count} returned) = {_fmt(items.delivery_return_amount)}"
                ),
            },
            "etc_amount": {
                "value": items.etc_amount,
                "description": f"{_fmt(record.etc_price_per_unit)} × {items.etc_count} = {_fmt(items.etc_amount)}",
            },
            "supply_amount": {
                "value": items.supply_amount,
                "description": (
                    f"delivery/return ({_fmt(items.delivery_return_amount)}) + etc ({_fmt(items.etc_amount)}) "
                    f"+ taxable extras ({_fmt(items.taxable_extra_total)}) = {_fmt(items.supply_amount)}"
                ),
            },
            "vat_amount": {
                "value": items.vat_amount,
                "description": f"10% × {_fmt(items.supply_amount)}, rounded half up = {_fmt(items.vat_amount)}",
            },
            "total_amount": {
                "value": items.total_amount,
                "description": (
                    f"supply ({_fmt(items.supply_amount)}) + VAT ({_fmt(items.vat_amount)}) "
                    f"+ VAT-exempt extras ({_fmt(items.exempt_extra_total)}) = {_fmt(items.total_amount)}"
                ),
            },
            "commission_amount": {
                "value": payout.commission_amount,
                "description": (
                    f"{to_rate(payout.commission_rate)}% × {_fmt(items.total_amount)} = {_fmt(payout.commission_amount)}"
                ),
            },
            "insurance_deduction": {
                "value": payout.insurance_deduction,
                "description": (
                    f"{to_rate(payout.insurance_rate)}% × {_fmt(items.total_amount)} × 50% (helper share) "
                    f"= {_fmt(payout.insurance_deduction)}"
                ),
            },
            "other_deductions_amount": {
                "value": payout.other_deductions_amount,
                "description": (
                    f"Applied deductions {list(payout.applied_deduction_ids)} = {_fmt(payout.other_deductions_amount)}"
                    if payout.applied_deduction_ids else "No deductions applied to this order"
                ),
            },
            "net_amount": {
                "value": payout.net_amount,
                "description": (
                    f"total ({_fmt(items.total_amount)}) - commission ({_fmt(payout.commission_amount)}) "
                    f"- insurance ({_fmt(payout.insurance_deduction)}) "
                    f"- deductions ({_fmt(payout.other_deductions_amount)}) = {_fmt(payout.net_amount)}"
                    + (" (negative, needs manual review)" if payout.negative_payout else "")
                ),
            },
        }

    def deduction(self, deduction: Deduction) -> dict:
        return {
            "id": deduction.id,
            "targetType": deduction.target.type.value,
            "targetId": deduction.target.id,
            "orderId": deduction.order_id,
            "incidentId": deduction.incident_id,
            "amount": deduction.amount,
            "reason": deduction.reason,
            "category": deduction.category.value,
            "status": deduction.status.value,
            "appliedToSettlementId": deduction.applied_to_settlement_id,
            "appliedAt": _ts(deduction.applied_at),
            "appliedBy": deduction.applied_by,
            "cancelledAt": _ts(deduction.cancelled_at),
            "cancelledBy": deduction.cancelled_by,
            "cancelReason": deduction.cancel_reason,
            "createdBy": deduction.created_by,
            "memo": deduction.memo,
            "reversesId": deduction.reverses_id,
            "createdAt": _ts(deduction.created_at),
            "version": deduction.version,
        }

    def settlement_state(self, state: SettlementState) -> dict:
        return {
            "settlementId": state.settlement_id,
            "status": state.status.value,
            "locked": state.locked,
            "lockedBy": state.locked_by,
            "closed": state.is_closed,
            "notes": state.notes,
            "updatedBy": state.updated_by,
            "confirmedAt": _ts(state.confirmed_at),
            "paidAt": _ts(state.paid_at),
            "updatedAt": _ts(state.updated_at),
            "version": state.version,
        }

    def statement(self, statement: MonthlyStatement) -> dict:
        return {
            "id": statement.id,
            "helperId": statement.helper_id,
            "year": statement.year,
            "month": statement.month,
            "status": statement.status.value,
            "isRevised": statement.is_revised,
            "previousStatementId": statement.previous_statement_id,
            "revisionNumber": statement.revision_number,
            "version": statement.version,
            "commissionRate": to_rate(statement.commission_rate),
            "insuranceRate": to_rate(statement.insurance_rate),
            "totalDeliveryCount": statement.total_delivery_count,
            "totalReturnCount": statement.total_return_count,
            "totalPickupCount": statement.total_pickup_count,
            "totalEtcCount": statement.total_etc_count,
            "totalSupplyAmount": statement.total_supply_amount,
            "totalVatAmount": statement.total_vat_amount,
            "totalAmount": statement.total_amount,
            "commissionAmount": statement.commission_amount,
            "insuranceDeduction": statement.insurance_deduction,
            "otherDeductions": statement.other_deductions,
            "payoutAmount": statement.payout_amount,
            "hasNegativePayout": statement.has_negative_payout,
            "negativePayoutOrderIds": list(statement.negative_payout_order_ids),
            "warnings": statement.warnings,
            "sourceDigest": statement.source_digest,
            "createdAt": _ts(statement.created_at),
            "sentAt": _ts(statement.sent_at),
            "viewedAt": _ts(statement.viewed_at),
            "settlements": [self.settlement(s) for s in statement.settlements],
        }

    def statement_view(self, statement: MonthlyStatement) -> dict:
        """Input contract for the statement renderer (detail screen, email)."""
        return {
            "header": {
                "helperId": statement.helper_id,
                "year": statement.year,
                "month": statement.month,
                "revisionLabel": "revised" if statement.is_revised else "original",
                "revisionNumber": statement.revision_number,
                "status": statement.status.value,
            },
            "rows": [
                {
                    "workDate": s.work_date,
                    "orderId": s.order_id,
                    "deliveryCount": s.line_items.delivered_count,
                    "returnCount": s.line_items.returned_count,
                    "pickupCount": s.work_record.pickup_count,
                    "otherCount": s.line_items.etc_count,
                    "supplyAmount": s.supply_amount,
                    "vatAmount": s.vat_amount,
                    "totalAmount": s.total_amount,
                    "commissionAmount": s.commission_amount,
                    "netAmount": s.net_amount,
                    "negativePayout": s.negative_payout,
                }
                for s in statement.settlements
            ],
            "summary": {
                "totalDeliveryCount": statement.total_delivery_count,
                "totalReturnCount": statement.total_return_count,
                "totalPickupCount": statement.total_pickup_count,
                "totalOtherCount": statement.total_etc_count,
                "totalSupplyAmount": statement.total_supply_amount,
                "totalVatAmount": statement.total_vat_amount,
                "grandTotalAmount": statement.total_amount,
                "totalCommission": statement.commission_amount,
                "commissionRate": to_rate(statement.commission_rate),
                "totalInsuranceDeduction": statement.insurance_deduction,
                "insuranceRate": to_rate(statement.insurance_rate),
                "totalOtherDeductions": statement.other_deductions,
                "totalNetAmount": statement.payout_amount,
            },
            "warnings": statement.warnings,
        }
