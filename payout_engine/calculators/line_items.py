"""
Line Item Calculator

Turns raw closing counts and extra cost entries into supply amount,
VAT and total for one work record.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from ..models import LineItems, WorkRecord
from ..validators import InputValidator


def round_won(value: Decimal) -> int:
    """Round to a whole currency unit, half up."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class LineItemCalculator:
    """Calculates the billable amounts of a single work record."""

    VAT_RATE = Decimal("0.10")
    DEPOSIT_RATE = Decimal("0.20")

    def __init__(self, validator: InputValidator | None = None):
        self.validator = validator or InputValidator()

    def calculate(self, record: WorkRecord) -> LineItems:
        """
        Calculate line items.

        supply  = unit price × (delivered + returned)
                + etc price × etc count
                + taxable extra costs
        VAT     = round(supply × 10%)
        total   = supply + VAT + VAT-exempt extra costs
        """
        self.validator.validate_work_record(record)

        billable = record.delivered_count + record.returned_count
        delivery_return_amount = record.price_per_unit * billable
        etc_amount = record.etc_price_per_unit * record.etc_count

        taxable_extra = sum(c.amount for c in record.extra_costs if not c.vat_exempt)
        exempt_extra = sum(c.amount for c in record.extra_costs if c.vat_exempt)

        supply_amount = delivery_return_amount + etc_amount + taxable_extra
        vat_amount = round_won(Decimal(supply_amount) * self.VAT_RATE)
        total_amount = supply_amount + vat_amount + exempt_extra

        # Requester side: deposit is floored, the balance absorbs the remainder
        deposit_amount = int(
            (Decimal(total_amount) * self.DEPOSIT_RATE).quantize(Decimal("1"), rounding=ROUND_DOWN)
        )

        return LineItems(
            delivered_count=record.delivered_count,
            returned_count=record.returned_count,
            etc_count=record.etc_count,
            total_billable_count=billable,
            delivery_return_amount=delivery_return_amount,
            etc_amount=etc_amount,
            taxable_extra_total=taxable_extra,
            exempt_extra_total=exempt_extra,
            supply_amount=supply_amount,
            vat_amount=vat_amount,
            total_amount=total_amount,
            deposit_amount=deposit_amount,
            balance_amount=total_amount - deposit_amount,
        )
