"""
Closing Report Parsing

Builds a WorkRecord from a stored closing report and the order it belongs to.
"""

import json

from .errors import InvalidExtraCost
from .models import ExtraCostItem, WorkRecord

DEFAULT_ETC_PRICE_PER_UNIT = 1800


def parse_extra_costs(raw) -> tuple[ExtraCostItem, ...]:
    """Parse extraCostsJson, a JSON array of {code, name, amount, memo, vatExempt}."""
    if raw in (None, ""):
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidExtraCost("extraCostsJson", raw, f"extraCostsJson is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise InvalidExtraCost("extraCostsJson", raw, "extraCostsJson must be a JSON array")
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise InvalidExtraCost(f"extraCostsJson[{i}]", entry, f"extraCostsJson[{i}] must be an object")
    return tuple(ExtraCostItem.from_dict(entry) for entry in raw)


def parse_closing_report(closing_report: dict, order: dict) -> WorkRecord:
    """
    Map a closing report + order into a WorkRecord.

    Missing counts are 0 and a missing etc price falls back to the
    standard 1,800. The unit price always comes from the order.
    """
    order_id = order.get("id", closing_report.get("orderId"))
    helper_id = closing_report.get("helperId") or order.get("helperId")
    work_date = closing_report.get("workDate") or order.get("workDate")
    if order_id is None or not helper_id or not work_date:
        raise ValueError("closing report needs an order id, helperId and workDate")

    etc_price = closing_report.get("etcPricePerUnit")
    return WorkRecord(
        order_id=order_id,
        helper_id=helper_id,
        work_date=work_date,
        price_per_unit=order.get("pricePerUnit"),
        delivered_count=closing_report.get("deliveredCount") or 0,
        returned_count=closing_report.get("returnedCount") or 0,
        etc_count=closing_report.get("etcCount") or 0,
        etc_price_per_unit=etc_price if etc_price is not None else DEFAULT_ETC_PRICE_PER_UNIT,
        extra_costs=parse_extra_costs(closing_report.get("extraCostsJson")),
        pickup_count=closing_report.get("pickupCount") or 0,
        settlement_id=closing_report.get("settlementId"),
    )
