"""
Input Validation for the Payout Engine

Validates all input data before any amount is computed.
Raises a ValidationError subclass naming the offending field, so no
partial settlement is ever produced.
"""

from decimal import Decimal

from .errors import InvalidAmount, InvalidCount, InvalidExtraCost, InvalidPricing, InvalidRateConfig
from .models import RateConfig, WorkRecord


def _is_whole(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class InputValidator:
    """Validates work records and rate configs according to business rules."""

    def validate(self, record: WorkRecord, rate_config: RateConfig) -> None:
        """
        Run all validations. Raises ValidationError if any check fails.
        """
        self.validate_rate_config(rate_config)
        self.validate_work_record(record)

    def validate_work_record(self, record: WorkRecord) -> None:
        self._validate_counts(record)
        self._validate_pricing(record)
        self._validate_extra_costs(record)

    def validate_rate_config(self, rate_config: RateConfig) -> None:
        for name, rate in (
            ("commissionRate", rate_config.commission_rate),
            ("insuranceRate", rate_config.insurance_rate),
        ):
            if not isinstance(rate, Decimal) or not rate.is_finite():
                raise InvalidRateConfig(name, rate)
            if not (0 <= rate <= 100):
                raise InvalidRateConfig(name, rate, f"{name} must be between 0 and 100, got: {rate}")

        for name, price in (
            ("pricePerUnit", rate_config.price_per_unit),
            ("etcPricePerUnit", rate_config.etc_price_per_unit),
        ):
            if price is not None and (not _is_whole(price) or price < 0):
                raise InvalidRateConfig(name, price, f"{name} must be a non-negative whole amount, got: {price!r}")

    def validate_deduction_amount(self, amount) -> None:
        if not _is_whole(amount) or amount <= 0:
            raise InvalidAmount("amount", amount, f"amount must be a positive whole amount, got: {amount!r}")

    def _validate_counts(self, record: WorkRecord) -> None:
        for name, count in (
            ("deliveredCount", record.delivered_count),
            ("returnedCount", record.returned_count),
            ("etcCount", record.etc_count),
            ("pickupCount", record.pickup_count),
        ):
            if not _is_whole(count) or count < 0:
                raise InvalidCount(name, count, f"{name} must be a non-negative integer, got: {count!r}")

    def _validate_pricing(self, record: WorkRecord) -> None:
        for name, price in (
            ("pricePerUnit", record.price_per_unit),
            ("etcPricePerUnit", record.etc_price_per_unit),
        ):
            if price is None:
                raise InvalidPricing(name, price, f"{name} is required for order {record.order_id}")
            if not _is_whole(price) or price < 0:
                raise InvalidPricing(name, price, f"{name} must be a non-negative whole amount, got: {price!r}")

    def _validate_extra_costs(self, record: WorkRecord) -> None:
        for i, item in enumerate(record.extra_costs):
            field = f"extraCosts[{i}].amount"
            if not _is_whole(item.amount):
                raise InvalidExtraCost(field, item.amount, f"{field} must be a whole amount, got: {item.amount!r}")
            if item.amount < 0:
                raise InvalidExtraCost(field, item.amount, f"{field} cannot be negative, got: {item.amount}")
