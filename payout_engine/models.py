"""
Domain Models for the Payout Engine

These dataclasses provide type-safe representations of all business entities.
Currency amounts are whole won (int); rates are Decimal percentages.
Everything the engine hands back is frozen: a new state means a new object.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from .errors import NEGATIVE_PAYOUT

# =============================================================================
# STATUS / CATEGORY VARIANTS
# =============================================================================


class DeductionStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not DeductionStatus.PENDING


class DeductionCategory(str, Enum):
    DAMAGE = "damage"
    DELAY = "delay"
    DISPUTE = "dispute"
    OTHER = "other"


class TargetType(str, Enum):
    HELPER = "helper"
    REQUESTER = "requester"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    CONFIRMED = "confirmed"
    PAID = "paid"
    ON_HOLD = "on_hold"


class StatementStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"

    @property
    def is_frozen(self) -> bool:
        """Sent and viewed statements never change their numbers again."""
        return self is not StatementStatus.DRAFT


def _rate(value) -> Decimal:
    return Decimal(str(value))


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass(frozen=True)
class RateConfig:
    """Rates in effect for an order or a statement period.

    commission_rate and insurance_rate are percentages (5 means 5%).
    The per-unit prices are optional fallbacks for work records that
    do not carry their own.
    """

    commission_rate: Decimal
    insurance_rate: Decimal
    price_per_unit: int | None = None
    etc_price_per_unit: int | None = None
    effective_from: str | None = None

    def same_rates(self, other: "RateConfig") -> bool:
        return (
            self.commission_rate == other.commission_rate
            and self.insurance_rate == other.insurance_rate
        )

    @classmethod
    def from_dict(cls, data: dict) -> "RateConfig":
        return cls(
            commission_rate=_rate(data["commissionRate"]),
            insurance_rate=_rate(data.get("insuranceRate", 0)),
            price_per_unit=data.get("pricePerUnit"),
            etc_price_per_unit=data.get("etcPricePerUnit"),
            effective_from=data.get("effectiveFrom"),
        )


@dataclass(frozen=True)
class ExtraCostItem:
    """An extra line declared on a closing (fuel surcharge, toll...)."""

    code: str
    amount: int
    name: str | None = None
    memo: str | None = None
    vat_exempt: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ExtraCostItem":
        return cls(
            code=data.get("code") or data.get("name") or "",
            amount=data.get("amount"),
            name=data.get("name"),
            memo=data.get("memo"),
            vat_exempt=bool(data.get("vatExempt", False)),
        )


@dataclass(frozen=True)
class WorkRecord:
    """One helper's performance for one order on one day."""

    order_id: int | str
    helper_id: str
    work_date: str  # YYYY-MM-DD
    price_per_unit: int | None
    delivered_count: int = 0
    returned_count: int = 0
    etc_count: int = 0
    etc_price_per_unit: int | None = None
    extra_costs: tuple[ExtraCostItem, ...] = ()
    pickup_count: int = 0  # informational, not billed
    settlement_id: int | str | None = None

    @property
    def settlement_key(self):
        """Identifier deductions are applied against. Defaults to the order id."""
        return self.settlement_id if self.settlement_id is not None else self.order_id

    @property
    def work_day(self) -> datetime:
        return datetime.strptime(self.work_date[:10], "%Y-%m-%d")

    def with_prices(self, rate_config: RateConfig) -> "WorkRecord":
        """Fill missing per-unit prices from the rate config."""
        return replace(
            self,
            price_per_unit=(
                self.price_per_unit if self.price_per_unit is not None else rate_config.price_per_unit
            ),
            etc_price_per_unit=(
                self.etc_price_per_unit
                if self.etc_price_per_unit is not None
                else rate_config.etc_price_per_unit
            ),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "WorkRecord":
        extras = tuple(ExtraCostItem.from_dict(c) for c in data.get("extraCosts") or [])
        return cls(
            order_id=data["orderId"],
            helper_id=data["helperId"],
            work_date=data["workDate"],
            price_per_unit=data.get("pricePerUnit"),
            delivered_count=data.get("deliveredCount", 0),
            returned_count=data.get("returnedCount", 0),
            etc_count=data.get("etcCount", 0),
            etc_price_per_unit=data.get("etcPricePerUnit"),
            extra_costs=extras,
            pickup_count=data.get("pickupCount", 0),
            settlement_id=data.get("settlementId"),
        )


# =============================================================================
# DEDUCTIONS
# =============================================================================


@dataclass(frozen=True)
class DeductionTarget:
    type: TargetType
    id: str

    @classmethod
    def helper(cls, helper_id: str) -> "DeductionTarget":
        return cls(type=TargetType.HELPER, id=helper_id)

    @classmethod
    def requester(cls, requester_id: str) -> "DeductionTarget":
        return cls(type=TargetType.REQUESTER, id=requester_id)

    @classmethod
    def from_dict(cls, data: dict) -> "DeductionTarget":
        return cls(type=TargetType(data["type"]), id=data["id"])


@dataclass(frozen=True)
class SettlementContext:
    """Where an applied deduction lands."""

    settlement_id: int | str
    applied_by: str | None = None


@dataclass(frozen=True)
class Deduction:
    """A money reduction against a future payout.

    Never deleted: a deduction only ever moves pending -> applied or
    pending -> cancelled, and each move produces a new version.
    A compensating deduction (reverses_id set) gives money back.
    """

    id: int
    target: DeductionTarget
    amount: int
    reason: str
    category: DeductionCategory = DeductionCategory.OTHER
    status: DeductionStatus = DeductionStatus.PENDING
    order_id: int | str | None = None
    incident_id: int | str | None = None
    applied_to_settlement_id: int | str | None = None
    applied_at: datetime | None = None
    applied_by: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancel_reason: str | None = None
    created_by: str | None = None
    memo: str | None = None
    reverses_id: int | None = None
    created_at: datetime | None = None
    version: int = 1

    @property
    def is_compensating(self) -> bool:
        return self.reverses_id is not None

    @property
    def signed_amount(self) -> int:
        """Contribution to a settlement's other deductions."""
        return -self.amount if self.is_compensating else self.amount

    def counts_against(self, order_id, settlement_key) -> bool:
        """True if this deduction belongs on the given order's settlement.

        An order-linked deduction lands only on its own order. A helper-level
        one (no order) lands only on the settlement it was applied to.
        """
        if self.order_id is not None:
            return self.order_id == order_id
        return self.applied_to_settlement_id is not None and self.applied_to_settlement_id == settlement_key

    def targets_helper(self, helper_id: str) -> bool:
        return self.target.type is TargetType.HELPER and self.target.id == helper_id

    @classmethod
    def from_dict(cls, data: dict) -> "Deduction":
        if "target" in data:
            target = DeductionTarget.from_dict(data["target"])
        else:
            target = DeductionTarget(
                type=TargetType(data.get("targetType", "helper")), id=data["targetId"]
            )
        return cls(
            id=data["id"],
            target=target,
            amount=data["amount"],
            reason=data.get("reason", ""),
            category=DeductionCategory(data.get("category") or "other"),
            status=DeductionStatus(data.get("status", "pending")),
            order_id=data.get("orderId"),
            incident_id=data.get("incidentId"),
            applied_to_settlement_id=data.get("appliedToSettlementId"),
            created_by=data.get("createdBy"),
            memo=data.get("memo"),
            reverses_id=data.get("reversesId"),
            version=data.get("version", 1),
        )


# =============================================================================
# RESULT MODELS
# =============================================================================


@dataclass(frozen=True)
class LineItems:
    """Results of line item calculation for one work record."""

    delivered_count: int
    returned_count: int
    etc_count: int
    total_billable_count: int
    delivery_return_amount: int
    etc_amount: int
    taxable_extra_total: int
    exempt_extra_total: int
    supply_amount: int
    vat_amount: int
    total_amount: int
    deposit_amount: int
    balance_amount: int

    @property
    def extra_costs_total(self) -> int:
        return self.taxable_extra_total + self.exempt_extra_total


@dataclass(frozen=True)
class PayoutBreakdown:
    """Results of payout calculation."""

    commission_rate: Decimal
    insurance_rate: Decimal
    commission_amount: int
    insurance_deduction: int
    other_deductions_amount: int
    net_amount: int
    applied_deduction_ids: tuple = ()
    negative_payout: bool = False


@dataclass(frozen=True)
class Settlement:
    """The fully computed money result for one work record.

    Derived, never edited: recompute from the same inputs to get the same value.
    """

    work_record: WorkRecord
    rate_config: RateConfig
    line_items: LineItems
    payout: PayoutBreakdown

    @property
    def order_id(self):
        return self.work_record.order_id

    @property
    def helper_id(self) -> str:
        return self.work_record.helper_id

    @property
    def work_date(self) -> str:
        return self.work_record.work_date

    @property
    def supply_amount(self) -> int:
        return self.line_items.supply_amount

    @property
    def vat_amount(self) -> int:
        return self.line_items.vat_amount

    @property
    def total_amount(self) -> int:
        return self.line_items.total_amount

    @property
    def commission_amount(self) -> int:
        return self.payout.commission_amount

    @property
    def insurance_deduction(self) -> int:
        return self.payout.insurance_deduction

    @property
    def other_deductions_amount(self) -> int:
        return self.payout.other_deductions_amount

    @property
    def net_amount(self) -> int:
        return self.payout.net_amount

    @property
    def negative_payout(self) -> bool:
        return self.payout.negative_payout

    @property
    def applied_deduction_ids(self) -> tuple:
        return self.payout.applied_deduction_ids

    @property
    def warnings(self) -> list[str]:
        return [NEGATIVE_PAYOUT] if self.negative_payout else []


@dataclass(frozen=True)
class SettlementState:
    """Payout lifecycle of one settlement: pending -> ready -> confirmed -> paid.

    A paid or locked settlement is closed: its amounts can no longer change.
    """

    settlement_id: int | str
    status: SettlementStatus = SettlementStatus.PENDING
    locked: bool = False
    locked_by: str | None = None
    notes: str | None = None
    updated_by: str | None = None
    confirmed_at: datetime | None = None
    paid_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def is_closed(self) -> bool:
        return self.locked or self.status is SettlementStatus.PAID


@dataclass(frozen=True)
class MonthlyStatement:
    """A helper's sendable summary for one calendar month.

    Rows are append-only once sent: a change after sending produces a
    new row with is_revised=True pointing at previous_statement_id.
    """

    id: int
    helper_id: str
    year: int
    month: int
    settlements: tuple[Settlement, ...]
    commission_rate: Decimal
    insurance_rate: Decimal
    total_delivery_count: int
    total_return_count: int
    total_pickup_count: int
    total_etc_count: int
    total_supply_amount: int
    total_vat_amount: int
    total_amount: int
    commission_amount: int
    insurance_deduction: int
    other_deductions: int
    payout_amount: int
    source_digest: str
    status: StatementStatus = StatementStatus.DRAFT
    is_revised: bool = False
    previous_statement_id: int | None = None
    revision_number: int = 1
    has_negative_payout: bool = False
    negative_payout_order_ids: tuple = ()
    version: int = 1
    created_at: datetime | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def is_frozen(self) -> bool:
        return self.status.is_frozen

    @property
    def warnings(self) -> list[str]:
        return [NEGATIVE_PAYOUT] if self.has_negative_payout else []


@dataclass
class StatementRequest:
    """Everything needed to build one month's statement."""

    helper_id: str
    year: int
    month: int
    rate_config: RateConfig
    work_records: list[WorkRecord] = field(default_factory=list)
    confirm_historical_rates: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "StatementRequest":
        return cls(
            helper_id=data["helperId"],
            year=int(data["year"]),
            month=int(data["month"]),
            rate_config=RateConfig.from_dict(data["rateConfig"]),
            work_records=[WorkRecord.from_dict(w) for w in data.get("workRecords", [])],
            confirm_historical_rates=data.get("confirmHistoricalRates", False),
        )
