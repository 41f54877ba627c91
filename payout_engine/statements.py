"""
Monthly Statement Builder

Aggregates a helper's settlements for one calendar month into a statement
and manages its lifecycle:

    draft -> sent -> viewed

A draft may be regenerated in place. Once sent, a statement's numbers are
frozen: regenerating with different underlying settlements appends a new
row (is_revised=True) that points at the previous one.

Totals are sums of the per-settlement amounts, never recomputed from the
rates, so monthly and per-order numbers always reconcile.
"""

import hashlib
import itertools
import json
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable

from .errors import ConcurrentModification, InvalidStatementState, StaleRateConfig, StatementNotFound
from .settlement_book import utc_now
from .models import MonthlyStatement, RateConfig, Settlement, StatementStatus

logger = logging.getLogger(__name__)


class StatementStore:
    """In-process statement rows plus a per-month pointer to the latest row.

    Both the rows and the pointer are only written through compare-and-set.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[int, MonthlyStatement] = {}
        self._latest: dict[tuple, int] = {}
        self._ids = itertools.count(1)

    @staticmethod
    def key(helper_id: str, year: int, month: int) -> tuple:
        return (helper_id, year, month)

    def next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def get(self, statement_id: int) -> MonthlyStatement | None:
        with self._lock:
            return self._rows.get(statement_id)

    def latest_id(self, key: tuple) -> int | None:
        with self._lock:
            return self._latest.get(key)

    def append(self, statement: MonthlyStatement, expected_latest_id: int | None) -> bool:
        """Add a new row and move the latest pointer, if nobody moved it first."""
        key = self.key(statement.helper_id, statement.year, statement.month)
        with self._lock:
            if self._latest.get(key) != expected_latest_id:
                return False
            self._rows[statement.id] = statement
            self._latest[key] = statement.id
            return True

    def compare_and_set(self, expected_version: int, new: MonthlyStatement) -> bool:
        with self._lock:
            current = self._rows.get(new.id)
            if current is None or current.version != expected_version:
                return False
            self._rows[new.id] = new
            return True

    def history(self, key: tuple) -> list[MonthlyStatement]:
        with self._lock:
            return sorted(
                (s for s in self._rows.values() if self.key(s.helper_id, s.year, s.month) == key),
                key=lambda s: s.id,
            )


def source_digest(settlements, rate_config: RateConfig) -> str:
    """Fingerprint of everything that feeds a statement's numbers."""
    payload = {
        "commissionRate": str(rate_config.commission_rate),
        "insuranceRate": str(rate_config.insurance_rate),
        "settlements": [
            {
                "orderId": str(s.order_id),
                "workDate": s.work_date,
                "counts": [
                    s.line_items.delivered_count,
                    s.line_items.returned_count,
                    s.work_record.pickup_count,
                    s.line_items.etc_count,
                ],
                "amounts": [
                    s.supply_amount,
                    s.vat_amount,
                    s.total_amount,
                    s.commission_amount,
                    s.insurance_deduction,
                    s.other_deductions_amount,
                    s.net_amount,
                ],
                "rates": [str(s.payout.commission_rate), str(s.payout.insurance_rate)],
                "deductions": [str(d) for d in s.applied_deduction_ids],
            }
            for s in settlements
        ],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class MonthlyStatementBuilder:
    """Builds, revises and transitions monthly statements."""

    MAX_ATTEMPTS = 5

    def __init__(self, store: StatementStore | None = None, clock: Callable[[], datetime] = utc_now):
        self.store = store or StatementStore()
        self.clock = clock

    def build(
        self,
        helper_id: str,
        year: int,
        month: int,
        settlements: list[Settlement],
        rate_config: RateConfig,
        confirm_historical_rates: bool = False,
    ) -> MonthlyStatement:
        """
        Build (or rebuild) the statement for helper/year/month.

        - No statement yet          -> new draft
        - Latest is a draft         -> overwritten in place
        - Latest is sent or viewed  -> new revised row, unless nothing changed

        If the month was already sent when this build started, the result is
        always a new row. A draft another rebuild appended in the meantime is
        kept and superseded, never overwritten.
        """
        self._validate_scope(helper_id, year, month, settlements)
        self._check_rates(settlements, rate_config, confirm_historical_rates)

        ordered = sorted(settlements, key=lambda s: (s.work_date, str(s.order_id)))
        digest = source_digest(ordered, rate_config)
        key = self.store.key(helper_id, year, month)
        started_frozen = None

        for _ in range(self.MAX_ATTEMPTS):
            latest_id = self.store.latest_id(key)
            latest = self.store.get(latest_id) if latest_id is not None else None
            if started_frozen is None:
                started_frozen = latest is not None and latest.status.is_frozen

            if latest is not None and latest.source_digest == digest:
                return latest

            if latest is None:
                statement = self._aggregate(
                    self.store.next_id(), helper_id, year, month, ordered, rate_config, digest
                )
                if self.store.append(statement, expected_latest_id=None):
                    logger.info(f"Built statement {statement.id} for {helper_id} {statement.period}")
                    return statement

            elif latest.status is StatementStatus.DRAFT and not started_frozen:
                statement = replace(
                    self._aggregate(latest.id, helper_id, year, month, ordered, rate_config, digest),
                    is_revised=latest.is_revised,
                    previous_statement_id=latest.previous_statement_id,
                    revision_number=latest.revision_number,
                    created_at=latest.created_at,
                    version=latest.version + 1,
                )
                if self.store.compare_and_set(latest.version, statement):
                    logger.info(f"Regenerated draft statement {statement.id} for {helper_id} {statement.period}")
                    return statement

            else:
                statement = replace(
                    self._aggregate(
                        self.store.next_id(), helper_id, year, month, ordered, rate_config, digest
                    ),
                    is_revised=True,
                    previous_statement_id=latest.id,
                    revision_number=latest.revision_number + 1,
                )
                if self.store.append(statement, expected_latest_id=latest.id):
                    logger.info(
                        f"Revised statement {latest.id} -> {statement.id} for {helper_id} {statement.period} "
                        f"(payout {latest.payout_amount} -> {statement.payout_amount})"
                    )
                    return statement

            logger.warning(f"Concurrent rebuild of {helper_id} {year:04d}-{month:02d}, retrying")

        raise ConcurrentModification(
            "MonthlyStatement", f"{helper_id}/{year:04d}-{month:02d}", latest_id, self.store.latest_id(key)
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def send(self, statement_id: int, expected_version: int | None = None) -> MonthlyStatement:
        """draft -> sent. Freezes the statement's numbers."""
        current = self.get(statement_id)
        if expected_version is not None and expected_version != current.version:
            raise ConcurrentModification("MonthlyStatement", statement_id, expected_version, current.version)
        if current.status is not StatementStatus.DRAFT:
            raise InvalidStatementState(statement_id, current.status.value, "send")

        key = self.store.key(current.helper_id, current.year, current.month)
        if self.store.latest_id(key) != statement_id:
            raise InvalidStatementState(
                statement_id, current.status.value, "send",
                f"Statement {statement_id} has been superseded and cannot be sent",
            )

        updated = replace(
            current, status=StatementStatus.SENT, sent_at=self.clock(), version=current.version + 1
        )
        if not self.store.compare_and_set(current.version, updated):
            winner = self.get(statement_id)
            logger.warning(f"Concurrent send of statement {statement_id} ({winner.status.value})")
            if winner.status.is_frozen:
                raise InvalidStatementState(statement_id, winner.status.value, "send")
            raise ConcurrentModification("MonthlyStatement", statement_id, current.version, winner.version)

        logger.info(f"Sent statement {statement_id} to helper {current.helper_id}")
        return updated

    def mark_viewed(self, statement_id: int) -> MonthlyStatement:
        """sent -> viewed on first helper access. Later accesses change nothing."""
        current = self.get(statement_id)
        if current.status is StatementStatus.VIEWED:
            return current
        if current.status is not StatementStatus.SENT:
            raise InvalidStatementState(statement_id, current.status.value, "view")

        updated = replace(
            current, status=StatementStatus.VIEWED, viewed_at=self.clock(), version=current.version + 1
        )
        if not self.store.compare_and_set(current.version, updated):
            winner = self.get(statement_id)
            if winner.status is StatementStatus.VIEWED:
                return winner
            raise ConcurrentModification("MonthlyStatement", statement_id, current.version, winner.version)

        logger.info(f"Statement {statement_id} viewed by helper {current.helper_id}")
        return updated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, statement_id: int) -> MonthlyStatement:
        statement = self.store.get(statement_id)
        if statement is None:
            raise StatementNotFound(statement_id)
        return statement

    def latest(self, helper_id: str, year: int, month: int) -> MonthlyStatement | None:
        latest_id = self.store.latest_id(self.store.key(helper_id, year, month))
        return self.store.get(latest_id) if latest_id is not None else None

    def history(self, helper_id: str, year: int, month: int) -> list[MonthlyStatement]:
        return self.store.history(self.store.key(helper_id, year, month))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _validate_scope(self, helper_id: str, year: int, month: int, settlements) -> None:
        if not (1 <= month <= 12):
            raise ValueError(f"month must be between 1 and 12, got: {month}")
        if not settlements:
            raise ValueError(f"No settlements for helper {helper_id} in {year:04d}-{month:02d}")

        seen = set()
        for s in settlements:
            if s.helper_id != helper_id:
                raise ValueError(f"Settlement for order {s.order_id} belongs to helper {s.helper_id}, not {helper_id}")
            day = s.work_record.work_day
            if (day.year, day.month) != (year, month):
                raise ValueError(
                    f"Settlement for order {s.order_id} is dated {s.work_date}, outside {year:04d}-{month:02d}"
                )
            key = s.work_record.settlement_key
            if key in seen:
                raise ValueError(f"Settlement {key} appears more than once")
            seen.add(key)

    def _check_rates(self, settlements, rate_config: RateConfig, confirmed: bool) -> None:
        stale = [s for s in settlements if not s.rate_config.same_rates(rate_config)]
        if not stale:
            return
        order_ids = [s.order_id for s in stale]
        if not confirmed:
            raise StaleRateConfig(order_ids, rate_config, [s.rate_config for s in stale])
        logger.info(f"Building with confirmed historical rates for orders {order_ids}")

    def _aggregate(
        self,
        statement_id: int,
        helper_id: str,
        year: int,
        month: int,
        settlements: list[Settlement],
        rate_config: RateConfig,
        digest: str,
    ) -> MonthlyStatement:
        negative_orders = tuple(s.order_id for s in settlements if s.negative_payout)
        payout_amount = sum(s.net_amount for s in settlements)

        return MonthlyStatement(
            id=statement_id,
            helper_id=helper_id,
            year=year,
            month=month,
            settlements=tuple(settlements),
            commission_rate=rate_config.commission_rate,
            insurance_rate=rate_config.insurance_rate,
            total_delivery_count=sum(s.line_items.delivered_count for s in settlements),
            total_return_count=sum(s.line_items.returned_count for s in settlements),
            total_pickup_count=sum(s.work_record.pickup_count for s in settlements),
            total_etc_count=sum(s.line_items.etc_count for s in settlements),
            total_supply_amount=sum(s.supply_amount for s in settlements),
            total_vat_amount=sum(s.vat_amount for s in settlements),
            total_amount=sum(s.total_amount for s in settlements),
            commission_amount=sum(s.commission_amount for s in settlements),
            insurance_deduction=sum(s.insurance_deduction for s in settlements),
            other_deductions=sum(s.other_deductions_amount for s in settlements),
            payout_amount=payout_amount,
            source_digest=digest,
            has_negative_payout=bool(negative_orders) or payout_amount < 0,
            negative_payout_order_ids=negative_orders,
            created_at=self.clock(),
        )
