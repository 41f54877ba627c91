"""
Deduction Ledger

Owns the lifecycle of ad-hoc deductions (manual or incident-derived):

    pending -> applied
    pending -> cancelled

Terminal states never re-open. An applied deduction is undone only by a
compensating deduction (see reverse), so the record of what was actually
paid out stays intact.

Every write is a compare-and-set on the version that was read, so two
concurrent admin actions on the same deduction cannot both succeed.
"""

import itertools
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable

from .errors import ConcurrentModification, DeductionNotFound, InvalidDeductionState
from .models import (
    Deduction,
    DeductionCategory,
    DeductionStatus,
    DeductionTarget,
    SettlementContext,
)
from .settlement_book import SettlementBook, utc_now
from .validators import InputValidator

logger = logging.getLogger(__name__)


class DeductionStore:
    """In-process deduction storage with versioned compare-and-set writes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[int, Deduction] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def insert(self, deduction: Deduction) -> Deduction:
        with self._lock:
            if deduction.id in self._rows:
                raise ValueError(f"Deduction {deduction.id} already exists")
            self._rows[deduction.id] = deduction
            return deduction

    def get(self, deduction_id: int) -> Deduction | None:
        with self._lock:
            return self._rows.get(deduction_id)

    def compare_and_set(self, expected_version: int, new: Deduction) -> bool:
        """Write new only if the stored row still has expected_version."""
        with self._lock:
            current = self._rows.get(new.id)
            if current is None or current.version != expected_version:
                return False
            self._rows[new.id] = new
            return True

    def all(self) -> list[Deduction]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda d: d.id)


class DeductionLedger:
    """Creates deductions and moves them through their lifecycle."""

    def __init__(
        self,
        store: DeductionStore | None = None,
        clock: Callable[[], datetime] = utc_now,
        validator: InputValidator | None = None,
        settlements: SettlementBook | None = None,
    ):
        self.store = store or DeductionStore()
        self.clock = clock
        self.validator = validator or InputValidator()
        self.settlements = settlements or SettlementBook(clock)
        # One reversal per applied deduction; guarded separately from row CAS
        self._reversal_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create(
        self,
        target: DeductionTarget,
        amount: int,
        reason: str,
        category: DeductionCategory = DeductionCategory.OTHER,
        memo: str | None = None,
        created_by: str | None = None,
        order_id=None,
        incident_id=None,
    ) -> Deduction:
        """Create a pending deduction. Raises InvalidAmount if amount <= 0."""
        self.validator.validate_deduction_amount(amount)
        if not reason:
            raise ValueError("reason is required")

        deduction = Deduction(
            id=self.store.next_id(),
            target=target,
            amount=amount,
            reason=reason,
            category=DeductionCategory(category),
            order_id=order_id,
            incident_id=incident_id,
            created_by=created_by,
            memo=memo,
            created_at=self.clock(),
        )
        self.store.insert(deduction)
        logger.info(
            f"Created deduction {deduction.id}: {amount} for {target.type.value} {target.id} "
            f"({deduction.category.value})"
        )
        return deduction

    def create_from_incident(
        self,
        incident_id,
        order_id,
        target: DeductionTarget,
        amount: int,
        reason: str,
        created_by: str | None = None,
        memo: str | None = None,
    ) -> Deduction:
        """Cargo accident / dispute resolution: always a damage deduction."""
        return self.create(
            target=target,
            amount=amount,
            reason=reason,
            category=DeductionCategory.DAMAGE,
            memo=memo,
            created_by=created_by,
            order_id=order_id,
            incident_id=incident_id,
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def apply(self, deduction_id: int, context: SettlementContext) -> Deduction:
        """pending -> applied. The only way a deduction reaches a payout."""
        current = self._require_pending(deduction_id, "apply")
        self.settlements.ensure_open(context.settlement_id, "apply a deduction to")
        if current.order_id is not None and current.order_id != context.settlement_id:
            self.settlements.ensure_open(current.order_id, "apply a deduction to")
        updated = replace(
            current,
            status=DeductionStatus.APPLIED,
            applied_to_settlement_id=context.settlement_id,
            applied_at=self.clock(),
            applied_by=context.applied_by,
            version=current.version + 1,
        )
        self._write(current, updated, "apply")
        logger.info(f"Applied deduction {deduction_id} to settlement {context.settlement_id}")
        return updated

    def cancel(self, deduction_id: int, reason: str, cancelled_by: str | None = None) -> Deduction:
        """pending -> cancelled. Applied deductions must be reversed instead."""
        current = self._require_pending(deduction_id, "cancel")
        updated = replace(
            current,
            status=DeductionStatus.CANCELLED,
            cancelled_at=self.clock(),
            cancelled_by=cancelled_by,
            cancel_reason=reason,
            version=current.version + 1,
        )
        self._write(current, updated, "cancel")
        logger.info(f"Cancelled deduction {deduction_id}: {reason}")
        return updated

    def reverse(self, deduction_id: int, reason: str, created_by: str | None = None) -> Deduction:
        """
        Create the compensating deduction for an applied one.

        The original is left untouched; the new pending entry gives the
        same amount back once it is applied.
        """
        original = self.get(deduction_id)
        if original.status is not DeductionStatus.APPLIED:
            raise InvalidDeductionState(
                deduction_id,
                original.status.value,
                "reverse",
                f"Only applied deductions can be reversed; deduction {deduction_id} is {original.status.value}",
            )
        if original.is_compensating:
            raise InvalidDeductionState(
                deduction_id, original.status.value, "reverse",
                f"Deduction {deduction_id} is itself a reversal",
            )

        with self._reversal_lock:
            if self._reversal_of(deduction_id) is not None:
                raise InvalidDeductionState(
                    deduction_id, original.status.value, "reverse",
                    f"Deduction {deduction_id} has already been reversed",
                )
            compensating = Deduction(
                id=self.store.next_id(),
                target=original.target,
                amount=original.amount,
                reason=reason,
                category=original.category,
                order_id=original.order_id,
                incident_id=original.incident_id,
                created_by=created_by,
                memo=f"Reversal of deduction {deduction_id}",
                reverses_id=deduction_id,
                created_at=self.clock(),
            )
            self.store.insert(compensating)

        logger.info(f"Created reversal {compensating.id} for deduction {deduction_id}")
        return compensating

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, deduction_id: int) -> Deduction:
        deduction = self.store.get(deduction_id)
        if deduction is None:
            raise DeductionNotFound(deduction_id)
        return deduction

    def find(self, target_id: str | None = None, order_id=None, status: DeductionStatus | None = None) -> list[Deduction]:
        result = self.store.all()
        if target_id is not None:
            result = [d for d in result if d.target.id == target_id]
        if order_id is not None:
            result = [d for d in result if d.order_id == order_id]
        if status is not None:
            status = DeductionStatus(status)
            result = [d for d in result if d.status is status]
        return result

    def applied_for_order(self, order_id, helper_id: str, settlement_id=None) -> list[Deduction]:
        """
        Applied deductions that reduce one helper's payout on one order.

        Requester-side deductions and deductions against other helpers on the
        same order are left out.
        """
        settlement_key = settlement_id if settlement_id is not None else order_id
        return [
            d for d in self.store.all()
            if d.status is DeductionStatus.APPLIED
            and d.targets_helper(helper_id)
            and d.counts_against(order_id, settlement_key)
        ]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_pending(self, deduction_id: int, action: str) -> Deduction:
        current = self.get(deduction_id)
        if current.status is not DeductionStatus.PENDING:
            raise InvalidDeductionState(deduction_id, current.status.value, action)
        return current

    def _write(self, current: Deduction, updated: Deduction, action: str) -> None:
        if self.store.compare_and_set(current.version, updated):
            return
        # Lost the race: whoever won moved it out of pending
        winner = self.get(current.id)
        logger.warning(
            f"Concurrent {action} on deduction {current.id}: "
            f"version {current.version} is now {winner.version} ({winner.status.value})"
        )
        if winner.status is not DeductionStatus.PENDING:
            raise InvalidDeductionState(current.id, winner.status.value, action)
        raise ConcurrentModification("Deduction", current.id, current.version, winner.version)

    def _reversal_of(self, deduction_id: int) -> Deduction | None:
        for d in self.store.all():
            if d.reverses_id == deduction_id and d.status is not DeductionStatus.CANCELLED:
                return d
        return None
