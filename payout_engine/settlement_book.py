"""
Settlement Book

Tracks where each settlement stands in the payout process:

    pending -> ready -> confirmed -> paid
    ready/pending <-> on_hold

and keeps the last computed amounts for every settlement. Once a settlement
is paid (or locked by an admin) it is closed: a recomputation may only
reproduce the amounts already recorded, and no new deduction may land on it.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from .errors import ConcurrentModification, InvalidSettlementState
from .models import Settlement, SettlementState, SettlementStatus

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SettlementBook:
    """In-process settlement states and snapshots, written by compare-and-set."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self._lock = threading.Lock()
        self._states: dict = {}
        self._snapshots: dict = {}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, settlement_id) -> SettlementState:
        """Current state. A settlement nobody has touched is pending."""
        with self._lock:
            return self._states.get(settlement_id) or SettlementState(settlement_id=settlement_id)

    def snapshot(self, settlement_id) -> Settlement | None:
        with self._lock:
            return self._snapshots.get(settlement_id)

    def ensure_open(self, settlement_id, action: str) -> None:
        state = self.get(settlement_id)
        if state.is_closed:
            raise InvalidSettlementState(
                settlement_id,
                "locked" if state.locked else state.status.value,
                action,
                f"Cannot {action} settlement {settlement_id}: it is "
                f"{'locked' if state.locked else state.status.value}",
            )

    def record(self, settlement: Settlement) -> Settlement:
        """
        Remember freshly computed amounts.

        For a closed settlement the recorded amounts are returned when the
        recomputation matches them; any difference is rejected. A settlement
        closed before it was ever computed keeps its first computation.
        """
        key = settlement.work_record.settlement_key
        with self._lock:
            state = self._states.get(key)
            if state is None or not state.is_closed:
                self._snapshots[key] = settlement
                return settlement
            frozen = self._snapshots.setdefault(key, settlement)

        if frozen == settlement:
            return frozen
        logger.warning(f"Rejected recomputation of closed settlement {key}")
        raise InvalidSettlementState(
            key,
            "locked" if state.locked else state.status.value,
            "recompute",
            f"Settlement {key} is {'locked' if state.locked else state.status.value}; "
            f"its amounts can no longer change",
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def mark_ready(self, settlement_id, updated_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        if current.status not in (SettlementStatus.PENDING, SettlementStatus.READY):
            raise InvalidSettlementState(settlement_id, current.status.value, "mark ready")
        return self._write(current, updated_by, status=SettlementStatus.READY)

    def confirm(self, settlement_id, confirmed_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        if current.status in (SettlementStatus.CONFIRMED, SettlementStatus.PAID):
            raise InvalidSettlementState(
                settlement_id, current.status.value, "confirm",
                f"Settlement {settlement_id} is already {current.status.value}",
            )
        return self._write(
            current, confirmed_by, status=SettlementStatus.CONFIRMED, confirmed_at=self.clock()
        )

    def mark_paid(self, settlement_id, paid_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        if current.status is not SettlementStatus.CONFIRMED:
            raise InvalidSettlementState(
                settlement_id, current.status.value, "pay",
                f"Settlement {settlement_id} must be confirmed before it is paid",
            )
        return self._write(current, paid_by, status=SettlementStatus.PAID, paid_at=self.clock())

    def hold(self, settlement_id, reason: str, held_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        if current.status is SettlementStatus.PAID:
            raise InvalidSettlementState(settlement_id, current.status.value, "hold")
        return self._write(current, held_by, status=SettlementStatus.ON_HOLD, notes=reason)

    def release(self, settlement_id, released_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        if current.status is not SettlementStatus.ON_HOLD:
            raise InvalidSettlementState(settlement_id, current.status.value, "release")
        return self._write(current, released_by, status=SettlementStatus.READY)

    def lock(self, settlement_id, locked_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        return self._write(current, locked_by, locked=True, locked_by=locked_by)

    def unlock(self, settlement_id, unlocked_by: str | None = None) -> SettlementState:
        current = self.get(settlement_id)
        return self._write(current, unlocked_by, locked=False, locked_by=None)

    def _write(self, current: SettlementState, updated_by, **changes) -> SettlementState:
        updated = replace(
            current, updated_by=updated_by, updated_at=self.clock(), version=current.version + 1, **changes
        )
        key = current.settlement_id
        with self._lock:
            stored = self._states.get(key)
            stored_version = stored.version if stored is not None else 0
            if stored_version != current.version:
                raise ConcurrentModification("Settlement", key, current.version, stored_version)
            self._states[key] = updated

        logger.info(
            f"Settlement {key}: {current.status.value} -> {updated.status.value}"
            + (" (locked)" if updated.locked else "")
        )
        return updated
