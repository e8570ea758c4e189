"""Budget Guard

Per-run front end to the tenant budget ledger. Every llm_call step goes
through ``reserve`` before the provider is contacted:

    reserve(step, estimate)  -> Granted | Denied
    commit(reservation, actual)   on Success (true-up, capped)
    release(reservation)          on Failure

A denial is not an error: the runner records the step as skipped for budget.
An optional per-run ceiling caps what a single run may spend regardless of
the tenant's remaining allowance. A true-up never takes spend past either
limit; the excess is recorded on the ledger entry as ``uncharged``.

A guard with a ledger but no tenant denies every reservation: a run whose
tenant could not be resolved must not spend unmetered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .. import settings
from ..errors import PersistenceError
from ..ports import AMOUNT_EPSILON, BudgetLedger, CostLedgerEntry, capped_charge, with_charge
from .results import _now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    tenant_id: Optional[str]
    run_id: str
    step_name: str
    amount: float
    reserved_at: str = field(default_factory=_now)


@dataclass(frozen=True)
class Granted:
    reservation: Reservation

    granted = True


@dataclass(frozen=True)
class Denied:
    step_name: str
    requested: float
    reason: str

    granted = False


ReserveOutcome = Union[Granted, Denied]


class BudgetGuard:
    """Reserve/commit/release for the cost-bearing steps of one run.

    Args:
        ledger: Tenant ledger port; when None only the per-run ceiling applies
        tenant_id: Tenant owning the run; required whenever a ledger is given
        run_id: Run identifier recorded on every ledger entry
        run_limit: Per-run spend ceiling (``settings.RUN_BUDGET_LIMIT`` when None, 0 disables)
    """

    def __init__(
        self,
        ledger: Optional[BudgetLedger],
        tenant_id: Optional[str],
        run_id: str,
        run_limit: Optional[float] = None,
    ):
        self.ledger = ledger
        self.tenant_id = tenant_id
        self.run_id = run_id
        self.run_limit = settings.RUN_BUDGET_LIMIT if run_limit is None else run_limit
        self.entries: List[CostLedgerEntry] = []
        self._outstanding: Dict[str, Reservation] = {}

    @property
    def spent(self) -> float:
        return round(sum(entry.amount for entry in self.entries), 6)

    @property
    def outstanding(self) -> float:
        return sum(r.amount for r in self._outstanding.values())

    @property
    def uses_ledger(self) -> bool:
        return self.ledger is not None and self.tenant_id is not None

    async def reserve(self, step_name: str, estimated_cost: float) -> ReserveOutcome:
        amount = max(0.0, float(estimated_cost or 0.0))

        if self.run_limit and self.spent + self.outstanding + amount > self.run_limit + AMOUNT_EPSILON:
            logger.warning(
                f"Run {self.run_id}: step {step_name} denied, per-run limit {self.run_limit} "
                f"(spent {self.spent}, requested {amount})"
            )
            return Denied(step_name=step_name, requested=amount, reason="run_limit_exceeded")

        if self.ledger is not None and self.tenant_id is None:
            logger.warning(f"Run {self.run_id}: step {step_name} denied, tenant could not be resolved")
            return Denied(step_name=step_name, requested=amount, reason="tenant_unresolved")

        if self.uses_ledger:
            try:
                granted = await self.ledger.reserve(self.tenant_id, amount)
            except PersistenceError as e:
                logger.error(f"Run {self.run_id}: budget ledger unavailable for step {step_name}: {e}")
                return Denied(step_name=step_name, requested=amount, reason="ledger_unavailable")
        else:
            granted = True

        if not granted:
            logger.warning(
                f"Run {self.run_id}: step {step_name} denied, tenant {self.tenant_id} "
                f"allowance exhausted (requested {amount})"
            )
            return Denied(step_name=step_name, requested=amount, reason="tenant_allowance_exceeded")

        reservation = Reservation(
            tenant_id=self.tenant_id, run_id=self.run_id, step_name=step_name, amount=amount
        )
        self._outstanding[step_name] = reservation
        return Granted(reservation)

    async def commit(self, reservation: Reservation, actual_cost: Optional[float] = None) -> CostLedgerEntry:
        """Charge the actual cost (the estimate when unknown) and drop the reservation.

        The charge is capped at the reservation plus whatever room is left in
        the per-run ceiling and the tenant allowance; the rest is recorded on
        the entry as ``uncharged``.
        """
        requested = reservation.amount if actual_cost is None else round(max(0.0, actual_cost), 6)
        amount = requested
        if self.run_limit:
            others = max(0.0, self.outstanding - reservation.amount)
            amount = capped_charge(requested, self.run_limit, self.spent, others)
        entry = CostLedgerEntry(
            run_id=self.run_id,
            step_name=reservation.step_name,
            amount=amount,
            tenant_id=self.tenant_id,
            uncharged=round(requested - amount, 6),
        )
        if self.uses_ledger:
            try:
                charged = await self.ledger.commit(
                    self.tenant_id, amount, reserved=reservation.amount, entry=entry
                )
            except PersistenceError as e:
                logger.error(f"Run {self.run_id}: failed to commit {amount} for {reservation.step_name}: {e}")
            else:
                entry = with_charge(entry, charged)
        self._outstanding.pop(reservation.step_name, None)
        self.entries.append(entry)
        if entry.uncharged > AMOUNT_EPSILON:
            logger.warning(
                f"Run {self.run_id}: {reservation.step_name} cost {requested} exceeds the remaining "
                f"budget, charged {entry.amount} ({entry.uncharged} uncharged)"
            )
        logger.info(
            f"Run {self.run_id}: committed {entry.amount} for {reservation.step_name} "
            f"(reserved {reservation.amount})"
        )
        return entry

    async def release(self, reservation: Reservation) -> None:
        if self.uses_ledger:
            try:
                await self.ledger.release(self.tenant_id, reservation.amount)
            except PersistenceError as e:
                logger.error(f"Run {self.run_id}: failed to release reservation for {reservation.step_name}: {e}")
        self._outstanding.pop(reservation.step_name, None)
