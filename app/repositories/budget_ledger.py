"""Repository layer for tenant AI budgets.

The check-and-reserve is a single conditional UPDATE:

    UPDATE tenant_budgets
       SET reserved = reserved + :amount
     WHERE tenant_id = :tenant AND spent + reserved + :amount <= allowance

so two concurrent reservations can never both pass when together they would
exceed the allowance, whichever process they run in. ``SqlBudgetLedger``
adapts the repository to the pipeline's BudgetLedger port.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_session_ctx
from app.models.db import CostLedgerEntryModel, TenantBudgetModel
from pipeline import settings
from pipeline.errors import PersistenceError
from pipeline.ports import AMOUNT_EPSILON, CostLedgerEntry, capped_charge

logger = logging.getLogger(__name__)


class BudgetLedgerRepository:
    """Data access layer for tenant budgets and the cost ledger."""

    def __init__(self, session: AsyncSession, default_allowance: Optional[float] = None):
        self.session = session
        self.default_allowance = (
            settings.DEFAULT_TENANT_ALLOWANCE if default_allowance is None else default_allowance
        )

    async def get(self, tenant_id: str) -> Optional[TenantBudgetModel]:
        result = await self.session.execute(
            select(TenantBudgetModel)
            .where(TenantBudgetModel.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ensure(self, tenant_id: str) -> None:
        """Create the tenant's budget row with the default allowance if it is missing."""
        insert = postgresql.insert if self.session.bind.dialect.name == "postgresql" else sqlite.insert
        await self.session.execute(
            insert(TenantBudgetModel)
            .values(tenant_id=tenant_id, allowance=self.default_allowance, spent=0.0, reserved=0.0)
            .on_conflict_do_nothing(index_elements=["tenant_id"])
        )

    async def set_allowance(self, tenant_id: str, allowance: float) -> TenantBudgetModel:
        await self.ensure(tenant_id)
        await self.session.execute(
            update(TenantBudgetModel)
            .where(TenantBudgetModel.tenant_id == tenant_id)
            .values(allowance=allowance)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return await self.get(tenant_id)

    async def reserve(self, tenant_id: str, amount: float) -> bool:
        """Atomically reserve ``amount``; False when it would exceed the allowance."""
        await self.ensure(tenant_id)
        result = await self.session.execute(
            update(TenantBudgetModel)
            .where(
                TenantBudgetModel.tenant_id == tenant_id,
                TenantBudgetModel.spent + TenantBudgetModel.reserved + amount
                <= TenantBudgetModel.allowance + AMOUNT_EPSILON,
            )
            .values(reserved=TenantBudgetModel.reserved + amount)
            .execution_options(synchronize_session=False)
        )
        granted = result.rowcount == 1
        if not granted:
            logger.info(f"Reservation of {amount} denied for tenant {tenant_id}")
        return granted

    async def commit(
        self,
        tenant_id: str,
        amount: float,
        reserved: float = 0.0,
        entry: Optional[CostLedgerEntry] = None,
    ) -> float:
        """Release ``reserved`` and charge ``amount``, capped at the room left in the allowance.

        The release UPDATE locks the row before the cap is read, so the
        charge and the check see the same balance. Returns the amount charged.
        """
        await self.ensure(tenant_id)
        await self.session.execute(
            update(TenantBudgetModel)
            .where(TenantBudgetModel.tenant_id == tenant_id)
            .values(reserved=self._released(reserved))
            .execution_options(synchronize_session=False)
        )
        budget = await self.get(tenant_id)
        charged = capped_charge(amount, budget.allowance, budget.spent, budget.reserved)
        if charged < amount - AMOUNT_EPSILON:
            logger.warning(
                f"Tenant {tenant_id}: true-up of {amount} capped at {charged} by the allowance"
            )
        await self.session.execute(
            update(TenantBudgetModel)
            .where(TenantBudgetModel.tenant_id == tenant_id)
            .values(spent=TenantBudgetModel.spent + charged)
            .execution_options(synchronize_session=False)
        )
        self.session.add(CostLedgerEntryModel(
            tenant_id=tenant_id,
            run_id=entry.run_id if entry else None,
            step_name=entry.step_name if entry else None,
            amount=charged,
            uncharged=round((entry.uncharged if entry else 0.0) + amount - charged, 6),
        ))
        await self.session.flush()
        return charged

    async def release(self, tenant_id: str, amount: float) -> None:
        await self.session.execute(
            update(TenantBudgetModel)
            .where(TenantBudgetModel.tenant_id == tenant_id)
            .values(reserved=self._released(amount))
            .execution_options(synchronize_session=False)
        )

    async def entries(self, tenant_id: str) -> List[CostLedgerEntryModel]:
        result = await self.session.execute(
            select(CostLedgerEntryModel)
            .where(CostLedgerEntryModel.tenant_id == tenant_id)
            .order_by(CostLedgerEntryModel.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _released(amount: float):
        remaining = TenantBudgetModel.reserved - amount
        return case((remaining < 0, 0.0), else_=remaining)


class SqlBudgetLedger:
    """BudgetLedger port backed by BudgetLedgerRepository, one transaction per call.

    Args:
        session_factory: Session factory (defaults to app.database's)
        default_allowance: Allowance for tenants without a budget row
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        default_allowance: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.default_allowance = default_allowance

    def _repo(self, session: AsyncSession) -> BudgetLedgerRepository:
        return BudgetLedgerRepository(session, self.default_allowance)

    async def reserve(self, tenant_id: str, amount: float) -> bool:
        try:
            async with get_session_ctx(self.session_factory) as session:
                return await self._repo(session).reserve(tenant_id, amount)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Budget reservation failed for tenant {tenant_id}: {e}") from e

    async def commit(self, tenant_id: str, amount: float, reserved: float = 0.0,
                     entry: Optional[CostLedgerEntry] = None) -> float:
        try:
            async with get_session_ctx(self.session_factory) as session:
                return await self._repo(session).commit(tenant_id, amount, reserved=reserved, entry=entry)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Budget commit failed for tenant {tenant_id}: {e}") from e

    async def release(self, tenant_id: str, amount: float) -> None:
        try:
            async with get_session_ctx(self.session_factory) as session:
                await self._repo(session).release(tenant_id, amount)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Budget release failed for tenant {tenant_id}: {e}") from e

    async def set_allowance(self, tenant_id: str, allowance: float) -> None:
        async with get_session_ctx(self.session_factory) as session:
            await self._repo(session).set_allowance(tenant_id, allowance)

    async def remaining(self, tenant_id: str) -> float:
        async with get_session_ctx(self.session_factory) as session:
            budget = await self._repo(session).get(tenant_id)
            return budget.remaining if budget else self.default_allowance_value

    @property
    def default_allowance_value(self) -> float:
        return settings.DEFAULT_TENANT_ALLOWANCE if self.default_allowance is None else self.default_allowance
