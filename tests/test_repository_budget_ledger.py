"""Tests for the SQL budget ledger

Tests cover:
- Budget rows created on first use with the default allowance
- Conditional reservation never overshoots the allowance
- Commit releases the reservation, charges the true-up and writes a ledger entry
- Commit never charges past the allowance; the excess is recorded as uncharged
- Release floors the reserved amount at zero
- SqlBudgetLedger as a BudgetGuard backend, including database outages
"""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.repositories.budget_ledger import BudgetLedgerRepository, SqlBudgetLedger
from pipeline.engine import BudgetGuard, Denied, Granted
from pipeline.errors import PersistenceError
from pipeline.ports import CostLedgerEntry


class TestBudgetLedgerRepository:
    """Test the repository against a session."""

    @pytest.mark.asyncio
    async def test_ensure_uses_default_allowance(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=2.5)

        await repo.ensure("tenant_a")
        await repo.ensure("tenant_a")
        budget = await repo.get("tenant_a")

        assert budget.allowance == 2.5
        assert budget.spent == 0.0
        assert budget.reserved == 0.0
        assert budget.remaining == 2.5

    @pytest.mark.asyncio
    async def test_reserve_within_and_over_allowance(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=1.0)

        assert await repo.reserve("tenant_a", 0.4) is True
        assert await repo.reserve("tenant_a", 0.4) is True
        assert await repo.reserve("tenant_a", 0.4) is False

        budget = await repo.get("tenant_a")
        assert budget.reserved == pytest.approx(0.8)
        assert budget.remaining == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_reserve_exact_remainder(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=0.3)

        assert await repo.reserve("tenant_a", 0.1) is True
        assert await repo.reserve("tenant_a", 0.2) is True
        assert await repo.reserve("tenant_a", 0.0001) is False

    @pytest.mark.asyncio
    async def test_sequential_reservations_stop_at_allowance(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=1.0)

        granted = [await repo.reserve("tenant_a", 0.3) for _ in range(10)]

        assert granted.count(True) == 3
        assert (await repo.get("tenant_a")).reserved <= 1.0

    @pytest.mark.asyncio
    async def test_commit_true_up(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=1.0)
        await repo.reserve("tenant_a", 0.02)

        await repo.commit(
            "tenant_a", 0.05, reserved=0.02,
            entry=CostLedgerEntry(tenant_id="tenant_a", run_id="run_1", step_name="analyze", amount=0.05),
        )
        budget = await repo.get("tenant_a")
        [entry] = await repo.entries("tenant_a")

        assert budget.reserved == pytest.approx(0.0)
        assert budget.spent == pytest.approx(0.05)
        assert entry.run_id == "run_1"
        assert entry.step_name == "analyze"
        assert entry.amount == pytest.approx(0.05)

    @pytest.mark.asyncio
    async def test_commit_capped_at_allowance(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=0.01)
        await repo.reserve("tenant_a", 0.01)

        charged = await repo.commit(
            "tenant_a", 0.03, reserved=0.01,
            entry=CostLedgerEntry(tenant_id="tenant_a", run_id="run_1", step_name="analyze", amount=0.03),
        )
        budget = await repo.get("tenant_a")
        [entry] = await repo.entries("tenant_a")

        assert charged == pytest.approx(0.01)
        assert budget.spent == pytest.approx(0.01)
        assert budget.remaining == 0.0
        assert entry.amount == pytest.approx(0.01)
        assert entry.uncharged == pytest.approx(0.02)
        assert await repo.reserve("tenant_a", 0.001) is False

    @pytest.mark.asyncio
    async def test_release_floors_at_zero(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=1.0)
        await repo.reserve("tenant_a", 0.1)

        await repo.release("tenant_a", 0.5)

        assert (await repo.get("tenant_a")).reserved == 0.0

    @pytest.mark.asyncio
    async def test_set_allowance(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=1.0)

        budget = await repo.set_allowance("tenant_a", 0.05)

        assert budget.allowance == 0.05
        assert await repo.reserve("tenant_a", 0.1) is False

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, test_session):
        repo = BudgetLedgerRepository(test_session, default_allowance=0.5)

        assert await repo.reserve("tenant_a", 0.5) is True
        assert await repo.reserve("tenant_b", 0.5) is True
        assert await repo.reserve("tenant_a", 0.1) is False


class TestSqlBudgetLedger:
    """Test the BudgetLedger port adapter."""

    @pytest.mark.asyncio
    async def test_reserve_commit_remaining(self, test_session_factory):
        ledger = SqlBudgetLedger(test_session_factory, default_allowance=1.0)

        assert await ledger.remaining("tenant_a") == 1.0
        assert await ledger.reserve("tenant_a", 0.25) is True
        assert await ledger.remaining("tenant_a") == pytest.approx(0.75)

        await ledger.commit("tenant_a", 0.1, reserved=0.25)

        assert await ledger.remaining("tenant_a") == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_set_allowance(self, test_session_factory):
        ledger = SqlBudgetLedger(test_session_factory, default_allowance=1.0)

        await ledger.set_allowance("tenant_a", 0.0)

        assert await ledger.reserve("tenant_a", 0.01) is False
        assert await ledger.remaining("tenant_a") == 0.0

    @pytest.mark.asyncio
    async def test_guard_over_sql_ledger(self, test_session_factory):
        ledger = SqlBudgetLedger(test_session_factory, default_allowance=0.05)
        guard = BudgetGuard(ledger, "tenant_a", "run_1", run_limit=0)

        first = await guard.reserve("analyze", 0.03)
        second = await guard.reserve("followup", 0.03)

        assert isinstance(first, Granted)
        assert isinstance(second, Denied)

        await guard.commit(first.reservation, 0.02)

        assert await ledger.remaining("tenant_a") == pytest.approx(0.03)

    @pytest.mark.asyncio
    async def test_outage_raises_persistence_error(self):
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        ledger = SqlBudgetLedger(async_sessionmaker(engine, expire_on_commit=False), default_allowance=1.0)
        try:
            with pytest.raises(PersistenceError, match="reservation failed"):
                await ledger.reserve("tenant_a", 0.1)

            decision = await BudgetGuard(ledger, "tenant_a", "run_1").reserve("analyze", 0.1)
            assert isinstance(decision, Denied)
            assert decision.reason == "ledger_unavailable"
        finally:
            await engine.dispose()
