"""SQLAlchemy ORM models for the form pipeline.

Tables:
- records: JSON documents keyed by (collection, id), backing the record store
- tenant_budgets: Per-tenant AI allowance with spent and reserved totals
- cost_ledger: One row per committed model-call cost
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Float, Index, Integer, String
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Records ─────────────────────────────────────────────────────────


class RecordModel(Base):
    """Domain record (form, response, question, scoring, ...) stored as a JSON document."""

    __tablename__ = "records"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    __table_args__ = (
        Index("ix_records_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<RecordModel {self.collection}/{self.id}>"


# ─── Budget ──────────────────────────────────────────────────────────


class TenantBudgetModel(Base):
    """Tenant allowance.

    Invariant: spent + reserved <= allowance, enforced by the conditional
    UPDATE in BudgetLedgerRepository.reserve.
    """

    __tablename__ = "tenant_budgets"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    spent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reserved: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    @property
    def remaining(self) -> float:
        return max(self.allowance - self.spent - self.reserved, 0.0)

    def __repr__(self) -> str:
        return f"<TenantBudgetModel {self.tenant_id} spent={self.spent}/{self.allowance}>"


class CostLedgerEntryModel(Base):
    __tablename__ = "cost_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    step_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    uncharged: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    __table_args__ = (
        Index("ix_cost_ledger_tenant_id", "tenant_id"),
        Index("ix_cost_ledger_run_id", "run_id"),
    )
