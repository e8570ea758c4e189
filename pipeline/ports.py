"""Collaborator ports consumed by the pipeline engine.

Each port is a Protocol with an in-memory implementation used by tests and
local runs. Production adapters:

- RecordStore     -> app.repositories.records.SqlRecordStore
- ModelProvider   -> pipeline.llm.HttpModelProvider
- PushChannel     -> pipeline.sse.HttpPushChannel
- BudgetLedger    -> app.repositories.budget_ledger.SqlBudgetLedger
- CompanyDataSource -> pipeline.enrichment.HttpCompanyDataSource
"""

from __future__ import annotations

import asyncio
import copy
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from . import settings
from .errors import DeliveryError, ProviderError, RecordNotFound


# Tolerance for float comparisons on monetary amounts
AMOUNT_EPSILON = 1e-9


# ─── Value types ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CompletionOptions:
    model: str
    temperature: float = 0.3
    max_tokens: int = 800
    response_format: str = "json"
    system_prompt: str = ""


@dataclass(frozen=True)
class Completion:
    """Raw provider answer.

    Attributes:
        text: Completion text as returned by the provider
        model: Model that produced it
        usage: Token usage ({"input_tokens": int, "output_tokens": int}) when reported
    """

    text: str
    model: str = ""
    usage: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CostLedgerEntry:
    """One committed charge against a tenant's allowance.

    ``uncharged`` is the part of the actual cost that did not fit in the
    allowance (or the per-run ceiling) and was therefore not charged.
    """

    run_id: str
    step_name: str
    amount: float
    tenant_id: Optional[str] = None
    uncharged: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "step_name": self.step_name,
            "amount": self.amount,
            "uncharged": self.uncharged,
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp,
        }


def capped_charge(amount: float, allowance: float, spent: float, reserved: float) -> float:
    """Part of ``amount`` that fits in what is left of ``allowance``."""
    room = max(0.0, allowance - spent - reserved)
    return round(max(0.0, min(amount, room)), 6)


def with_charge(entry: CostLedgerEntry, charged: float) -> CostLedgerEntry:
    """Copy of ``entry`` charging ``charged``; the rest moves to ``uncharged``."""
    overage = max(0.0, entry.amount - charged)
    return replace(entry, amount=charged, uncharged=round(entry.uncharged + overage, 6))


# ─── Protocols ───────────────────────────────────────────────────────


@runtime_checkable
class RecordStore(Protocol):
    async def load(self, collection: str, record_id: str) -> Dict[str, Any]:
        """Return the record or raise ``RecordNotFound``."""
        ...

    async def save(self, collection: str, record_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace a record; raises ``PersistenceError`` on failure."""
        ...


@runtime_checkable
class ModelProvider(Protocol):
    async def complete(self, prompt: str, options: CompletionOptions) -> Completion:
        """Return a completion or raise ``ProviderError``."""
        ...


@runtime_checkable
class PushChannel(Protocol):
    async def publish(self, target: str, payload: Dict[str, Any]) -> None:
        """Publish a payload to a channel; raises ``DeliveryError`` when not delivered."""
        ...


@runtime_checkable
class CompanyDataSource(Protocol):
    async def lookup(self, domain: str) -> Optional[Dict[str, Any]]:
        """Company profile for an email domain, None when unknown; raises ``ProviderError`` on failure."""
        ...


@runtime_checkable
class BudgetLedger(Protocol):
    async def reserve(self, tenant_id: str, amount: float) -> bool:
        """Atomically reserve ``amount``; False when it would exceed the allowance."""
        ...

    async def commit(self, tenant_id: str, amount: float, reserved: float = 0.0,
                     entry: Optional[CostLedgerEntry] = None) -> float:
        """Release ``reserved`` and charge ``amount``, capped at the room left in the allowance.

        Returns the amount actually charged.
        """
        ...

    async def release(self, tenant_id: str, amount: float) -> None:
        ...


# ─── In-memory implementations ───────────────────────────────────────


class InMemoryRecordStore:
    """Dict-backed record store. Records are deep-copied on the way in and out."""

    def __init__(self, records: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = copy.deepcopy(records or {})
        self.saves: List[Tuple[str, str]] = []

    async def load(self, collection: str, record_id: str) -> Dict[str, Any]:
        record = self._collections.get(collection, {}).get(str(record_id))
        if record is None:
            raise RecordNotFound(collection, str(record_id))
        return copy.deepcopy(record)

    async def save(self, collection: str, record_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(record)
        stored.setdefault("id", str(record_id))
        self._collections.setdefault(collection, {})[str(record_id)] = stored
        self.saves.append((collection, str(record_id)))
        return copy.deepcopy(stored)

    def all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._collections.get(collection, {}))


class RecordingPushChannel:
    """Push channel that records every publish.

    Args:
        fail: Raise ``DeliveryError`` on every publish
        delay: Seconds to sleep before recording (to exercise publish timeouts)
    """

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, target: str, payload: Dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise DeliveryError(f"Push channel unavailable for {target}")
        self.published.append((target, payload))

    def for_target(self, target: str) -> List[Dict[str, Any]]:
        return [payload for t, payload in self.published if t == target]


class StaticCompanyDataSource:
    """Company data source answering from a dict keyed by domain.

    Args:
        companies: Profiles by domain
        fail: Raise ``ProviderError`` on every lookup
    """

    def __init__(self, companies: Optional[Dict[str, Dict[str, Any]]] = None, fail: bool = False):
        self._companies = copy.deepcopy(companies or {})
        self.fail = fail
        self.lookups: List[str] = []

    async def lookup(self, domain: str) -> Optional[Dict[str, Any]]:
        self.lookups.append(domain)
        if self.fail:
            raise ProviderError(f"Company data lookup failed for {domain}")
        company = self._companies.get(domain.lower())
        return copy.deepcopy(company) if company is not None else None


Reply = Union[str, Completion, Exception, Callable[[str, CompletionOptions], Any]]


class ScriptedModelProvider:
    """Model provider that answers from a script.

    Replies are consumed in order; once the script runs out the last reply is
    reused. A reply may be a string, a ``Completion``, an exception to raise,
    or a callable ``(prompt, options) -> str | Completion``.
    """

    def __init__(self, *replies: Reply, delay: float = 0.0):
        if not replies:
            replies = ("{}",)
        self._replies: List[Reply] = list(replies)
        self.delay = delay
        self.calls: List[Tuple[str, CompletionOptions]] = []

    async def complete(self, prompt: str, options: CompletionOptions) -> Completion:
        self.calls.append((prompt, options))
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(prompt, options)
        if isinstance(reply, Completion):
            return reply
        if not isinstance(reply, str):
            raise ProviderError(f"Scripted reply has unsupported type {type(reply).__name__}")
        return Completion(text=reply, model=options.model)


class InMemoryBudgetLedger:
    """Per-tenant allowance ledger held in process memory.

    Check-and-reserve runs under a ``threading.Lock`` with no await inside the
    critical section, so it is atomic across coroutines and across threads.
    """

    def __init__(
        self,
        allowances: Optional[Dict[str, float]] = None,
        default_allowance: Optional[float] = None,
    ):
        self._allowances: Dict[str, float] = dict(allowances or {})
        self._default_allowance = (
            settings.DEFAULT_TENANT_ALLOWANCE if default_allowance is None else default_allowance
        )
        self._spent: Dict[str, float] = {}
        self._reserved: Dict[str, float] = {}
        self.entries: List[CostLedgerEntry] = []
        self._lock = threading.Lock()

    def set_allowance(self, tenant_id: str, allowance: float) -> None:
        with self._lock:
            self._allowances[tenant_id] = allowance

    def allowance(self, tenant_id: str) -> float:
        return self._allowances.get(tenant_id, self._default_allowance)

    def spent(self, tenant_id: str) -> float:
        return self._spent.get(tenant_id, 0.0)

    def reserved(self, tenant_id: str) -> float:
        return self._reserved.get(tenant_id, 0.0)

    def remaining(self, tenant_id: str) -> float:
        with self._lock:
            return self.allowance(tenant_id) - self.spent(tenant_id) - self.reserved(tenant_id)

    async def reserve(self, tenant_id: str, amount: float) -> bool:
        with self._lock:
            used = self.spent(tenant_id) + self.reserved(tenant_id)
            if used + amount > self.allowance(tenant_id) + AMOUNT_EPSILON:
                return False
            self._reserved[tenant_id] = self.reserved(tenant_id) + amount
            return True

    async def commit(self, tenant_id: str, amount: float, reserved: float = 0.0,
                     entry: Optional[CostLedgerEntry] = None) -> float:
        with self._lock:
            self._reserved[tenant_id] = max(0.0, self.reserved(tenant_id) - reserved)
            charged = capped_charge(
                amount, self.allowance(tenant_id), self.spent(tenant_id), self.reserved(tenant_id)
            )
            self._spent[tenant_id] = self.spent(tenant_id) + charged
            if entry is not None:
                self.entries.append(with_charge(entry, charged))
            return charged

    async def release(self, tenant_id: str, amount: float) -> None:
        with self._lock:
            self._reserved[tenant_id] = max(0.0, self.reserved(tenant_id) - amount)
