"""Root conftest for pipeline and repository tests.

Provides:
- In-memory SQLite database (replaces the production engine)
- In-memory collaborator ports (record store, model provider, push channel, ledger)
- Seed records for a tenant with one AI-enhanced form
"""

from __future__ import annotations

import copy
from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.database import close_db, init_db

# Import all ORM models so they register with Base.metadata
import app.models.db  # noqa: F401

from pipeline.engine import WorkflowRunner
from pipeline.ports import (
    InMemoryBudgetLedger,
    InMemoryRecordStore,
    RecordingPushChannel,
    ScriptedModelProvider,
)


# ---------------------------------------------------------------------------
# In-memory async SQLite engine (StaticPool shares one connection)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(bind=engine)
    yield engine
    await close_db(bind=engine)


@pytest.fixture
def test_session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(test_session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session with automatic rollback."""
    async with test_session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Seed records
# ---------------------------------------------------------------------------

TENANT_ID = "user_1"

BASE_RECORDS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "users": {
        "user_1": {"id": "user_1", "email": "owner@example.com", "ai_features_enabled": True},
        "user_2": {"id": "user_2", "email": "basic@example.com", "ai_features_enabled": False},
    },
    "forms": {
        "form_1": {
            "id": "form_1",
            "name": "AI Readiness Assessment",
            "category": "lead_qualification",
            "user_id": "user_1",
            "share_token": "abc123",
            "ai_enhanced": True,
            "ai_model": "gpt-4o-mini",
            "questions_count": 3,
            "settings": {"purpose": "Qualify enterprise AI leads"},
            "ai_configuration": {},
        },
    },
    "form_questions": {
        "q_challenge": {
            "id": "q_challenge",
            "form_id": "form_1",
            "key": "main_challenge",
            "title": "What is your main challenge?",
            "question_type": "text_long",
            "required": True,
            "ai_enhanced": True,
            "response_analysis": True,
            "generates_followups": True,
            "configuration": {},
        },
        "q_rating": {
            "id": "q_rating",
            "form_id": "form_1",
            "key": "satisfaction",
            "title": "How satisfied are you today?",
            "question_type": "rating",
            "required": True,
            "ai_enhanced": False,
            "configuration": {"min": 1, "max": 5},
        },
        "q_other_form": {
            "id": "q_other_form",
            "form_id": "form_2",
            "title": "Unrelated",
            "question_type": "text_short",
        },
    },
    "form_responses": {
        "resp_1": {
            "id": "resp_1",
            "form_id": "form_1",
            "status": "completed",
            "session_id": "sess_1",
            "started_at": "2024-05-01T10:00:00+00:00",
            "completed_at": "2024-05-01T10:08:30+00:00",
            "answers": {
                "main_challenge": "We are losing revenue to competitors and need efficiency gains fast",
                "role": "cto",
            },
            "enriched_data": {"industry": "technology", "company_size": 250},
        },
        "resp_open": {
            "id": "resp_open",
            "form_id": "form_1",
            "status": "in_progress",
            "session_id": "sess_2",
            "answers": {},
        },
    },
}


@pytest.fixture
def records() -> Dict[str, Dict[str, Dict[str, Any]]]:
    return copy.deepcopy(BASE_RECORDS)


@pytest.fixture
def store(records) -> InMemoryRecordStore:
    return InMemoryRecordStore(records)


@pytest.fixture
def push() -> RecordingPushChannel:
    return RecordingPushChannel()


@pytest.fixture
def ledger() -> InMemoryBudgetLedger:
    return InMemoryBudgetLedger(default_allowance=10.0)


@pytest.fixture
def model() -> ScriptedModelProvider:
    return ScriptedModelProvider("{}")


@pytest.fixture
def make_runner(store, push, ledger):
    """Build a runner over the shared in-memory ports with a given model provider."""

    def _make(model_provider=None, run_limit: float = 0.0, **overrides) -> WorkflowRunner:
        collaborators = {"store": store, "push": push, "ledger": ledger, "model": model_provider}
        collaborators.update(overrides)
        return WorkflowRunner(run_limit=run_limit, **collaborators)

    return _make
