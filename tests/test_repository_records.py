"""Tests for the SQL record repository and record store

Tests cover:
- Save/load/list/delete of JSON document records
- Upsert semantics (re-saving replaces the document)
- Missing records raise RecordNotFound
- Database failures surface as PersistenceError
- A workflow run against the SQL-backed ports
"""

import json

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.repositories.budget_ledger import SqlBudgetLedger
from app.repositories.records import RecordRepository, SqlRecordStore
from pipeline.engine import RunState, WorkflowRunner
from pipeline.errors import PersistenceError, RecordNotFound
from pipeline.ports import RecordingPushChannel, ScriptedModelProvider
from pipeline.workflows import BUDGET_ADAPTATION_WORKFLOW


class TestRecordRepository:
    """Test the repository against a session."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, test_session):
        repo = RecordRepository(test_session)

        await repo.save("forms", "form_1", {"id": "form_1", "name": "Survey", "settings": {"a": [1, 2]}})
        loaded = await repo.load("forms", "form_1")

        assert loaded == {"id": "form_1", "name": "Survey", "settings": {"a": [1, 2]}}

    @pytest.mark.asyncio
    async def test_load_returns_copy(self, test_session):
        repo = RecordRepository(test_session)
        await repo.save("forms", "form_1", {"tags": ["a"]})

        loaded = await repo.load("forms", "form_1")
        loaded["tags"].append("b")

        assert (await repo.load("forms", "form_1"))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_save_replaces(self, test_session):
        repo = RecordRepository(test_session)
        await repo.save("lead_scorings", "resp_1", {"score": 40})
        await repo.save("lead_scorings", "resp_1", {"score": 85})

        assert await repo.list("lead_scorings") == [{"score": 85, "id": "resp_1"}]

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, test_session):
        repo = RecordRepository(test_session)
        await repo.save("forms", "x", {"kind": "form"})
        await repo.save("users", "x", {"kind": "user"})

        assert (await repo.load("forms", "x"))["kind"] == "form"
        assert (await repo.load("users", "x"))["kind"] == "user"

    @pytest.mark.asyncio
    async def test_missing_record(self, test_session):
        with pytest.raises(RecordNotFound, match="forms record not found: ghost"):
            await RecordRepository(test_session).load("forms", "ghost")

    @pytest.mark.asyncio
    async def test_delete(self, test_session):
        repo = RecordRepository(test_session)
        await repo.save("forms", "form_1", {})

        assert await repo.delete("forms", "form_1") is True
        assert await repo.delete("forms", "form_1") is False
        assert await repo.get("forms", "form_1") is None


class TestSqlRecordStore:
    """Test the RecordStore port adapter."""

    @pytest.mark.asyncio
    async def test_round_trip_across_sessions(self, test_session_factory):
        store = SqlRecordStore(test_session_factory)

        await store.save("form_responses", "resp_1", {"id": "resp_1", "answers": {"q": "a"}})

        assert (await store.load("form_responses", "resp_1"))["answers"] == {"q": "a"}

    @pytest.mark.asyncio
    async def test_not_found_passes_through(self, test_session_factory):
        with pytest.raises(RecordNotFound):
            await SqlRecordStore(test_session_factory).load("forms", "ghost")

    @pytest.mark.asyncio
    async def test_database_failure(self):
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = SqlRecordStore(async_sessionmaker(engine, expire_on_commit=False))
        try:
            # No tables were created on this engine
            with pytest.raises(PersistenceError, match="Failed to load"):
                await store.load("forms", "form_1")
            with pytest.raises(PersistenceError, match="Failed to save"):
                await store.save("forms", "form_1", {})
        finally:
            await engine.dispose()


class TestWorkflowOnSql:
    @pytest.mark.asyncio
    async def test_budget_adaptation_end_to_end(self, test_session_factory, records):
        store = SqlRecordStore(test_session_factory)
        for collection, documents in records.items():
            for record_id, record in documents.items():
                await store.save(collection, record_id, record)

        ledger = SqlBudgetLedger(test_session_factory, default_allowance=1.0)
        push = RecordingPushChannel()
        model = ScriptedModelProvider(json.dumps({"title": "What would you prioritize first?"}))
        runner = WorkflowRunner(store=store, model=model, push=push, ledger=ledger, run_limit=0)

        result = await runner.run(
            BUDGET_ADAPTATION_WORKFLOW,
            {"form_response_id": "resp_1", "budget_answer": "$900"},
            tenant_id="user_1",
        )

        assert result.outcome is RunState.COMPLETED
        saved = await store.load("dynamic_questions", "resp_1:budget_adaptation")
        assert saved["title"] == "What would you prioritize first?"
        assert await ledger.remaining("user_1") == pytest.approx(0.99)
        assert len(push.for_target("budget_adaptation_resp_1")) == 1
