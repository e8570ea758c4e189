"""End-to-end tests for the response enrichment workflow

Tests cover:
- Company profile looked up by email domain, stored on the response and pushed
- Lookup failures and unknown domains complete the run without enrichment
- Halts for users without AI features and unusable email answers
- Enriched data feeding lead scoring
"""

import pytest

from pipeline.engine import RunState, SkipReason
from pipeline.ports import InMemoryRecordStore, ScriptedModelProvider, StaticCompanyDataSource
from pipeline.workflows import ENRICHMENT_WORKFLOW, LEAD_SCORING_WORKFLOW, enrich_response
from pipeline.workflows.enrichment import email_domain

ACME = {
    "name": "Acme Inc.",
    "industry": "technology",
    "employees": 1200,
    "location": "San Francisco, CA",
    "domain": "acme.com",
    "description": "",
    "founded": 2015,
    "tech": ["Python", "AWS"],
    "social_profiles": None,
}


@pytest.fixture
def enrichment_records(records):
    records["form_responses"]["resp_1"]["answers"]["email"] = "Jane.Doe@Acme.com"
    return records


class TestEnrichment:
    """Test the happy path from email domain to stored profile."""

    @pytest.mark.asyncio
    async def test_profile_stored_and_pushed(self, enrichment_records, make_runner, push):
        store = InMemoryRecordStore(enrichment_records)
        source = StaticCompanyDataSource({"acme.com": ACME})
        runner = make_runner(store=store, company_data=source)

        result = await runner.run(ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"}, tenant_id="user_1")

        assert result.outcome is RunState.COMPLETED
        assert source.lookups == ["acme.com"]
        processed = result.data("process_company_data")["processed_data"]
        assert processed == {
            "company_name": "Acme Inc.",
            "industry": "technology",
            "company_size": 1200,
            "location": "San Francisco, CA",
            "website": "acme.com",
            "founded_year": 2015,
            "technologies": ["Python", "AWS"],
        }

        saved = store.all("form_responses")["resp_1"]
        assert saved["enrichment_data"] == processed
        assert saved["metadata"]["company_enrichment"] == processed
        assert saved["enriched_data"]["company_size"] == 1200
        assert saved["enriched_at"]

        [envelope] = push.for_target("enrichment_resp_1")
        assert envelope["template"] == "responses/enrichment_data"
        assert envelope["data"]["company_data"] == processed

    @pytest.mark.asyncio
    async def test_lookup_failure_is_soft(self, enrichment_records, make_runner, push):
        store = InMemoryRecordStore(enrichment_records)
        runner = make_runner(store=store, company_data=StaticCompanyDataSource(fail=True))

        result = await runner.run(ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"}, tenant_id="user_1")

        assert result.outcome is RunState.COMPLETED
        assert result.data("fetch_company_info") == {"company_data": {}}
        assert result.get("update_response_with_enrichment").reason is SkipReason.PREDICATE
        assert result.get("update_ui_with_enrichment").reason is SkipReason.UPSTREAM_FAILURE
        assert "enrichment_data" not in store.all("form_responses")["resp_1"]
        assert push.published == []

    @pytest.mark.asyncio
    async def test_unknown_domain(self, enrichment_records, make_runner):
        runner = make_runner(store=InMemoryRecordStore(enrichment_records), company_data=StaticCompanyDataSource())

        result = await runner.run(ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"})

        assert result.completed
        assert result.data("process_company_data") == {"processed_data": {}}

    @pytest.mark.asyncio
    async def test_without_company_data_source(self, enrichment_records, make_runner):
        result = await make_runner(store=InMemoryRecordStore(enrichment_records)).run(
            ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"}
        )

        assert result.completed
        assert result.get("update_response_with_enrichment").reason is SkipReason.PREDICATE

    @pytest.mark.asyncio
    async def test_enriched_company_size_reaches_lead_routing(self, enrichment_records, make_runner):
        store = InMemoryRecordStore(enrichment_records)
        model = ScriptedModelProvider('{"quality_score": 50}')
        runner = make_runner(model, store=store, company_data=StaticCompanyDataSource({"acme.com": ACME}))

        await runner.run(ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"}, tenant_id="user_1")
        result = await runner.run(LEAD_SCORING_WORKFLOW, {"form_response_id": "resp_1"}, tenant_id="user_1")

        actions = result.data("route_lead")["routing_actions"]
        assert "enterprise_specialist" in [a["action"] for a in actions]


class TestHalts:
    """Test the premium and email checks."""

    @pytest.mark.asyncio
    async def test_user_without_ai_features(self, enrichment_records, make_runner):
        enrichment_records["forms"]["form_1"]["user_id"] = "user_2"
        source = StaticCompanyDataSource({"acme.com": ACME})
        runner = make_runner(store=InMemoryRecordStore(enrichment_records), company_data=source)

        result = await runner.run(ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"})

        assert result.outcome is RunState.HALTED_BY_VALIDATION
        assert result.validation_message() == "AI enrichment requires premium subscription"
        assert source.lookups == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", [None, "", "not-an-email", "jane@", {"value": "  "}])
    async def test_unusable_email(self, records, make_runner, email):
        records["form_responses"]["resp_1"]["answers"]["email"] = email
        runner = make_runner(store=InMemoryRecordStore(records), company_data=StaticCompanyDataSource())

        result = await runner.run(ENRICHMENT_WORKFLOW, {"form_response_id": "resp_1"})

        assert result.outcome is RunState.HALTED_BY_VALIDATION
        assert result.validation_message() == "Invalid email address provided"


class TestEmailDomain:
    @pytest.mark.parametrize("email,expected", [
        ("jane@acme.com", "acme.com"),
        ("  Jane@ACME.com ", "acme.com"),
        ("a@b@corp.io", "corp.io"),
        ("no-at-sign", ""),
        (42, ""),
    ])
    def test_email_domain(self, email, expected):
        assert email_domain(email) == expected


class TestTrigger:
    @pytest.mark.asyncio
    async def test_enrich_response(self, enrichment_records, make_runner):
        store = InMemoryRecordStore(enrichment_records)
        runner = make_runner(store=store, company_data=StaticCompanyDataSource({"acme.com": ACME}))

        summary = await enrich_response(runner, "resp_1")

        assert summary["success"] is True
        assert summary["outcome"] == "completed"
        assert summary["data"]["update_response_with_enrichment"]["enrichment_data"]["company_name"] == "Acme Inc."
