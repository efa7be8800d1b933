"""Tests for the query generation stage."""

import pytest

from leadflow.ai import QueryWriter
from leadflow.ai.query_writer import (
    EXPLORATION_SYSTEM_PROMPT,
    FOCUSED_SYSTEM_PROMPT,
    format_past_queries,
)
from leadflow.errors import EntityNotFoundError
from leadflow.models import QueryStatus
from leadflow.pipeline import QueryGenerator

from fakes import ScriptedAIClient, seed_lead


def query_answer(text: str, rationale: str = "Targets the instruction") -> dict:
    return {"query": text, "criteria": ["has a public email"], "rationale": rationale}


def make_generator(store, ai: ScriptedAIClient) -> QueryGenerator:
    return QueryGenerator(store, QueryWriter(ai, model="research-model"))


class TestFocusedMode:
    """Tests for queries generated from pending instructions."""

    @pytest.mark.asyncio
    async def test_two_instructions_make_two_queries(self, store, company):
        """Each pending instruction yields one query and is flagged processed."""
        first = await store.create_instruction(company.id, "Find acting coaches on TikTok")
        second = await store.create_instruction(company.id, "Find drama teachers on YouTube")
        ai = ScriptedAIClient(
            queries=[query_answer("acting coaches tiktok"), query_answer("drama teachers youtube")]
        )

        report = await make_generator(store, ai).run()

        assert len(report.focused) == 2
        assert report.exploration == []
        assert report.failures == []
        assert await store.pending_instructions(company.id) == []

        queries = [await store.get_query(qid) for qid in report.focused]
        assert [q.query for q in queries] == ["acting coaches tiktok", "drama teachers youtube"]
        assert [q.source_instruction_id for q in queries] == [first.id, second.id]
        assert all(q.status == QueryStatus.PENDING and q.is_active for q in queries)
        assert all(
            call["instructions"] == FOCUSED_SYSTEM_PROMPT for call in ai.calls_for("query")
        )

    @pytest.mark.asyncio
    async def test_oldest_instruction_is_processed_first(self, store, company):
        await store.create_instruction(company.id, "older instruction")
        await store.create_instruction(company.id, "newer instruction")
        ai = ScriptedAIClient(queries=[query_answer("q1"), query_answer("q2")])

        await make_generator(store, ai).run(company.id)

        prompts = [call["prompt"] for call in ai.calls_for("query")]
        assert "older instruction" in prompts[0]
        assert "newer instruction" in prompts[1]

    @pytest.mark.asyncio
    async def test_failed_instruction_does_not_block_the_next(self, store, company):
        failing = await store.create_instruction(company.id, "first")
        await store.create_instruction(company.id, "second")
        ai = ScriptedAIClient(queries=[RuntimeError("model timeout"), query_answer("second query")])

        report = await make_generator(store, ai).run(company.id)

        assert len(report.focused) == 1
        assert report.failures == [
            {"company_id": company.id, "instruction_id": failing.id, "error": "model timeout"}
        ]
        pending = await store.pending_instructions(company.id)
        assert [i.id for i in pending] == [failing.id]

    @pytest.mark.asyncio
    async def test_already_flagged_instruction_is_not_processed_twice(self, store, company):
        instruction = await store.create_instruction(company.id, "Find podcasters")
        generator = make_generator(store, ScriptedAIClient(queries=[query_answer("podcasters")]))

        first = await generator.generate_for_instruction(company, instruction)
        second = await generator.generate_for_instruction(company, instruction)

        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_malformed_answer_is_a_failure(self, store, company):
        await store.create_instruction(company.id, "Find podcasters")
        ai = ScriptedAIClient(queries=["I could not think of anything."])

        report = await make_generator(store, ai).run(company.id)

        assert report.generated == 0
        assert len(report.failures) == 1
        assert len(await store.pending_instructions(company.id)) == 1


class TestExplorationMode:
    """Tests for queries generated without instructions."""

    @pytest.mark.asyncio
    async def test_exploration_sees_past_queries_with_yield(self, store, company):
        past = await store.create_query(company.id, "acting coaches tiktok", [])
        await seed_lead(store, company.id, query_id=past.id)
        await seed_lead(store, company.id, query_id=past.id)
        ai = ScriptedAIClient(
            queries=[query_answer("voice actors on instagram", "New platform and segment")]
        )

        report = await make_generator(store, ai).run(company.id)

        assert report.focused == []
        assert len(report.exploration) == 1
        query = await store.get_query(report.exploration[0])
        assert query.is_exploration
        assert query.generation_rationale == "New platform and segment"

        call = ai.calls_for("query")[0]
        assert call["instructions"] == EXPLORATION_SYSTEM_PROMPT
        assert '"acting coaches tiktok" (found 2 leads)' in call["prompt"]

    def test_format_past_queries(self):
        assert format_past_queries([]) == "No past queries yet, this is the first one."
        assert format_past_queries([("a", 3), ("b", None)]) == (
            '1. "a" (found 3 leads)\n2. "b" (found ? leads)'
        )


class TestCompanies:
    """Tests for multi-company passes."""

    @pytest.mark.asyncio
    async def test_one_failing_company_does_not_abort_others(self, store, company, autopilot_company):
        ai = ScriptedAIClient(queries=[RuntimeError("quota exceeded"), query_answer("podcast hosts")])

        report = await make_generator(store, ai).run()

        assert len(report.exploration) == 1
        assert report.failures[0]["company_id"] == company.id
        assert report.to_dict()["generated"] == 1

    @pytest.mark.asyncio
    async def test_unknown_company(self, store):
        generator = make_generator(store, ScriptedAIClient())
        with pytest.raises(EntityNotFoundError):
            await generator.run("missing-company")
