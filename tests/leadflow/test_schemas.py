"""Unit tests for AI answer schemas and sequence shaping."""

import pytest

from leadflow.ai import AIResponseError, parse_json_payload
from leadflow.ai.campaign_decider import build_system_prompt
from leadflow.ai.copywriter import build_json_instruction, clamp_sequence_length, finalize_steps
from leadflow.ai.schemas import (
    AddToExisting,
    CreateNew,
    EmailStep,
    LeadPersona,
    Skip,
    parse_email_sequence,
    parse_generated_query,
    parse_routing_decision,
)


class TestLeadPersona:
    """Tests for field-by-field persona repair."""

    def test_well_formed_answer(self):
        persona = LeadPersona.model_validate(
            {
                "category": "Coach",
                "full_name": "Jane Doe",
                "fit_score": 8,
                "fit_reason": "Runs workshops",
                "total_audience": 12000,
                "email": "Jane@Example.com",
            }
        )

        assert persona.category == "coach"
        assert persona.fit_score == 8
        assert persona.email == "jane@example.com"
        assert "email" not in persona.to_fields()

    @pytest.mark.parametrize("raw,expected", [(15, 10), (0, 1), ("7", 7), (6.6, 7), ("x", 5), (True, 5)])
    def test_fit_score_is_clamped(self, raw, expected):
        assert LeadPersona.model_validate({"fit_score": raw}).fit_score == expected

    def test_everything_missing(self):
        persona = LeadPersona.model_validate({})

        assert persona.category == "other"
        assert persona.full_name == "Unknown"
        assert persona.total_audience == 0
        assert persona.expertise == []
        assert persona.fit_score == 5
        assert persona.email is None

    def test_legacy_field_names(self):
        persona = LeadPersona.model_validate(
            {"name": "Jane", "promotion_fit_score": 9, "promotion_fit_reason": "Great"}
        )

        assert persona.full_name == "Jane"
        assert persona.fit_score == 9
        assert persona.fit_reason == "Great"

    def test_bad_shapes_fall_back(self):
        persona = LeadPersona.model_validate(
            {
                "social_links": ["not", "a", "dict"],
                "content_types": {"a": 1},
                "total_audience": "lots",
                "email": "no-at-sign",
            }
        )

        assert persona.social_links == {}
        assert persona.content_types == []
        assert persona.total_audience == 0
        assert persona.email is None

    def test_non_dict_answer(self):
        assert LeadPersona.model_validate(["nope"]).full_name == "Unknown"


class TestRoutingDecision:
    """Tests for the tagged routing union."""

    def test_add_to_existing_camel_case(self):
        decision = parse_routing_decision(
            {"action": "add_to_existing", "campaignId": "c1", "reason": "fits"}
        )
        assert isinstance(decision, AddToExisting)
        assert decision.campaign_id == "c1"

    def test_create_new(self):
        decision = parse_routing_decision(
            {"action": "create_new", "suggestedName": "Podcasters", "suggestedPersona": "Hosts"}
        )
        assert isinstance(decision, CreateNew)
        assert decision.suggested_name == "Podcasters"
        assert decision.reason == ""

    def test_skip(self):
        assert isinstance(parse_routing_decision({"action": "skip"}), Skip)

    @pytest.mark.parametrize(
        "answer",
        [
            {"action": "add_to_existing"},
            {"action": "create_new", "suggestedName": "x"},
            {"action": "delete_everything"},
            {"campaignId": "c1"},
        ],
    )
    def test_invalid_answers(self, answer):
        with pytest.raises(AIResponseError):
            parse_routing_decision(answer)

    def test_skip_is_offered_only_in_auto_mode(self):
        assert '"action": "skip"' in build_system_prompt(True)
        assert '"action": "skip"' not in build_system_prompt(False)
        assert "NEVER skip" in build_system_prompt(False)


class TestGeneratedQuery:
    def test_query_required(self):
        with pytest.raises(AIResponseError):
            parse_generated_query({"criteria": ["x"]})

    def test_defaults(self):
        query = parse_generated_query({"query": "fitness coaches"})
        assert query.criteria == []
        assert query.rationale == ""


class TestEmailSequence:
    """Tests for sequence parsing and shaping."""

    def test_named_keys_are_ordered(self):
        sequence = parse_email_sequence(
            {
                "followUp1": {"subject": "", "body": "second", "delayDays": 3},
                "initial": {"subject": "Hi", "body": "first"},
            }
        )
        assert [s.body for s in sequence.steps] == ["first", "second"]
        assert sequence.steps[1].delay_days == 3

    def test_steps_list(self):
        sequence = parse_email_sequence({"steps": [{"subject": "Hi", "body": "only"}]})
        assert len(sequence.steps) == 1

    def test_step_without_body(self):
        with pytest.raises(AIResponseError):
            parse_email_sequence({"initial": {"subject": "Hi"}})

    @pytest.mark.parametrize("value,expected", [(None, 2), (0, 2), (1, 1), (3, 3), (7, 3), (-1, 1)])
    def test_clamp_sequence_length(self, value, expected):
        assert clamp_sequence_length(value) == expected

    def test_finalize_applies_delays_and_link(self):
        steps = [
            EmailStep(subject="Hi {{calendar_link}}", body="Hello {{calendar_link}}", delay_days=5),
            EmailStep(subject="", body="Still there? {{calendar_link}}"),
            EmailStep(subject="", body="Last one {{calendar_link}}", delay_days=6),
        ]

        finalized = finalize_steps(steps, 3, "https://cal.test/x")

        assert [s.delay_days for s in finalized] == [0, 3, 6]
        assert finalized[0].subject == "Hi"
        assert finalized[0].body == "Hello"
        assert finalized[1].body == "Still there?"
        assert finalized[2].body == "Last one https://cal.test/x"

    def test_finalize_without_link_drops_placeholder(self):
        steps = [
            EmailStep(subject="Hi", body="Hello"),
            EmailStep(subject="", body="Book {{calendar_link}}"),
        ]

        finalized = finalize_steps(steps, 2, None)

        assert finalized[1].body == "Book"

    def test_finalize_truncates_and_rejects_short(self):
        steps = [EmailStep(subject="a", body="1"), EmailStep(subject="", body="2")]

        assert len(finalize_steps(steps, 1, None)) == 1
        with pytest.raises(AIResponseError):
            finalize_steps(steps, 3, None)

    def test_json_instruction_names_last_follow_up(self):
        assert "followUp2" in build_json_instruction(3)
        assert "calendar_link" not in build_json_instruction(1)


class TestParseJsonPayload:
    def test_fenced(self):
        assert parse_json_payload('```json\n{"a": 1}\n```') == {"a": 1}

    def test_prose_around_object(self):
        assert parse_json_payload('Here you go: {"a": 1} hope it helps') == {"a": 1}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2]"])
    def test_unusable(self, text):
        with pytest.raises(AIResponseError):
            parse_json_payload(text)
