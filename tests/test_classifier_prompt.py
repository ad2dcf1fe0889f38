"""Tests for triage prompt building and response parsing."""

import json

import pytest

from inbox_triage.classifier.prompt import (
    MAX_CONTENT_LENGTH,
    SALVAGE_CONFIDENCE,
    TRIAGE_SYSTEM_PROMPT,
    TRUNCATION_MARKER,
    build_triage_prompt,
    parse_triage_response,
)
from inbox_triage.errors import MalformedResponseError
from inbox_triage.models import Priority, TriageCategory


class TestBuildTriagePrompt:
    """Tests for build_triage_prompt."""

    def test_includes_subject_client_and_content(self) -> None:
        prompt = build_triage_prompt("Body text", "ICD v2 submittal", "Metro Tolls")
        assert prompt.startswith(TRIAGE_SYSTEM_PROMPT)
        assert "Subject/Title: ICD v2 submittal" in prompt
        assert "Default Client (if not detected): Metro Tolls" in prompt
        assert "---\nBody text\n---" in prompt
        assert "<user_context>" not in prompt

    def test_truncates_long_content(self) -> None:
        prompt = build_triage_prompt("x" * (MAX_CONTENT_LENGTH + 100), "s", "")
        assert ("x" * MAX_CONTENT_LENGTH + TRUNCATION_MARKER) in prompt
        assert "x" * (MAX_CONTENT_LENGTH + 1) not in prompt

    def test_wraps_user_context(self) -> None:
        prompt = build_triage_prompt("Body", "s", "", context="Acme is the client")
        assert "<user_context>\nAcme is the client\n</user_context>" in prompt


class TestParseTriageResponse:
    """Tests for parse_triage_response."""

    def test_parses_plain_json(self) -> None:
        response = json.dumps({
            "category": "DELIVERABLE_REVIEW",
            "title": "Review SDDD v1",
            "client": "Metro Tolls",
            "priority": "high",
            "dueDate": "2026-02-10",
            "tags": ["sddd"],
            "confidence": 0.92,
            "reasoning": "Vendor submittal",
            "deliverable": {"type": "SDDD", "version": "1.0", "vendor": "Acme"},
        })

        suggestion = parse_triage_response(response)

        assert suggestion.category is TriageCategory.DELIVERABLE_REVIEW
        assert suggestion.priority is Priority.HIGH
        assert suggestion.due_date == "2026-02-10"
        assert suggestion.tags == ["sddd"]
        assert suggestion.confidence == 0.92
        assert suggestion.deliverable is not None
        assert suggestion.deliverable.type == "SDDD"
        assert suggestion.deliverable.vendor == "Acme"

    def test_parses_fenced_json(self) -> None:
        response = 'Here you go:\n```json\n{"category": "SYSTEM_ISSUE", "title": "Lane 3 down", "confidence": 0.7}\n```'
        suggestion = parse_triage_response(response)
        assert suggestion.category is TriageCategory.SYSTEM_ISSUE
        assert suggestion.title == "Lane 3 down"

    def test_parses_json_with_surrounding_text(self) -> None:
        response = 'Sure. {"category": "MEETING_FOLLOWUP", "title": "Notes", "confidence": 0.6} Done.'
        assert parse_triage_response(response).category is TriageCategory.MEETING_FOLLOWUP

    def test_defaults_priority_to_medium(self) -> None:
        response = '{"category": "VENDOR_CORRESPONDENCE", "title": "Hi", "confidence": 0.5}'
        assert parse_triage_response(response).priority is Priority.MEDIUM

    def test_keeps_only_matching_payload(self) -> None:
        response = json.dumps({
            "category": "CHANGE_ORDER",
            "title": "CO-4",
            "confidence": 0.8,
            "deliverable": {"type": "ICD"},
            "changeOrder": {"coNumber": "CO-4", "proposedAmount": 2500},
        })

        suggestion = parse_triage_response(response)

        assert suggestion.deliverable is None
        assert suggestion.change_order is not None
        assert suggestion.change_order.co_number == "CO-4"
        assert suggestion.change_order.proposed_amount == 2500.0

    def test_invalid_fields_are_salvaged(self) -> None:
        response = json.dumps({"category": "SYSTEM_ISSUE", "title": "Outage", "confidence": 7})

        suggestion = parse_triage_response(response)

        assert suggestion.category is TriageCategory.SYSTEM_ISSUE
        assert suggestion.title == "Outage"
        assert suggestion.confidence == SALVAGE_CONFIDENCE
        assert suggestion.reasoning.startswith("Validation failed:")

    def test_unknown_category_salvaged_as_unclear(self) -> None:
        response = json.dumps({"category": "SPAM", "confidence": 0.4})

        suggestion = parse_triage_response(response)

        assert suggestion.category is TriageCategory.UNCLEAR
        assert suggestion.title == "Unknown"

    def test_undecodable_response_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_triage_response("I could not classify this item.")

    def test_non_object_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_triage_response("[1, 2, 3]")
