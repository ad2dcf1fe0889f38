"""Triage prompt construction and response parsing."""

import json
import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbox_triage.errors import MalformedResponseError
from inbox_triage.logging import get_logger
from inbox_triage.models import (
    CATEGORY_PAYLOAD,
    PAYLOAD_FIELDS,
    Priority,
    TriageCategory,
    TriageSuggestion,
)

logger = get_logger("prompt")

MAX_CONTENT_LENGTH = 8000
TRUNCATION_MARKER = "\n\n[Content truncated...]"

# Confidence assigned when the model answered but failed schema validation
SALVAGE_CONFIDENCE = 0.3

TRIAGE_SYSTEM_PROMPT = """You are an assistant that triages incoming email, chat and calendar items for an owner's representative on toll system projects.

## Your Role Context

The user oversees vendors, reviews deliverables, develops requirements and coordinates several toll authority clients. Items that need a decision, a review or a reply deserve attention; everything else is informational.

## Document Types & Review Periods

- SDDD (System Design Description Document): 15 business days
- ICD (Interface Control Document): 10 business days
- Test Plan: 10 business days
- O&M Manual: 15 business days
- Change Order (CO): 5-7 business days

## Testing Phases

- FAT (Factory Acceptance Test), IAT (Integration Acceptance Test), SAT (Site Acceptance Test), OAT (Operational Acceptance Test), UAT (User Acceptance Test)

## Priority Rules

CRITICAL:
- Go-live dates within 2 weeks
- System outages affecting revenue

HIGH:
- Messages from the internal team or verified client domains
- Deliverables with a deadline within 5 business days
- Testing milestone coordination

MEDIUM:
- Standard deliverable reviews
- Routine vendor correspondence
- Meeting follow-ups with action items

LOW:
- Informational items
- FYI-only communications

## Classification Categories

1. DELIVERABLE_REVIEW - Vendor submittal requiring formal review
2. CHANGE_ORDER - Contract modification request
3. TESTING_MILESTONE - FAT/IAT/SAT/OAT/UAT coordination
4. INTEROPERABILITY_ISSUE - Interoperability or reciprocity problems
5. SYSTEM_ISSUE - Operational problems with toll systems
6. MEETING_FOLLOWUP - Meeting notes with action items
7. VENDOR_CORRESPONDENCE - General vendor communications
8. CLIENT_CORRESPONDENCE - Communications from clients
9. INFORMATIONAL - FYI only, no action required
10. UNCLEAR - Cannot determine, flag for human review

## Output Format

Respond with valid JSON only:
{
  "category": "CATEGORY_NAME",
  "title": "Brief descriptive title for task",
  "client": "client name or null",
  "priority": "critical|high|medium|low",
  "dueDate": "YYYY-MM-DD or null",
  "tags": ["array", "of", "tags"],
  "confidence": 0.0-1.0,
  "reasoning": "Brief explanation of classification",
  "deliverable": { "type": "...", "version": "...", "vendor": "...", "reviewDeadline": "..." },
  "changeOrder": { "coNumber": "...", "proposedAmount": ..., "affectedSystems": [...] },
  "testing": { "phase": "...", "scheduledStart": "...", "scheduledEnd": "..." },
  "interop": { "homeAgency": "...", "awayAgency": "...", "urgency": "critical|elevated|standard" }
}

Include only the relevant category-specific object."""


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DeliverablePayload(_Payload):
    type: str
    version: str | None = None
    vendor: str | None = None
    reviewDeadline: str | None = None


class ChangeOrderPayload(_Payload):
    coNumber: str | None = None
    proposedAmount: float | None = None
    affectedSystems: list[str] | None = None


class MilestonePayload(_Payload):
    phase: str | None = None
    scheduledStart: str | None = None
    scheduledEnd: str | None = None


class InteropPayload(_Payload):
    homeAgency: str | None = None
    awayAgency: str | None = None
    urgency: str | None = Field(default=None, pattern=r"^(critical|elevated|standard)$")


class TriageResponse(BaseModel):
    """Schema for the JSON object the model is asked to return."""

    model_config = ConfigDict(extra="ignore")

    category: TriageCategory
    title: str = Field(min_length=1, max_length=500)
    client: str | None = None
    priority: Priority | None = None
    dueDate: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    tags: list[Annotated[str, Field(max_length=100)]] | None = Field(default=None, max_length=20)
    confidence: float = Field(ge=0, le=1)
    reasoning: str | None = Field(default=None, max_length=2000)
    deliverable: DeliverablePayload | None = None
    changeOrder: ChangeOrderPayload | None = None
    testing: MilestonePayload | None = None
    interop: InteropPayload | None = None


def build_triage_prompt(
    content: str,
    subject: str,
    default_client: str,
    context: str | None = None,
) -> str:
    """Build the full triage prompt for one item.

    Args:
        content: Source text to classify (truncated past MAX_CONTENT_LENGTH)
        subject: Subject line or title
        default_client: Fallback client if none is detected
        context: Optional user-maintained context, wrapped in <user_context>

    Returns:
        Prompt text
    """
    if len(content) > MAX_CONTENT_LENGTH:
        content = content[:MAX_CONTENT_LENGTH] + TRUNCATION_MARKER

    context_section = f"\n<user_context>\n{context}\n</user_context>\n" if context else ""

    return f"""{TRIAGE_SYSTEM_PROMPT}{context_section}

## Item to Classify

Subject/Title: {subject}
Default Client (if not detected): {default_client}

Content:
---
{content}
---

Classify this item and respond with JSON only."""


def _extract_json(response: str) -> str:
    fence = re.search(r"```(?:json)?\s*([\s\S]*?)```", response)
    if fence:
        return fence.group(1).strip()
    brace = re.search(r"\{[\s\S]*\}", response)
    if brace:
        return brace.group(0)
    return response


def _select_payload(data: dict[str, Any], category: TriageCategory) -> dict[str, Any]:
    """Keep at most one category payload, preferring the one matching the category."""
    present = [key for key in PAYLOAD_FIELDS if data.get(key)]
    if len(present) <= 1:
        return data

    preferred = CATEGORY_PAYLOAD.get(category)
    keep = preferred if preferred in present else present[0]
    return {key: value for key, value in data.items() if key not in PAYLOAD_FIELDS or key == keep}


def parse_triage_response(response: str) -> TriageSuggestion:
    """Parse and validate the model's answer.

    A decodable object that fails validation is salvaged: the category (or
    UNCLEAR) and title are kept with a low confidence and the validation
    messages as reasoning.

    Raises:
        MalformedResponseError: No JSON object could be decoded
    """
    json_str = _extract_json(response)
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Failed to parse AI response: {e}") from e

    if not isinstance(parsed, dict):
        raise MalformedResponseError("AI response is not a JSON object")

    try:
        validated = TriageResponse.model_validate(parsed)
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        logger.warning("Triage response validation failed: %s", messages)

        try:
            category = TriageCategory(parsed.get("category"))
        except ValueError:
            category = TriageCategory.UNCLEAR
        title = parsed.get("title")
        return TriageSuggestion(
            category=category,
            title=title[:500] if isinstance(title, str) and title else "Unknown",
            confidence=SALVAGE_CONFIDENCE,
            reasoning=f"Validation failed: {messages}",
        )

    data = validated.model_dump(mode="json", exclude_none=True)
    data.setdefault("priority", Priority.MEDIUM.value)
    return TriageSuggestion.from_dict(_select_payload(data, validated.category))
