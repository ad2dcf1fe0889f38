"""Canonical data models for triage suggestions and queue items."""

import secrets
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

_ID_ALPHABET = string.ascii_lowercase + string.digits


class TriageCategory(str, Enum):
    """Closed set of classification categories."""

    DELIVERABLE_REVIEW = "DELIVERABLE_REVIEW"
    CHANGE_ORDER = "CHANGE_ORDER"
    TESTING_MILESTONE = "TESTING_MILESTONE"
    INTEROPERABILITY_ISSUE = "INTEROPERABILITY_ISSUE"
    SYSTEM_ISSUE = "SYSTEM_ISSUE"
    MEETING_FOLLOWUP = "MEETING_FOLLOWUP"
    VENDOR_CORRESPONDENCE = "VENDOR_CORRESPONDENCE"
    CLIENT_CORRESPONDENCE = "CLIENT_CORRESPONDENCE"
    INFORMATIONAL = "INFORMATIONAL"
    UNCLEAR = "UNCLEAR"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TriageStatus(str, Enum):
    """Lifecycle of a triage item. Only pending items may change status."""

    PENDING = "pending"
    REVIEWED = "reviewed"
    DISMISSED = "dismissed"

    def can_transition_to(self, target: "TriageStatus") -> bool:
        if self is target:
            return True
        return self is TriageStatus.PENDING


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_item_id() -> str:
    """Generate a unique triage item ID: triage-<epoch ms>-<9 random chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"triage-{int(time.time() * 1000)}-{suffix}"


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class DeliverableDetails:
    type: str
    version: str | None = None
    vendor: str | None = None
    review_deadline: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "type": self.type,
            "version": self.version,
            "vendor": self.vendor,
            "reviewDeadline": self.review_deadline,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliverableDetails":
        return cls(
            type=data.get("type", ""),
            version=data.get("version"),
            vendor=data.get("vendor"),
            review_deadline=data.get("reviewDeadline"),
        )


@dataclass
class ChangeOrderDetails:
    co_number: str | None = None
    proposed_amount: float | None = None
    affected_systems: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "coNumber": self.co_number,
            "proposedAmount": self.proposed_amount,
            "affectedSystems": self.affected_systems,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeOrderDetails":
        return cls(
            co_number=data.get("coNumber"),
            proposed_amount=data.get("proposedAmount"),
            affected_systems=data.get("affectedSystems"),
        )


@dataclass
class TestingDetails:
    __test__ = False  # not a pytest test class

    phase: str | None = None
    scheduled_start: str | None = None
    scheduled_end: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "phase": self.phase,
            "scheduledStart": self.scheduled_start,
            "scheduledEnd": self.scheduled_end,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestingDetails":
        return cls(
            phase=data.get("phase"),
            scheduled_start=data.get("scheduledStart"),
            scheduled_end=data.get("scheduledEnd"),
        )


@dataclass
class InteropDetails:
    home_agency: str | None = None
    away_agency: str | None = None
    urgency: str | None = None  # critical, elevated, standard

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "homeAgency": self.home_agency,
            "awayAgency": self.away_agency,
            "urgency": self.urgency,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InteropDetails":
        return cls(
            home_agency=data.get("homeAgency"),
            away_agency=data.get("awayAgency"),
            urgency=data.get("urgency"),
        )


# Persisted key -> (attribute name, payload type)
PAYLOAD_FIELDS: dict[str, tuple[str, type]] = {
    "deliverable": ("deliverable", DeliverableDetails),
    "changeOrder": ("change_order", ChangeOrderDetails),
    "testing": ("testing", TestingDetails),
    "interop": ("interop", InteropDetails),
}

# Category whose structured payload is expected, if any
CATEGORY_PAYLOAD: dict[TriageCategory, str] = {
    TriageCategory.DELIVERABLE_REVIEW: "deliverable",
    TriageCategory.CHANGE_ORDER: "changeOrder",
    TriageCategory.TESTING_MILESTONE: "testing",
    TriageCategory.INTEROPERABILITY_ISSUE: "interop",
}


@dataclass
class TriageSuggestion:
    """Classification result for one source or conversation."""

    category: TriageCategory
    title: str
    confidence: float = 0.0
    client: str | None = None
    priority: Priority | None = None
    due_date: str | None = None  # YYYY-MM-DD
    tags: list[str] | None = None
    reasoning: str | None = None
    deliverable: DeliverableDetails | None = None
    change_order: ChangeOrderDetails | None = None
    testing: TestingDetails | None = None
    interop: InteropDetails | None = None

    def __post_init__(self) -> None:
        self.category = TriageCategory(self.category)
        if self.priority is not None:
            self.priority = Priority(self.priority)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        populated = [key for key, (attr, _) in PAYLOAD_FIELDS.items() if getattr(self, attr) is not None]
        if len(populated) > 1:
            raise ValueError(f"at most one category payload may be set, got {populated}")

    @classmethod
    def unclear(cls, title: str, reasoning: str) -> "TriageSuggestion":
        """Degraded suggestion used when classification fails."""
        return cls(
            category=TriageCategory.UNCLEAR,
            title=title,
            confidence=0.0,
            reasoning=reasoning,
        )

    @property
    def details(self) -> Any | None:
        """The populated category-specific payload, if any."""
        for attr, _ in PAYLOAD_FIELDS.values():
            value = getattr(self, attr)
            if value is not None:
                return value
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category.value,
            "title": self.title,
            "client": self.client,
            "priority": self.priority.value if self.priority else None,
            "dueDate": self.due_date,
            "tags": self.tags,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }
        for key, (attr, _) in PAYLOAD_FIELDS.items():
            value = getattr(self, attr)
            data[key] = value.to_dict() if value is not None else None
        return _compact(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriageSuggestion":
        payloads = {}
        for key, (attr, payload_type) in PAYLOAD_FIELDS.items():
            value = data.get(key)
            if value:
                payloads[attr] = payload_type.from_dict(value)
        return cls(
            category=TriageCategory(data.get("category", TriageCategory.UNCLEAR.value)),
            title=data.get("title", ""),
            confidence=float(data.get("confidence", 0.0)),
            client=data.get("client"),
            priority=data.get("priority"),
            due_date=data.get("dueDate"),
            tags=data.get("tags"),
            reasoning=data.get("reasoning"),
            **payloads,
        )


@dataclass
class TriageItem:
    """A persisted unit of review work. Owned and mutated by TriageStore."""

    id: str
    source_path: str
    source_name: str
    triage_time: str
    suggestion: TriageSuggestion
    status: TriageStatus = TriageStatus.PENDING
    user_edits: dict[str, Any] | None = None  # partial suggestion, persisted keys
    action_taken: str | None = None
    action_time: str | None = None
    artifact_path: str | None = None

    @classmethod
    def create(cls, source_path: str, suggestion: TriageSuggestion) -> "TriageItem":
        return cls(
            id=generate_item_id(),
            source_path=source_path,
            source_name=source_path.rsplit("/", 1)[-1] or source_path,
            triage_time=now_iso(),
            suggestion=suggestion,
        )

    @property
    def is_pending(self) -> bool:
        return self.status is TriageStatus.PENDING

    def effective_suggestion(self) -> TriageSuggestion:
        """Suggestion with user edits applied on top."""
        if not self.user_edits:
            return replace(self.suggestion)
        return TriageSuggestion.from_dict({**self.suggestion.to_dict(), **self.user_edits})

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "id": self.id,
            "filePath": self.source_path,
            "fileName": self.source_name,
            "triageTime": self.triage_time,
            "suggestion": self.suggestion.to_dict(),
            "status": self.status.value,
            "userEdits": self.user_edits,
            "actionTaken": self.action_taken,
            "actionTime": self.action_time,
            "createdTaskPath": self.artifact_path,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriageItem":
        return cls(
            id=data["id"],
            source_path=data["filePath"],
            source_name=data.get("fileName") or data["filePath"].rsplit("/", 1)[-1],
            triage_time=data.get("triageTime", ""),
            suggestion=TriageSuggestion.from_dict(data.get("suggestion", {})),
            status=TriageStatus(data.get("status", TriageStatus.PENDING.value)),
            user_edits=data.get("userEdits"),
            action_taken=data.get("actionTaken"),
            action_time=data.get("actionTime"),
            artifact_path=data.get("createdTaskPath"),
        )


@dataclass(frozen=True)
class DispatchUnit:
    """Ready-to-classify work: one source, or a conversation's members."""

    paths: tuple[str, ...]
    conversation_id: str | None = None

    @classmethod
    def single(cls, path: str) -> "DispatchUnit":
        return cls(paths=(path,))

    @property
    def is_conversation(self) -> bool:
        return self.conversation_id is not None

    @property
    def representative_path(self) -> str:
        return self.paths[0]


@dataclass
class ConversationBuffer:
    """Accumulates settled events for one conversation until it goes quiet."""

    conversation_id: str
    created_at: float
    last_update: float
    members: list[str] = field(default_factory=list)
    pending_checks: int = 0

    def to_unit(self) -> DispatchUnit:
        return DispatchUnit(paths=tuple(self.members), conversation_id=self.conversation_id)
