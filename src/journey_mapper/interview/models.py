"""Result types for the interview pipeline."""

from dataclasses import asdict, dataclass, field
from typing import Any

from journey_mapper.db.models import SME, InterviewSession, Message


@dataclass
class ItemResult:
    """Outcome of writing one extracted item or conflict."""

    category: str  # systems, processes, gaps, touchpoints, sme_updates, conflicts
    action: str  # created, updated, auto-created, failed
    record_id: str | None = None
    name: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, category: str, error: str, name: str | None = None) -> "ItemResult":
        return cls(category=category, action="failed", name=name, error=error)


@dataclass
class CreatedRecordsSummary:
    """Per-category results of applying one turn's extractions."""

    systems: list[ItemResult] = field(default_factory=list)
    processes: list[ItemResult] = field(default_factory=list)
    gaps: list[ItemResult] = field(default_factory=list)
    touchpoints: list[ItemResult] = field(default_factory=list)
    sme_updates: list[ItemResult] = field(default_factory=list)

    def all_results(self) -> list[ItemResult]:
        return self.systems + self.processes + self.gaps + self.touchpoints + self.sme_updates

    @property
    def failures(self) -> list[ItemResult]:
        """Items that could not be written."""
        return [r for r in self.all_results() if not r.ok]

    def succeeded(self, category: str) -> list[ItemResult]:
        return [r for r in getattr(self, category) if r.ok]

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return asdict(self)


@dataclass
class TurnResult:
    """Everything a caller gets back from one interview turn."""

    reply: str
    extractions: dict[str, Any]
    conflicts: list[dict[str, Any]]
    open_questions: list[dict[str, Any]]
    conversation_state: dict[str, Any]
    created_records: CreatedRecordsSummary = field(default_factory=CreatedRecordsSummary)
    conflict_ids: list[str] = field(default_factory=list)
    conflict_results: list[ItemResult] = field(default_factory=list)


@dataclass
class SessionOpened:
    """A started (or, for self-service, reused) interview session."""

    session_id: str
    sme_id: str | None
    opening_message: str
    conversation_state: dict[str, Any]
    resumed: bool = False


@dataclass
class SessionClosed:
    """Outcome of closing a session."""

    session_id: str
    summary: str
    counts: dict[str, int]
    duration_minutes: int


@dataclass
class SessionTranscript:
    """Everything needed to pick a session back up."""

    session: InterviewSession
    sme: SME | None
    messages: list[Message]  # oldest first
    conversation_state: dict[str, Any]
