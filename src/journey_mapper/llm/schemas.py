"""Pydantic schemas for the structured JSON the interview LLM returns.

The top-level reply is validated strictly enough to detect garbage (it must be
a JSON object with a ``reply`` string). Extraction items are kept raw here and
validated one at a time by the extraction processor, so a single malformed
item never invalidates the whole turn.
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

logger = logging.getLogger(__name__)


class LenientModel(BaseModel):
    """Base for LLM payloads: nulls fall back to defaults, unknown keys dropped."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


def _listify(value: Any) -> Any:
    if isinstance(value, (str, dict)):
        return [value]
    return value


def _bucket(value: Any, name: str) -> list[Any]:
    """A list of raw items. Any other shape is dropped with a warning."""
    value = _listify(value)
    if isinstance(value, list):
        return value
    logger.warning(f"Ignoring '{name}': expected a list, got {type(value).__name__}")
    return []


def _section(value: Any, name: str) -> dict[str, Any]:
    """A JSON object section. Any other shape is dropped with a warning."""
    if isinstance(value, dict):
        return value
    logger.warning(f"Ignoring '{name}': expected an object, got {type(value).__name__}")
    return {}


# =============================================================================
# Extraction items
# =============================================================================


class IntegrationLink(LenientModel):
    """A data flow between two systems."""

    system_name: str = ""
    direction: str = ""  # one_way_push, one_way_pull, bidirectional
    method: str = ""  # native, API, webhook, file_export, manual
    data_transferred: list[Any] = Field(default_factory=list)


class SystemExtraction(LenientModel):
    """A technology system mentioned by the SME."""

    system_name: str = ""
    vendor: str = ""
    category: str = ""
    fields_or_workflows_mentioned: list[str] = Field(default_factory=list)
    integration_with: list[IntegrationLink] = Field(default_factory=list)
    is_new: bool | None = None
    existing_system_id: str | None = None

    @field_validator("integration_with", mode="before")
    @classmethod
    def normalize_integrations(cls, value: Any) -> Any:
        value = _listify(value)
        if isinstance(value, list):
            return [{"system_name": item} if isinstance(item, str) else item for item in value]
        return value

    @field_validator("fields_or_workflows_mentioned", mode="before")
    @classmethod
    def listify_fields(cls, value: Any) -> Any:
        return _listify(value)


class ProcessStepExtraction(LenientModel):
    """One step of a process. Unknown keys are preserved on the stored step."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    description: str = ""
    actor: str = ""
    system_name: str = ""
    field_or_workflow_name: str = ""
    manual_or_automated: str = ""
    time_to_complete: str = ""
    belongs_to_process: str | None = None
    journey_stage: str = ""
    as_documented: str = ""
    as_practiced: str = ""


class GapExtraction(LenientModel):
    """A shortcoming the SME described."""

    title: str = ""
    description: str = ""
    gap_type: str = ""
    frequency: str = ""
    guest_impact: str = ""
    root_cause: str = ""


class TouchpointExtraction(LenientModel):
    """A guest-facing interaction point. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    channel: str = ""
    description: str = ""
    timing: str = ""
    system_name: str = ""
    journey_stage: str = ""


class SmeUpdates(LenientModel):
    """Additions to the SME's own profile."""

    new_systems_used: list[str] = Field(default_factory=list)
    new_domains: list[str] = Field(default_factory=list)
    new_stages_owned: list[str] = Field(default_factory=list)

    @field_validator("new_systems_used", "new_domains", "new_stages_owned", mode="before")
    @classmethod
    def listify(cls, value: Any) -> Any:
        return _listify(value)

    def is_empty(self) -> bool:
        return not (self.new_systems_used or self.new_domains or self.new_stages_owned)


class ConflictReport(LenientModel):
    """The LLM's report of a disagreement with previously recorded data."""

    field: str = ""
    new_value_from_current_sme: str = ""
    existing_value: str = ""
    existing_sme_id: str = ""
    existing_record_id: str = ""
    severity: str = "medium"


class OpenQuestion(LenientModel):
    """A question to follow up on in a later session."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    question: str
    reason: str = ""
    priority: str = "medium"

    @model_validator(mode="before")
    @classmethod
    def from_text(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"question": data}
        return data


class ConversationState(LenientModel):
    """Where the interview stands. Extra keys are carried through."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    current_stage: str | None = None
    current_topic: str | None = None
    topics_covered_this_message: list[str] = Field(default_factory=list)
    should_move_to_next_stage: bool = False
    stage_completion_estimate: float = 0.0
    as_documented_vs_practiced_asked: bool = False

    @field_validator("topics_covered_this_message", mode="before")
    @classmethod
    def listify_topics(cls, value: Any) -> Any:
        return _listify(value)


# =============================================================================
# Top-level reply
# =============================================================================


class Extractions(LenientModel):
    """Raw extraction buckets. Items are validated individually downstream."""

    systems: list[Any] = Field(default_factory=list)
    process_steps: list[Any] = Field(default_factory=list)
    gaps: list[Any] = Field(default_factory=list)
    journey_touchpoints: list[Any] = Field(default_factory=list)
    sme_updates: dict[str, Any] = Field(default_factory=dict)

    @field_validator("systems", "process_steps", "gaps", "journey_touchpoints", mode="before")
    @classmethod
    def listify_bucket(cls, value: Any, info: ValidationInfo) -> list[Any]:
        return _bucket(value, info.field_name)

    @field_validator("sme_updates", mode="before")
    @classmethod
    def object_updates(cls, value: Any, info: ValidationInfo) -> dict[str, Any]:
        return _section(value, info.field_name)

    def is_empty(self) -> bool:
        return not (
            self.systems
            or self.process_steps
            or self.gaps
            or self.journey_touchpoints
            or any(self.sme_updates.values())
        )


class StructuredReply(LenientModel):
    """One structured LLM response for an interview turn."""

    reply: str
    extractions: Extractions = Field(default_factory=Extractions)
    conflicts_detected: list[Any] = Field(default_factory=list)
    open_questions: list[Any] = Field(default_factory=list)
    conversation_state: ConversationState = Field(default_factory=ConversationState)

    @field_validator("conflicts_detected", "open_questions", mode="before")
    @classmethod
    def listify_items(cls, value: Any, info: ValidationInfo) -> list[Any]:
        return _bucket(value, info.field_name)

    @field_validator("extractions", "conversation_state", mode="before")
    @classmethod
    def object_sections(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, BaseModel):
            return value
        return _section(value, info.field_name)

    @classmethod
    def from_text(cls, text: str) -> "StructuredReply":
        """Wrap plain text as a reply with nothing extracted."""
        return cls(reply=text)

    def state_updates(self) -> dict[str, Any]:
        """Conversation state keys the LLM actually sent."""
        return self.conversation_state.model_dump(exclude_unset=True)
