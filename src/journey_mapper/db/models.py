"""SQLAlchemy models for the journey mapping knowledge store.

Every collection has an integer ``id`` row handle and a unique string
business key (``sme_id``, ``session_id``, ...). Array and object sub-records
live in JSON columns as real lists/dicts.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# People and conversations
# =============================================================================


class SME(Base):
    """A subject-matter expert being interviewed."""

    __tablename__ = "smes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sme_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(256))
    role: Mapped[str] = mapped_column(String(256), default="")
    department: Mapped[str] = mapped_column(String(256), default="")
    location: Mapped[str] = mapped_column(String(256), default="")

    contact: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)  # {"email": ..., "phone": ...}
    domains: Mapped[list[str]] = mapped_column(JSON, default=list)
    journey_stages_owned: Mapped[list[str]] = mapped_column(JSON, default=list)
    systems_used: Mapped[list[str]] = mapped_column(JSON, default=list)

    # pending, link_sent, in_progress, completed, validated
    interview_status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    validated_by_sme: Mapped[bool] = mapped_column(Boolean, default=False)
    validation_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<SME(sme_id={self.sme_id}, name={self.full_name}, status={self.interview_status})>"


class InterviewSession(Base):
    """One interview conversation with an SME."""

    __tablename__ = "interview_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    sme_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    interviewer_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    method: Mapped[str] = mapped_column(String(32), default="interview")  # interview, sme_self_service
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)  # active, paused, closed
    conversation_state: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    summary: Mapped[str] = mapped_column(Text, default="")
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<InterviewSession(session_id={self.session_id}, sme={self.sme_id}, status={self.status})>"


class Message(Base):
    """One turn in a session. Append-only."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    session_id: Mapped[str] = mapped_column(String(32), index=True)
    role: Mapped[str] = mapped_column(String(16))  # user, agent
    content: Mapped[str] = mapped_column(Text, default="")

    # Raw LLM payloads for the agent side of the exchange
    extractions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    conflicts: Mapped[list[Any]] = mapped_column(JSON, default=list)
    open_questions: Mapped[list[Any]] = mapped_column(JSON, default=list)
    conversation_state: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Message(message_id={self.message_id}, session={self.session_id}, role={self.role})>"


# =============================================================================
# Knowledge base (shared across sessions, additive writes only)
# =============================================================================


class TechSystem(Base):
    """A software/technology system in use."""

    __tablename__ = "tech_systems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    system_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    system_name: Mapped[str] = mapped_column(String(256), index=True)
    vendor: Mapped[str] = mapped_column(String(256), default="")
    category: Mapped[str] = mapped_column(String(64), default="Other")
    environment: Mapped[str] = mapped_column(String(32), default="production")
    primary_owner_sme_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    users: Mapped[list[str]] = mapped_column(JSON, default=list)
    integration_links: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    manual_workarounds: Mapped[list[Any]] = mapped_column(JSON, default=list)
    fields_or_workflows: Mapped[list[str]] = mapped_column(JSON, default=list)
    source_sme_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    created_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<TechSystem(system_id={self.system_id}, name={self.system_name})>"


class Process(Base):
    """A business process with documented vs. practiced descriptions."""

    __tablename__ = "processes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    process_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    process_name: Mapped[str] = mapped_column(String(256))
    journey_stage: Mapped[str] = mapped_column(String(32), index=True)
    sub_stage: Mapped[str] = mapped_column(String(64), default="")
    owner_sme_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    supporting_sme_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    handoffs: Mapped[list[Any]] = mapped_column(JSON, default=list)
    maturity: Mapped[str] = mapped_column(String(32), default="ad_hoc")

    as_documented: Mapped[str] = mapped_column(Text, default="")
    as_practiced: Mapped[str] = mapped_column(Text, default="")
    discrepancy_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    discrepancy_notes: Mapped[str] = mapped_column(Text, default="")

    conflict_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    conflict_notes: Mapped[str] = mapped_column(Text, default="")  # "; "-joined conflict ids

    source_sme_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Process(process_id={self.process_id}, stage={self.journey_stage})>"


class Gap(Base):
    """An identified shortcoming in the guest journey."""

    __tablename__ = "gaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    gap_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(512))
    description: Mapped[str] = mapped_column(Text, default="")
    journey_stage: Mapped[str] = mapped_column(String(32), default="", index=True)
    process_id: Mapped[str] = mapped_column(String(32), default="")

    gap_type: Mapped[str] = mapped_column(String(32), default="other")
    root_cause: Mapped[str] = mapped_column(Text, default="")
    frequency: Mapped[str] = mapped_column(String(16), default="occasional")
    guest_impact: Mapped[str] = mapped_column(String(16), default="medium")
    source_sme_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    confirmed_by_multiple_smes: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(16), default="open", index=True)  # open, in_progress, resolved, wont_fix
    created_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Gap(gap_id={self.gap_id}, type={self.gap_type}, status={self.status})>"


class JourneyStageRecord(Base):
    """One of the eight fixed guest journey stages."""

    __tablename__ = "journey_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stage_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    journey_stage: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    stage_description: Mapped[str] = mapped_column(Text, default="")

    guest_actions: Mapped[list[Any]] = mapped_column(JSON, default=list)
    frontstage_interactions: Mapped[list[Any]] = mapped_column(JSON, default=list)
    backstage_processes: Mapped[list[Any]] = mapped_column(JSON, default=list)
    technology_touchpoints: Mapped[list[Any]] = mapped_column(JSON, default=list)
    failure_points: Mapped[list[Any]] = mapped_column(JSON, default=list)
    supporting_process_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    supporting_sme_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    created_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<JourneyStageRecord(stage_id={self.stage_id}, stage={self.journey_stage})>"


class Conflict(Base):
    """A disagreement between two SMEs' statements about the same fact."""

    __tablename__ = "conflicts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conflict_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)

    # process_discrepancy, technology_mismatch, ownership_dispute, data_inconsistency
    conflict_type: Mapped[str] = mapped_column(String(32), index=True)
    field: Mapped[str] = mapped_column(String(256), default="")
    severity: Mapped[str] = mapped_column(String(16), default="medium")
    description: Mapped[str] = mapped_column(Text, default="")

    sme_a_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    sme_a_claim: Mapped[str] = mapped_column(Text, default="")
    sme_b_id: Mapped[str] = mapped_column(String(32), default="", index=True)
    sme_b_claim: Mapped[str] = mapped_column(Text, default="")

    related_record_id: Mapped[str] = mapped_column(String(32), default="")
    related_process_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    resolution_status: Mapped[str] = mapped_column(String(16), default="unresolved", index=True)
    resolution_notes: Mapped[str] = mapped_column(Text, default="")
    resolved_by: Mapped[str] = mapped_column(String(64), default="")
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_by: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Conflict(conflict_id={self.conflict_id}, type={self.conflict_type}, status={self.resolution_status})>"


# =============================================================================
# Bookkeeping
# =============================================================================


class Counter(Base):
    """Per-prefix monotonic sequence used for readable ids."""

    __tablename__ = "counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    counter_name: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    current_value: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<Counter(name={self.counter_name}, value={self.current_value})>"


class ProjectState(Base):
    """Eventually-consistent, project-wide completion aggregate."""

    __tablename__ = "project_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    company: Mapped[str] = mapped_column(String(256), default="")
    project_start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    completion: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    open_questions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    next_actions: Mapped[list[Any]] = mapped_column(JSON, default=list)
    completion_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    agent_notes: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<ProjectState(project_id={self.project_id}, updated={self.last_updated})>"
