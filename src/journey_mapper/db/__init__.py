"""Database module for the journey mapping knowledge store."""

from journey_mapper.db.database import async_session_maker, engine, init_db
from journey_mapper.db.models import (
    SME,
    Base,
    Conflict,
    Counter,
    Gap,
    InterviewSession,
    JourneyStageRecord,
    Message,
    Process,
    ProjectState,
    TechSystem,
)

__all__ = [
    "Base",
    "SME",
    "InterviewSession",
    "Message",
    "TechSystem",
    "Process",
    "Gap",
    "JourneyStageRecord",
    "Conflict",
    "Counter",
    "ProjectState",
    "engine",
    "async_session_maker",
    "init_db",
]
