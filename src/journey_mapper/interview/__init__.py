"""SME interview pipeline: turns, extraction, conflicts and sessions."""

from journey_mapper.interview.conflicts import ConflictDetector, classify_conflict
from journey_mapper.interview.extraction import ExtractionProcessor
from journey_mapper.interview.models import (
    CreatedRecordsSummary,
    ItemResult,
    SessionClosed,
    SessionOpened,
    SessionTranscript,
    TurnResult,
)
from journey_mapper.interview.orchestrator import SessionOrchestrator
from journey_mapper.interview.prompts import build_system_prompt
from journey_mapper.interview.service import InterviewService, create_interview_service

__all__ = [
    "ConflictDetector",
    "CreatedRecordsSummary",
    "ExtractionProcessor",
    "InterviewService",
    "ItemResult",
    "SessionClosed",
    "SessionOpened",
    "SessionOrchestrator",
    "SessionTranscript",
    "TurnResult",
    "build_system_prompt",
    "classify_conflict",
    "create_interview_service",
]
