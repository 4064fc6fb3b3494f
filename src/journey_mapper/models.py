"""Domain vocabulary shared by the knowledge store and the interview pipeline."""

from enum import Enum


class JourneyStage(str, Enum):
    """The eight guest journey stages, in lifecycle order."""

    DISCOVERY = "discovery"
    BOOKING = "booking"
    PRE_ARRIVAL = "pre_arrival"
    CHECK_IN = "check_in"
    IN_STAY = "in_stay"
    CHECK_OUT = "check_out"
    POST_STAY = "post_stay"
    RE_ENGAGEMENT = "re_engagement"

    @classmethod
    def ordered(cls) -> list[str]:
        return [stage.value for stage in cls]

    @classmethod
    def normalize(cls, name: str | None) -> str | None:
        """Map free-form names like ``Check-In`` or ``checkin`` to a stage value.

        Returns None for anything that is not one of the eight stages.
        """
        if not name:
            return None
        key = name.strip().lower().replace("-", "_").replace(" ", "_")
        if key in cls._value2member_map_:
            return key
        compact = key.replace("_", "")
        for stage in cls:
            if stage.value.replace("_", "") == compact:
                return stage.value
        return None


class SessionStatus(str, Enum):
    """Interview session lifecycle."""

    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class SessionMethod(str, Enum):
    """Who drives the session."""

    INTERVIEW = "interview"
    SME_SELF_SERVICE = "sme_self_service"


class InterviewStatus(str, Enum):
    """SME interview progress. Only ever moves forward."""

    PENDING = "pending"
    LINK_SENT = "link_sent"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VALIDATED = "validated"

    @property
    def rank(self) -> int:
        return list(InterviewStatus).index(self)


class MessageRole(str, Enum):
    """Message author as stored. Maps to user/assistant for the LLM."""

    USER = "user"
    AGENT = "agent"


class GapStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    WONT_FIX = "wont_fix"


class ConflictType(str, Enum):
    """Classification of a disagreement between two SMEs."""

    PROCESS_DISCREPANCY = "process_discrepancy"
    TECHNOLOGY_MISMATCH = "technology_mismatch"
    OWNERSHIP_DISPUTE = "ownership_dispute"
    DATA_INCONSISTENCY = "data_inconsistency"


class ResolutionStatus(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"


class QuickAction(str, Enum):
    """Shortcut commands available during an interview."""

    NEXT = "next"
    BACK = "back"
    CORRECT = "correct"
    PAUSE = "pause"
    SUMMARY = "summary"
    STATUS = "status"
    HELP = "help"
    DONE = "done"


def advance_interview_status(current: str | None, target: InterviewStatus) -> str:
    """Return ``target`` if it ranks above ``current``, else ``current``.

    Unknown stored values are treated as ``pending``.
    """
    try:
        current_status = InterviewStatus(current)
    except ValueError:
        current_status = InterviewStatus.PENDING
    if target.rank > current_status.rank:
        return target.value
    return current_status.value
