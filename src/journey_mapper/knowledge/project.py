"""Project-wide completion state.

The ``project_state`` row is a derived aggregate: it is recalculated from the
knowledge collections after turns and closes, and may briefly lag behind them.
"""

import logging
from typing import Any

from journey_mapper.config import settings
from journey_mapper.db.models import (
    SME,
    Conflict,
    Gap,
    JourneyStageRecord,
    Process,
    ProjectState,
    utcnow,
)
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.merge import merge_array
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.models import GapStatus, InterviewStatus, JourneyStage, ResolutionStatus

logger = logging.getLogger(__name__)

JOURNEY_STAGES_TOTAL = len(JourneyStage)


def default_completion() -> dict[str, int]:
    return {
        "smes_identified": 0,
        "smes_interviewed": 0,
        "smes_validated": 0,
        "journey_stages_mapped": 0,
        "journey_stages_total": JOURNEY_STAGES_TOTAL,
        "processes_documented": 0,
        "gaps_identified": 0,
        "gaps_resolved": 0,
        "conflicts_open": 0,
    }


class ProjectTracker:
    """Seeds, reads and recalculates the project state row."""

    def __init__(self, store: KnowledgeStore, ids: IdAllocator, project_id: str | None = None):
        self.store = store
        self.ids = ids
        self.project_id = project_id or settings.PROJECT_ID

    async def seed(self) -> list[str]:
        """Create missing counters and the project row. Safe to run repeatedly."""
        created = [f"Counter: {prefix}" for prefix in await self.ids.seed()]
        if await self.store.get_by(ProjectState, "project_id", self.project_id) is None:
            await self._create_state()
            created.append("ProjectState")
        return created

    async def _create_state(self, completion: dict[str, int] | None = None) -> ProjectState:
        logger.info(f"Creating project state for {self.project_id}")
        return await self.store.insert(
            ProjectState,
            project_id=self.project_id,
            completion=completion or default_completion(),
            open_questions=[],
            next_actions=[],
        )

    async def get_state(self) -> ProjectState:
        """Return the project row, creating a default one if needed."""
        state = await self.store.get_by(ProjectState, "project_id", self.project_id)
        if state is None:
            state = await self._create_state()
        return state

    async def recalculate(self) -> ProjectState:
        """Recount every completion metric from the knowledge collections."""
        interviewed = 0
        for status in (InterviewStatus.COMPLETED, InterviewStatus.VALIDATED):
            interviewed += await self.store.count(SME, interview_status=status.value)

        completion = {
            "smes_identified": await self.store.count(SME),
            "smes_interviewed": interviewed,
            "smes_validated": await self.store.count(SME, interview_status=InterviewStatus.VALIDATED.value),
            "journey_stages_mapped": await self.store.count(JourneyStageRecord),
            "journey_stages_total": JOURNEY_STAGES_TOTAL,
            "processes_documented": await self.store.count(Process),
            "gaps_identified": await self.store.count(Gap),
            "gaps_resolved": await self.store.count(Gap, status=GapStatus.RESOLVED.value),
            "conflicts_open": await self.store.count(
                Conflict, resolution_status=ResolutionStatus.UNRESOLVED.value
            ),
        }
        ratio = min(completion["journey_stages_mapped"] / JOURNEY_STAGES_TOTAL, 1.0)

        state = await self.store.get_by(ProjectState, "project_id", self.project_id)
        if state is None:
            state = await self._create_state(completion)
        state = await self.store.update(
            ProjectState,
            state.id,
            completion=completion,
            completion_ratio=ratio,
            last_updated=utcnow(),
        )
        logger.debug(f"Project {self.project_id} recalculated: {completion}")
        return state

    async def add_open_questions(
        self,
        questions: list[dict[str, Any]],
        session_id: str,
        sme_id: str | None,
    ) -> list[dict[str, Any]]:
        """Append questions to the project's open list, tagged with their origin."""
        if not questions:
            return []

        now = utcnow().isoformat()
        tagged = []
        for question in questions:
            tagged.append(
                {
                    **question,
                    "question_id": await self.ids.next_id("Q"),
                    "session_id": session_id,
                    "sme_id": sme_id,
                    "status": "open",
                    "created_at": now,
                }
            )

        state = await self.get_state()
        await self.store.update(
            ProjectState,
            state.id,
            open_questions=merge_array(state.open_questions, tagged),
            last_updated=utcnow(),
        )
        logger.info(f"Saved {len(tagged)} open question(s) from session {session_id}")
        return tagged

    async def open_questions_for(self, sme_id: str | None) -> list[dict[str, Any]]:
        """Open questions that are untagged or tagged with this SME."""
        state = await self.store.get_by(ProjectState, "project_id", self.project_id)
        if state is None:
            return []
        return [
            q
            for q in state.open_questions or []
            if isinstance(q, dict)
            and q.get("status") == "open"
            and (not q.get("sme_id") or q.get("sme_id") == sme_id)
        ]
