"""One interview turn, end to end.

Load session context, ask the LLM, apply its extractions and conflicts,
then persist the exchange and the new conversation state. Nothing is written
to the transcript unless the LLM produced a usable structured reply.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from journey_mapper.config import settings
from journey_mapper.db.models import (
    SME,
    Gap,
    InterviewSession,
    Message,
    Process,
    TechSystem,
    utcnow,
)
from journey_mapper.exceptions import NotFoundError, SessionClosedError
from journey_mapper.interview.conflicts import ConflictDetector
from journey_mapper.interview.extraction import ExtractionProcessor
from journey_mapper.interview.models import CreatedRecordsSummary, ItemResult, TurnResult
from journey_mapper.interview.prompts import (
    build_system_prompt,
    compact_conflicts,
    compact_existing_records,
    compact_open_questions,
    session_start_cue,
)
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.merge import union_values
from journey_mapper.knowledge.project import ProjectTracker
from journey_mapper.knowledge.smes import SmeRegistry
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.llm.gateway import LLMGateway
from journey_mapper.llm.schemas import OpenQuestion
from journey_mapper.models import (
    GapStatus,
    InterviewStatus,
    JourneyStage,
    MessageRole,
    SessionStatus,
)

logger = logging.getLogger(__name__)

TIMESTAMP_STEP = timedelta(milliseconds=1)


def default_conversation_state() -> dict[str, Any]:
    return {
        "current_stage": JourneyStage.DISCOVERY.value,
        "topics_covered": [],
        "topics_remaining": [],
    }


def merge_conversation_state(stored: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Overlay the LLM's state keys and accumulate covered topics."""
    merged = {**default_conversation_state(), **(stored or {}), **updates}
    merged["topics_covered"] = union_values(
        (stored or {}).get("topics_covered"), updates.get("topics_covered_this_message")
    )
    return merged


def next_timestamps(last: datetime | None, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Timestamps for a user/agent pair that sort after ``last``."""
    user_ts = now or utcnow()
    if last is not None and user_ts <= last:
        user_ts = last + TIMESTAMP_STEP
    return user_ts, user_ts + TIMESTAMP_STEP


def to_llm_messages(history: list[Message], stage: str) -> list[dict[str, str]]:
    """Map stored messages to LLM roles, opening with a user turn."""
    messages = [
        {
            "role": "assistant" if m.role == MessageRole.AGENT.value else "user",
            "content": m.content or "",
        }
        for m in history
    ]
    if messages and messages[0]["role"] == "assistant":
        messages.insert(0, {"role": "user", "content": session_start_cue(stage)})
    return messages


class SessionOrchestrator:
    """Drives a single conversational turn and owns message persistence."""

    def __init__(
        self,
        store: KnowledgeStore,
        ids: IdAllocator,
        gateway: LLMGateway,
        history_limit: int | None = None,
    ):
        self.store = store
        self.ids = ids
        self.gateway = gateway
        self.history_limit = history_limit or settings.MAX_HISTORY_MESSAGES
        self.extraction = ExtractionProcessor(store, ids)
        self.conflicts = ConflictDetector(store, ids)
        self.project = ProjectTracker(store, ids)
        self.smes = SmeRegistry(store, ids)
        self._background: set[asyncio.Task] = set()

    async def get_session(self, session_id: str) -> InterviewSession:
        session = await self.store.get_by(InterviewSession, "session_id", session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def load_history(self, session_id: str, limit: int | None = None) -> list[Message]:
        """Messages of one session in (timestamp, id) order, optionally only the tail."""
        if limit is None:
            return await self.store.query(Message, order_by=("timestamp", "id"), session_id=session_id)
        recent = await self.store.query(
            Message, order_by=("timestamp", "id"), descending=True, limit=limit, session_id=session_id
        )
        return list(reversed(recent))

    async def process_turn(self, session_id: str, user_text: str, actor_id: str = "") -> TurnResult:
        """Run one interview turn.

        Raises:
            NotFoundError: The session does not exist
            SessionClosedError: The session was already closed
            LLMInvalidResponseError: The LLM reply was unusable after retry
        """
        session = await self.get_session(session_id)
        if session.status == SessionStatus.CLOSED.value:
            raise SessionClosedError(session_id)

        sme = await self.store.get_by(SME, "sme_id", session.sme_id) if session.sme_id else None
        sme_id = sme.sme_id if sme else None
        state = {**default_conversation_state(), **(session.conversation_state or {})}
        current_stage = JourneyStage.normalize(state.get("current_stage")) or JourneyStage.DISCOVERY.value

        history = await self.load_history(session_id, limit=self.history_limit)
        transcript = to_llm_messages(history, current_stage)
        transcript.append({"role": "user", "content": user_text})

        open_conflicts = await self.conflicts.open_conflicts_for(sme_id) if sme_id else []
        system_prompt = build_system_prompt(
            sme,
            state,
            await self._knowledge_snapshot(current_stage),
            compact_conflicts(open_conflicts),
            compact_open_questions(await self._open_questions(sme_id)),
        )
        logger.debug(f"Turn {session_id}: {len(transcript)} message(s), stage={current_stage}")

        reply = await self.gateway.generate(system_prompt, transcript)

        created = await self._apply_extractions(reply.extractions, sme_id, session_id, actor_id, current_stage)
        conflict_results = await self._apply_conflicts(reply.conflicts_detected, sme_id, actor_id)
        open_questions = await self._save_open_questions(reply.open_questions, session_id, sme_id)

        state_updates = reply.state_updates()
        extractions_payload = reply.extractions.model_dump()

        # Allocate both ids before writing either message
        user_message_id = await self.ids.next_id("MSG")
        agent_message_id = await self.ids.next_id("MSG")

        user_ts, agent_ts = next_timestamps(history[-1].timestamp if history else None)
        await self.store.insert(
            Message,
            message_id=user_message_id,
            session_id=session_id,
            role=MessageRole.USER.value,
            content=user_text,
            timestamp=user_ts,
        )
        await self.store.insert(
            Message,
            message_id=agent_message_id,
            session_id=session_id,
            role=MessageRole.AGENT.value,
            content=reply.reply,
            extractions=extractions_payload,
            conflicts=reply.conflicts_detected,
            open_questions=open_questions,
            conversation_state=state_updates,
            timestamp=agent_ts,
        )

        merged_state = merge_conversation_state(session.conversation_state, state_updates)
        session_updates: dict[str, Any] = {"conversation_state": merged_state}
        if session.status == SessionStatus.PAUSED.value:
            logger.info(f"Session {session_id} resumed by new message")
            session_updates["status"] = SessionStatus.ACTIVE.value
        await self.store.update(InterviewSession, session.id, **session_updates)

        if sme_id:
            await self._mark_in_progress(sme_id)

        self.schedule_recalculation()

        return TurnResult(
            reply=reply.reply,
            extractions=extractions_payload,
            conflicts=reply.conflicts_detected,
            open_questions=open_questions,
            conversation_state=merged_state,
            created_records=created,
            conflict_ids=[r.record_id for r in conflict_results if r.ok and r.record_id],
            conflict_results=conflict_results,
        )

    # ── Context loading ──────────────────────────────────────────────────────

    async def _knowledge_snapshot(self, current_stage: str) -> dict[str, list[dict[str, Any]]]:
        systems = await self.store.query(TechSystem)
        processes = await self.store.query(Process, journey_stage=current_stage)
        gaps = await self.store.query(Gap, status=GapStatus.OPEN.value)
        return compact_existing_records(systems, processes, gaps)

    async def _open_questions(self, sme_id: str | None) -> list[dict[str, Any]]:
        try:
            return await self.project.open_questions_for(sme_id)
        except Exception as e:
            logger.warning(f"Could not load open questions: {e}")
            return []

    # ── Applying the reply ───────────────────────────────────────────────────

    async def _apply_extractions(
        self, extractions: Any, sme_id: str | None, session_id: str, actor_id: str, current_stage: str
    ) -> CreatedRecordsSummary:
        try:
            return await self.extraction.apply(extractions, sme_id, session_id, actor_id, current_stage)
        except Exception as e:
            logger.error(f"Extraction processing failed for {session_id}: {e}", exc_info=True)
            return CreatedRecordsSummary()

    async def _apply_conflicts(
        self, conflict_items: list[Any], sme_id: str | None, actor_id: str
    ) -> list[ItemResult]:
        try:
            return await self.conflicts.detect(conflict_items, sme_id, actor_id)
        except Exception as e:
            logger.error(f"Conflict processing failed: {e}", exc_info=True)
            return []

    async def _save_open_questions(
        self, raw_questions: list[Any], session_id: str, sme_id: str | None
    ) -> list[dict[str, Any]]:
        """Validate and store open questions. Returns the ones kept."""
        questions = []
        for raw in raw_questions:
            try:
                questions.append(OpenQuestion.model_validate(raw).model_dump())
            except ValidationError as e:
                logger.warning(f"Dropping malformed open question: {e}")
        if not questions:
            return []
        try:
            return await self.project.add_open_questions(questions, session_id, sme_id)
        except Exception as e:
            logger.warning(f"Could not save open questions for {session_id}: {e}")
            return questions

    async def _mark_in_progress(self, sme_id: str) -> None:
        try:
            await self.smes.advance_status(sme_id, InterviewStatus.IN_PROGRESS)
        except Exception as e:
            logger.warning(f"Could not update interview status for {sme_id}: {e}")

    # ── Background recalculation ─────────────────────────────────────────────

    def schedule_recalculation(self) -> None:
        """Recalculate project completion without holding up the caller."""
        task = asyncio.create_task(self._recalculate())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _recalculate(self) -> None:
        try:
            await self.project.recalculate()
        except Exception as e:
            logger.warning(f"Project recalculation failed: {e}")

    async def wait_for_background(self) -> None:
        """Await any recalculations still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
