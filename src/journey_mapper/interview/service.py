"""Session-level API: start, talk, pause, close and resume interviews.

Interviewer sessions are addressed directly by id. Self-service sessions are
opened by the SME from an emailed link; the link token is checked by an
injected verifier that maps it to an SME id.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from journey_mapper.config import settings
from journey_mapper.db.models import SME, InterviewSession, Message, utcnow
from journey_mapper.exceptions import (
    ForbiddenError,
    SessionClosedError,
    UnauthorizedError,
    ValidationError,
)
from journey_mapper.interview.models import (
    SessionClosed,
    SessionOpened,
    SessionTranscript,
    TurnResult,
)
from journey_mapper.interview.orchestrator import SessionOrchestrator
from journey_mapper.interview.prompts import (
    build_opening_request,
    build_session_summary_request,
    build_system_prompt,
    quick_action_command,
)
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.llm.exceptions import LLMError
from journey_mapper.llm.factory import get_llm
from journey_mapper.llm.gateway import LLMGateway
from journey_mapper.llm.llm import BaseLLM
from journey_mapper.models import (
    InterviewStatus,
    JourneyStage,
    MessageRole,
    QuickAction,
    SessionMethod,
    SessionStatus,
)

logger = logging.getLogger(__name__)

# Maps a self-service link token to the SME it was issued for
TokenVerifier = Callable[[str], Awaitable[str]]

HELP_COMMANDS = [
    {"action": "next", "description": "Skip to next topic"},
    {"action": "back", "description": "Revisit previous topic"},
    {"action": "correct", "description": "Correct a previous record (requires record_id)"},
    {"action": "pause", "description": "Pause and save the session"},
    {"action": "summary", "description": "Show extraction counts for this session"},
    {"action": "status", "description": "Show overall project completion"},
    {"action": "done", "description": "Close and summarise the session"},
]

PAUSED_MESSAGE = "Session paused. You can resume anytime."


def count_extractions(messages: list[Message]) -> dict[str, int]:
    """Tally what the agent extracted over a session's messages."""
    counts = {"systems": 0, "process_steps": 0, "gaps": 0, "conflicts": 0}
    for message in messages:
        if message.role != MessageRole.AGENT.value:
            continue
        extractions = message.extractions or {}
        counts["systems"] += len(extractions.get("systems") or [])
        counts["process_steps"] += len(extractions.get("process_steps") or [])
        counts["gaps"] += len(extractions.get("gaps") or [])
        counts["conflicts"] += len(message.conflicts or [])
    return counts


def initial_conversation_state(sme: SME) -> dict[str, Any]:
    stages = list(sme.journey_stages_owned or [])
    return {
        "current_stage": stages[0] if stages else JourneyStage.DISCOVERY.value,
        "current_topic": "",
        "topics_covered": [],
        "topics_remaining": stages[1:],
        "should_move_to_next_stage": False,
        "stage_completion_estimate": 0.0,
    }


class InterviewService:
    """Entry point for callers (CLI, HTTP layer) driving interviews."""

    def __init__(
        self,
        store: KnowledgeStore,
        ids: IdAllocator,
        gateway: LLMGateway,
        token_verifier: TokenVerifier | None = None,
    ):
        self.store = store
        self.ids = ids
        self.gateway = gateway
        self.token_verifier = token_verifier
        self.orchestrator = SessionOrchestrator(store, ids, gateway)
        self.smes = self.orchestrator.smes
        self.project = self.orchestrator.project

    # ── Starting ─────────────────────────────────────────────────────────────

    async def start_session(
        self,
        sme_id: str | None = None,
        sme_profile: dict[str, Any] | None = None,
        interviewer_id: str = "",
    ) -> SessionOpened:
        """Start an interviewer-led session, registering the SME if needed."""
        if sme_id:
            sme = await self.smes.get(sme_id)
        else:
            profile = sme_profile or {}
            sme = await self.smes.register(
                full_name=profile.get("full_name") or "Unknown SME",
                role=profile.get("role", ""),
                department=profile.get("department", ""),
                location=profile.get("location", ""),
                contact=profile.get("contact"),
                domains=profile.get("domains"),
                journey_stages_owned=profile.get("journey_stages_owned"),
                systems_used=profile.get("systems_used"),
                created_by=interviewer_id,
            )
        return await self._open_session(sme, SessionMethod.INTERVIEW, interviewer_id or None)

    async def _open_session(
        self, sme: SME, method: SessionMethod, interviewer_id: str | None
    ) -> SessionOpened:
        state = initial_conversation_state(sme)
        stage = state["current_stage"]

        system_prompt = build_system_prompt(sme, state, None, [], [])
        opening = await self.gateway.generate_summary(system_prompt, build_opening_request(stage))
        opening_state = opening.state_updates() or state

        session_id = await self.ids.next_id("SESSION")
        await self.store.insert(
            InterviewSession,
            session_id=session_id,
            sme_id=sme.sme_id,
            interviewer_user_id=interviewer_id,
            method=method.value,
            status=SessionStatus.ACTIVE.value,
            conversation_state=state,
        )
        await self.store.insert(
            Message,
            message_id=await self.ids.next_id("MSG"),
            session_id=session_id,
            role=MessageRole.AGENT.value,
            content=opening.reply,
            extractions=opening.extractions.model_dump(),
            conversation_state=opening_state,
            timestamp=utcnow(),
        )
        await self.smes.advance_status(sme.sme_id, InterviewStatus.IN_PROGRESS)
        logger.info(f"Started {method.value} session {session_id} for {sme.sme_id} at stage {stage}")

        return SessionOpened(
            session_id=session_id,
            sme_id=sme.sme_id,
            opening_message=opening.reply,
            conversation_state=state,
        )

    # ── Talking ──────────────────────────────────────────────────────────────

    async def send_message(self, session_id: str, content: str, actor_id: str = "") -> TurnResult:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is required")
        if len(content) > settings.MAX_MESSAGE_CHARS:
            raise ValidationError(
                f"Message content exceeds {settings.MAX_MESSAGE_CHARS} characters"
            )
        return await self.orchestrator.process_turn(session_id, content, actor_id)

    async def quick_action(
        self,
        session_id: str,
        action: str | QuickAction,
        actor_id: str = "",
        record_id: str | None = None,
    ) -> dict[str, Any]:
        """Run one of the interview shortcut commands."""
        try:
            action = QuickAction(action)
        except ValueError:
            raise ValidationError(f"Unknown action: {action}") from None

        if action in (QuickAction.NEXT, QuickAction.BACK, QuickAction.CORRECT):
            if action == QuickAction.CORRECT and not record_id:
                raise ValidationError("The correct action requires a record_id")
            command = quick_action_command(action, record_id)
            turn = await self.orchestrator.process_turn(session_id, command, actor_id)
            return {"action": action.value, "turn": turn}

        if action == QuickAction.PAUSE:
            await self.pause_session(session_id)
            return {"action": action.value, "status": SessionStatus.PAUSED.value, "message": PAUSED_MESSAGE}

        if action == QuickAction.SUMMARY:
            await self.orchestrator.get_session(session_id)
            messages = await self.orchestrator.load_history(session_id)
            counts = count_extractions(messages)
            return {
                "action": action.value,
                "summary": {
                    "systems_mentioned": counts["systems"],
                    "process_steps_mentioned": counts["process_steps"],
                    "gaps_identified": counts["gaps"],
                    "conflicts_found": counts["conflicts"],
                    "message_count": len(messages),
                },
            }

        if action == QuickAction.STATUS:
            state = await self.project.recalculate()
            return {
                "action": action.value,
                "completion": state.completion,
                "completion_ratio": state.completion_ratio,
            }

        if action == QuickAction.HELP:
            return {"action": action.value, "commands": HELP_COMMANDS}

        closed = await self.close_session(session_id)
        return {"action": action.value, "closed": closed}

    async def pause_session(self, session_id: str) -> InterviewSession:
        session = await self.orchestrator.get_session(session_id)
        if session.status == SessionStatus.CLOSED.value:
            raise SessionClosedError(session_id)
        logger.info(f"Session {session_id} paused")
        return await self.store.update(
            InterviewSession, session.id, status=SessionStatus.PAUSED.value
        )

    # ── Closing ──────────────────────────────────────────────────────────────

    async def close_session(self, session_id: str) -> SessionClosed:
        """Summarise and close a session. Closing twice is an error."""
        session = await self.orchestrator.get_session(session_id)
        if session.status == SessionStatus.CLOSED.value:
            raise SessionClosedError(session_id)

        messages = await self.orchestrator.load_history(session_id)
        counts = count_extractions(messages)

        system_prompt, summary_messages = build_session_summary_request(len(messages), counts)
        try:
            summary = (await self.gateway.generate_summary(system_prompt, summary_messages)).reply
        except LLMError as e:
            logger.warning(f"Summary generation failed for {session_id}, using fallback: {e}")
            summary = (
                f"Session completed. Extracted: {counts['systems']} systems, "
                f"{counts['process_steps']} process steps, {counts['gaps']} gaps, "
                f"{counts['conflicts']} conflicts."
            )

        closed_at = utcnow()
        duration = max(0, round((closed_at - session.created_at).total_seconds() / 60))
        await self.store.update(
            InterviewSession,
            session.id,
            status=SessionStatus.CLOSED.value,
            closed_at=closed_at,
            duration_minutes=duration,
            summary=summary,
        )
        logger.info(f"Session {session_id} closed after {duration} minute(s)")

        if session.sme_id:
            try:
                await self.smes.advance_status(session.sme_id, InterviewStatus.COMPLETED)
            except Exception as e:
                logger.warning(f"Could not mark {session.sme_id} completed: {e}")

        try:
            await self.project.recalculate()
        except Exception as e:
            logger.warning(f"Project recalculation failed after closing {session_id}: {e}")

        return SessionClosed(
            session_id=session_id, summary=summary, counts=counts, duration_minutes=duration
        )

    # ── Reading ──────────────────────────────────────────────────────────────

    async def resume_session(self, session_id: str) -> SessionTranscript:
        """Full ordered history and state of a session."""
        session = await self.orchestrator.get_session(session_id)
        sme = await self.store.get_by(SME, "sme_id", session.sme_id) if session.sme_id else None
        messages = await self.orchestrator.load_history(session_id)
        return SessionTranscript(
            session=session,
            sme=sme,
            messages=messages,
            conversation_state=session.conversation_state or {},
        )

    async def list_sessions(self) -> list[dict[str, Any]]:
        """All sessions, newest first, with the SME name attached."""
        sessions = await self.store.query(InterviewSession, order_by=("created_at", "id"), descending=True)
        names = {sme.sme_id: sme.full_name for sme in await self.store.query(SME)}
        return [
            {
                "session_id": s.session_id,
                "sme_id": s.sme_id,
                "sme_name": names.get(s.sme_id, ""),
                "status": s.status,
                "method": s.method,
                "current_stage": (s.conversation_state or {}).get("current_stage", ""),
                "created_at": s.created_at,
                "duration_minutes": s.duration_minutes,
            }
            for s in sessions
        ]

    # ── Self-service ─────────────────────────────────────────────────────────

    async def _verify(self, token: str) -> str:
        if self.token_verifier is None:
            raise UnauthorizedError("Self-service links are not configured")
        if not token:
            raise UnauthorizedError("Missing self-service token")
        return await self.token_verifier(token)

    async def _owned_session(self, session_id: str, token: str) -> InterviewSession:
        sme_id = await self._verify(token)
        session = await self.orchestrator.get_session(session_id)
        if session.sme_id != sme_id:
            raise ForbiddenError(f"Session {session_id} does not belong to {sme_id}")
        return session

    async def start_self_service(self, token: str) -> SessionOpened:
        """Open, or reuse, the SME's self-service session."""
        sme_id = await self._verify(token)
        for session in await self.store.query(
            InterviewSession,
            descending=True,
            sme_id=sme_id,
            method=SessionMethod.SME_SELF_SERVICE.value,
        ):
            if session.status != SessionStatus.CLOSED.value:
                history = await self.orchestrator.load_history(session.session_id)
                last_agent = next(
                    (m.content for m in reversed(history) if m.role == MessageRole.AGENT.value), ""
                )
                logger.info(f"Reusing self-service session {session.session_id} for {sme_id}")
                return SessionOpened(
                    session_id=session.session_id,
                    sme_id=sme_id,
                    opening_message=last_agent,
                    conversation_state=session.conversation_state or {},
                    resumed=True,
                )

        sme = await self.smes.get(sme_id)
        return await self._open_session(sme, SessionMethod.SME_SELF_SERVICE, None)

    async def resume_self_service(self, session_id: str, token: str) -> SessionTranscript:
        await self._owned_session(session_id, token)
        return await self.resume_session(session_id)

    async def send_self_service_message(self, session_id: str, token: str, content: str) -> TurnResult:
        session = await self._owned_session(session_id, token)
        if session.status == SessionStatus.CLOSED.value:
            raise SessionClosedError(session_id)
        return await self.send_message(session_id, content, actor_id="")

    async def close_self_service(self, session_id: str, token: str) -> SessionClosed:
        await self._owned_session(session_id, token)
        return await self.close_session(session_id)

    async def wait_for_background(self) -> None:
        await self.orchestrator.wait_for_background()


async def create_interview_service(
    llm: BaseLLM | None = None,
    token_verifier: TokenVerifier | None = None,
) -> InterviewService:
    """Wire an :class:`InterviewService` against the configured database and LLM."""
    store = KnowledgeStore()
    ids = IdAllocator(store)
    gateway = LLMGateway(llm or await get_llm())
    return InterviewService(store, ids, gateway, token_verifier=token_verifier)
