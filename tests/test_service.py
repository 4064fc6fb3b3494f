"""End-to-end interview scenarios through InterviewService."""

import pytest

from conftest import structured_reply
from journey_mapper.db.models import SME, InterviewSession, Message, TechSystem
from journey_mapper.exceptions import (
    ForbiddenError,
    NotFoundError,
    SessionClosedError,
    UnauthorizedError,
    ValidationError,
)
from journey_mapper.interview.service import InterviewService, count_extractions
from journey_mapper.llm.exceptions import LLMConnectionError, LLMInvalidResponseError


class TestStartSession:
    """Tests for starting interviewer-led sessions."""

    @pytest.mark.asyncio
    async def test_start_with_registered_sme(self, service, fake_llm, store, sme):
        fake_llm.queue(structured_reply("Welcome Maria! Let's talk about pre-arrival."))

        opened = await service.start_session(sme_id=sme.sme_id, interviewer_id="U-1")

        assert opened.session_id == "SESSION-001"
        assert opened.opening_message == "Welcome Maria! Let's talk about pre-arrival."
        assert opened.conversation_state["current_stage"] == "pre_arrival"
        assert opened.conversation_state["topics_remaining"] == ["check_in"]

        messages = await store.query(Message, session_id="SESSION-001")
        assert len(messages) == 1
        assert messages[0].role == "agent"

        session = await store.get_by(InterviewSession, "session_id", "SESSION-001")
        assert session.status == "active"
        assert session.method == "interview"
        assert session.interviewer_user_id == "U-1"
        assert (await store.get_by(SME, "sme_id", sme.sme_id)).interview_status == "in_progress"

        opening_call = fake_llm.calls[0]
        assert opening_call["messages"][0]["content"].startswith("SESSION_START")
        assert "pre_arrival" in opening_call["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_start_registers_new_sme(self, service, store):
        opened = await service.start_session(
            sme_profile={"full_name": "Ana Silva", "role": "Concierge", "journey_stages_owned": ["in_stay"]}
        )

        sme = await store.get_by(SME, "sme_id", opened.sme_id)
        assert sme.full_name == "Ana Silva"
        assert opened.conversation_state["current_stage"] == "in_stay"

    @pytest.mark.asyncio
    async def test_start_without_stages_defaults_to_discovery(self, service):
        opened = await service.start_session(sme_profile={})
        assert opened.conversation_state["current_stage"] == "discovery"

    @pytest.mark.asyncio
    async def test_start_unknown_sme(self, service):
        with pytest.raises(NotFoundError):
            await service.start_session(sme_id="SME-404")

    @pytest.mark.asyncio
    async def test_opening_failure_creates_nothing(self, service, fake_llm, store, sme):
        fake_llm.queue(LLMConnectionError("down", provider="fake"))

        with pytest.raises(LLMConnectionError):
            await service.start_session(sme_id=sme.sme_id)

        assert await store.count(InterviewSession) == 0
        assert await store.count(Message) == 0


class TestConversation:
    """Tests for messages and quick actions."""

    @pytest.mark.asyncio
    async def test_opera_pms_scenario(self, service, fake_llm, store, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        fake_llm.queue(
            structured_reply(
                "Which Opera screens do you use at arrival?",
                extractions={
                    "systems": [{"system_name": "Opera PMS", "vendor": "Oracle", "category": "PMS", "is_new": True}]
                },
            )
        )

        turn = await service.send_message(opened.session_id, "We check guests in with Opera PMS.")

        assert turn.created_records.systems[0].record_id == "SYS-001"
        system = await store.get_by(TechSystem, "system_id", "SYS-001")
        assert system.system_name == "Opera PMS"
        assert system.source_sme_ids == [sme.sme_id]
        assert await store.count(Message, session_id=opened.session_id) == 3

        # The opening agent message is replayed after the synthetic start cue
        turn_messages = fake_llm.calls[-1]["messages"]
        assert turn_messages[0]["content"].startswith("SESSION_START")
        assert turn_messages[1]["role"] == "assistant"
        assert turn_messages[-1] == {"role": "user", "content": "We check guests in with Opera PMS."}

    @pytest.mark.asyncio
    async def test_double_invalid_reply_adds_no_messages(self, service, fake_llm, store, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        fake_llm.queue("garbage", "more garbage")

        with pytest.raises(LLMInvalidResponseError):
            await service.send_message(opened.session_id, "Hello")

        assert await store.count(Message, session_id=opened.session_id) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "x" * 5001])
    async def test_message_content_validated(self, service, fake_llm, sme, content):
        opened = await service.start_session(sme_id=sme.sme_id)
        calls_before = len(fake_llm.calls)

        with pytest.raises(ValidationError):
            await service.send_message(opened.session_id, content)
        assert len(fake_llm.calls) == calls_before

    @pytest.mark.asyncio
    async def test_message_at_limit_accepted(self, service, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        turn = await service.send_message(opened.session_id, "x" * 5000)
        assert turn.reply == "Tell me more."

    @pytest.mark.asyncio
    async def test_next_routes_command(self, service, fake_llm, sme):
        opened = await service.start_session(sme_id=sme.sme_id)

        result = await service.quick_action(opened.session_id, "next")

        assert result["action"] == "next"
        assert result["turn"].reply == "Tell me more."
        assert fake_llm.calls[-1]["messages"][-1]["content"].startswith("COMMAND:NEXT")

    @pytest.mark.asyncio
    async def test_correct_requires_record_id(self, service, fake_llm, sme):
        opened = await service.start_session(sme_id=sme.sme_id)

        with pytest.raises(ValidationError):
            await service.quick_action(opened.session_id, "correct")

        result = await service.quick_action(opened.session_id, "correct", record_id="PROC-002")
        assert "PROC-002" in fake_llm.calls[-1]["messages"][-1]["content"]
        assert result["action"] == "correct"

    @pytest.mark.asyncio
    async def test_unknown_action(self, service, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        with pytest.raises(ValidationError):
            await service.quick_action(opened.session_id, "dance")

    @pytest.mark.asyncio
    async def test_help_and_status(self, service, sme):
        opened = await service.start_session(sme_id=sme.sme_id)

        help_result = await service.quick_action(opened.session_id, "help")
        status = await service.quick_action(opened.session_id, "status")

        assert {c["action"] for c in help_result["commands"]} >= {"next", "back", "pause", "done"}
        assert status["completion"]["smes_identified"] == 1
        assert status["completion"]["journey_stages_total"] == 8

    @pytest.mark.asyncio
    async def test_summary_counts_agent_extractions(self, service, fake_llm, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        fake_llm.queue(
            structured_reply(
                "ok",
                extractions={
                    "systems": [{"system_name": "Opera", "is_new": True}],
                    "process_steps": [{"description": "a"}, {"description": "b"}],
                    "gaps": [{"title": "g"}],
                },
                conflicts_detected=[{"field": "owner"}],
            )
        )
        await service.send_message(opened.session_id, "Lots of detail")

        result = await service.quick_action(opened.session_id, "summary")

        assert result["summary"] == {
            "systems_mentioned": 1,
            "process_steps_mentioned": 2,
            "gaps_identified": 1,
            "conflicts_found": 1,
            "message_count": 3,
        }


class TestPauseResumeClose:
    """Tests for the session lifecycle."""

    @pytest.mark.asyncio
    async def test_pause_then_resume_keeps_ordered_history(self, service, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        await service.send_message(opened.session_id, "First answer")

        paused = await service.quick_action(opened.session_id, "pause")
        assert paused["status"] == "paused"
        assert paused["message"] == "Session paused. You can resume anytime."

        transcript = await service.resume_session(opened.session_id)
        assert transcript.session.status == "paused"
        assert transcript.sme.sme_id == sme.sme_id
        assert [m.role for m in transcript.messages] == ["agent", "user", "agent"]

        await service.send_message(opened.session_id, "Second answer")
        transcript = await service.resume_session(opened.session_id)
        assert transcript.session.status == "active"
        assert [m.content for m in transcript.messages if m.role == "user"] == ["First answer", "Second answer"]
        assert len(transcript.messages) == 5

    @pytest.mark.asyncio
    async def test_close_with_llm_summary(self, service, fake_llm, store, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        fake_llm.queue(structured_reply("Key findings: Opera is central."))

        closed = await service.close_session(opened.session_id)

        assert closed.summary == "Key findings: Opera is central."
        assert closed.duration_minutes >= 0
        session = await store.get_by(InterviewSession, "session_id", opened.session_id)
        assert session.status == "closed"
        assert session.closed_at is not None
        assert session.summary == "Key findings: Opera is central."
        assert (await store.get_by(SME, "sme_id", sme.sme_id)).interview_status == "completed"

        state = await service.project.get_state()
        assert state.completion["smes_interviewed"] == 1

    @pytest.mark.asyncio
    async def test_close_falls_back_when_llm_fails(self, service, fake_llm, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        fake_llm.queue(LLMConnectionError("down", provider="fake"))

        closed = await service.close_session(opened.session_id)

        assert closed.summary == (
            "Session completed. Extracted: 0 systems, 0 process steps, 0 gaps, 0 conflicts."
        )

    @pytest.mark.asyncio
    async def test_close_twice_rejected(self, service, fake_llm, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        await service.quick_action(opened.session_id, "done")
        calls_before = len(fake_llm.calls)

        with pytest.raises(SessionClosedError):
            await service.close_session(opened.session_id)
        with pytest.raises(SessionClosedError):
            await service.send_message(opened.session_id, "Hello?")
        with pytest.raises(SessionClosedError):
            await service.pause_session(opened.session_id)
        assert len(fake_llm.calls) == calls_before

    @pytest.mark.asyncio
    async def test_validated_sme_not_downgraded(self, service, smes, store, sme):
        opened = await service.start_session(sme_id=sme.sme_id)
        await smes.validate(sme.sme_id)

        await service.close_session(opened.session_id)

        assert (await store.get_by(SME, "sme_id", sme.sme_id)).interview_status == "validated"

    @pytest.mark.asyncio
    async def test_list_sessions_newest_first(self, service, smes, sme):
        other = await smes.register(full_name="Tom Reyes")
        await service.start_session(sme_id=sme.sme_id)
        await service.start_session(sme_id=other.sme_id)

        rows = await service.list_sessions()

        assert [r["session_id"] for r in rows] == ["SESSION-002", "SESSION-001"]
        assert rows[0]["sme_name"] == "Tom Reyes"
        assert rows[1]["current_stage"] == "pre_arrival"

    def test_count_extractions_ignores_user_messages(self):
        messages = [
            Message(role="user", extractions={"systems": [{}]}, conflicts=[]),
            Message(role="agent", extractions={"systems": [{}], "gaps": [{}, {}]}, conflicts=[{}]),
        ]
        assert count_extractions(messages) == {"systems": 1, "process_steps": 0, "gaps": 2, "conflicts": 1}


class TestSelfService:
    """Tests for token-authenticated self-service sessions."""

    @pytest.fixture
    def tokens(self, sme):
        return {"token-maria": sme.sme_id}

    @pytest.fixture
    def self_service(self, store, ids, gateway, tokens):
        async def verify(token: str) -> str:
            if token not in tokens:
                raise UnauthorizedError("Invalid or expired link")
            return tokens[token]

        return InterviewService(store, ids, gateway, token_verifier=verify)

    @pytest.mark.asyncio
    async def test_start_and_reuse(self, self_service, fake_llm, store):
        first = await self_service.start_self_service("token-maria")
        second = await self_service.start_self_service("token-maria")

        assert first.resumed is False
        assert second.resumed is True
        assert second.session_id == first.session_id
        assert second.opening_message == first.opening_message
        assert len(fake_llm.calls) == 1
        session = await store.get_by(InterviewSession, "session_id", first.session_id)
        assert session.method == "sme_self_service"
        assert session.interviewer_user_id is None
        await self_service.wait_for_background()

    @pytest.mark.asyncio
    async def test_closed_session_not_reused(self, self_service):
        first = await self_service.start_self_service("token-maria")
        await self_service.close_self_service(first.session_id, "token-maria")

        second = await self_service.start_self_service("token-maria")

        assert second.session_id != first.session_id
        assert second.resumed is False
        await self_service.wait_for_background()

    @pytest.mark.asyncio
    async def test_message_and_resume(self, self_service):
        opened = await self_service.start_self_service("token-maria")

        turn = await self_service.send_self_service_message(opened.session_id, "token-maria", "We email guests")
        transcript = await self_service.resume_self_service(opened.session_id, "token-maria")

        assert turn.reply == "Tell me more."
        assert len(transcript.messages) == 3
        await self_service.wait_for_background()

    @pytest.mark.asyncio
    async def test_other_smes_session_forbidden(self, self_service, service, smes, tokens):
        other = await smes.register(full_name="Tom Reyes")
        others_session = await service.start_session(sme_id=other.sme_id)

        with pytest.raises(ForbiddenError):
            await self_service.send_self_service_message(others_session.session_id, "token-maria", "Hi")
        with pytest.raises(ForbiddenError):
            await self_service.resume_self_service(others_session.session_id, "token-maria")

    @pytest.mark.asyncio
    async def test_bad_token(self, self_service):
        with pytest.raises(UnauthorizedError):
            await self_service.start_self_service("token-nobody")
        with pytest.raises(UnauthorizedError):
            await self_service.start_self_service("")

    @pytest.mark.asyncio
    async def test_no_verifier_configured(self, service):
        with pytest.raises(UnauthorizedError):
            await service.start_self_service("token-maria")
