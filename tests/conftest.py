"""Shared fixtures: a throwaway SQLite database per test and a scripted LLM."""

import json
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from journey_mapper.db.database import _set_sqlite_pragma
from journey_mapper.db.models import Base
from journey_mapper.interview.orchestrator import SessionOrchestrator
from journey_mapper.interview.service import InterviewService
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.project import ProjectTracker
from journey_mapper.knowledge.smes import SmeRegistry
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.llm.gateway import LLMGateway
from journey_mapper.llm.llm import BaseLLM, ChatMessages


class FakeLLM(BaseLLM):
    """LLM double that replays queued responses and records every call.

    Queued dicts are sent as JSON text, strings are sent verbatim and
    exceptions are raised. With nothing queued it answers with a minimal
    valid structured reply.
    """

    def __init__(self, responses: list[Any] | None = None):
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def chat(self, system: str, messages: ChatMessages, max_tokens: int | None = None) -> str:
        self.calls.append(
            {"system": system, "messages": [dict(m) for m in messages], "max_tokens": max_tokens}
        )
        if not self.responses:
            return json.dumps({"reply": "Tell me more."})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    async def check_health(self) -> bool:
        return True


def structured_reply(reply: str = "Got it.", **sections: Any) -> dict[str, Any]:
    """Build a structured LLM reply with empty defaults for every section."""
    extractions = {
        "systems": [],
        "process_steps": [],
        "gaps": [],
        "journey_touchpoints": [],
        "sme_updates": {},
    }
    extractions.update(sections.pop("extractions", {}))
    return {
        "reply": reply,
        "extractions": extractions,
        "conflicts_detected": sections.pop("conflicts_detected", []),
        "open_questions": sections.pop("open_questions", []),
        "conversation_state": sections.pop("conversation_state", {}),
    }


@pytest_asyncio.fixture(scope="function")
async def session_maker(tmp_path):
    """File-backed SQLite database with all tables, dropped after the test.

    A file (not ``:memory:``) lets the background recalculation use its own
    connection alongside the test's.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'journey.db'}", echo=False)
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def store(session_maker):
    """Knowledge store over an empty database (no counters seeded)."""
    return KnowledgeStore(session_maker)


@pytest_asyncio.fixture
async def ids(store):
    """Id allocator with every counter and the project row seeded."""
    allocator = IdAllocator(store, backoff_seconds=0)
    await ProjectTracker(store, allocator).seed()
    return allocator


@pytest.fixture
def smes(store, ids):
    return SmeRegistry(store, ids)


@pytest_asyncio.fixture
async def sme(smes):
    """An SME who owns the pre-arrival and check-in stages."""
    return await smes.register(
        full_name="Maria Lopez",
        role="Front Office Manager",
        department="Rooms",
        journey_stages_owned=["pre_arrival", "check_in"],
        systems_used=["Opera PMS"],
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def gateway(fake_llm):
    return LLMGateway(fake_llm)


@pytest_asyncio.fixture
async def orchestrator(store, ids, gateway):
    orchestrator = SessionOrchestrator(store, ids, gateway)
    yield orchestrator
    await orchestrator.wait_for_background()


@pytest_asyncio.fixture
async def service(store, ids, gateway):
    service = InterviewService(store, ids, gateway)
    yield service
    await service.wait_for_background()
