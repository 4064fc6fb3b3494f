"""Tests for the SME registry, project state and reports."""

import pytest
import pytest_asyncio

from conftest import FakeLLM, structured_reply
from journey_mapper.db.models import (
    SME,
    Conflict,
    Gap,
    JourneyStageRecord,
    Process,
    ProjectState,
    TechSystem,
)
from journey_mapper.exceptions import NotFoundError, ValidationError
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.project import ProjectTracker, default_completion
from journey_mapper.knowledge.reports import Reporter
from journey_mapper.knowledge.smes import check_stages
from journey_mapper.llm.exceptions import LLMConnectionError
from journey_mapper.llm.gateway import LLMGateway
from journey_mapper.models import InterviewStatus, advance_interview_status


class TestInterviewStatus:
    """Tests for the forward-only SME status."""

    def test_moves_forward(self):
        assert advance_interview_status("pending", InterviewStatus.IN_PROGRESS) == "in_progress"
        assert advance_interview_status("in_progress", InterviewStatus.COMPLETED) == "completed"

    def test_never_moves_back(self):
        assert advance_interview_status("completed", InterviewStatus.IN_PROGRESS) == "completed"
        assert advance_interview_status("validated", InterviewStatus.COMPLETED) == "validated"

    def test_unknown_value_treated_as_pending(self):
        assert advance_interview_status("bogus", InterviewStatus.LINK_SENT) == "link_sent"
        assert advance_interview_status(None, InterviewStatus.PENDING) == "pending"


class TestSmeRegistry:
    """Tests for SmeRegistry."""

    def test_check_stages(self):
        assert check_stages(["check_in", "booking", "check_in"]) == ["check_in", "booking"]
        assert check_stages(None) == []
        assert check_stages(["Check-In", "check_in"]) == ["check_in"]
        with pytest.raises(ValidationError):
            check_stages(["lobby"])

    @pytest.mark.asyncio
    async def test_register(self, smes, store):
        sme = await smes.register(
            full_name="  Ana Silva ",
            contact={"email": "ana@example.com"},
            journey_stages_owned=["in_stay"],
            created_by="U-1",
        )

        assert sme.sme_id == "SME-001"
        assert sme.full_name == "Ana Silva"
        assert sme.interview_status == "pending"
        assert sme.contact == {"email": "ana@example.com"}
        assert await store.count(SME) == 1

    @pytest.mark.asyncio
    async def test_register_requires_name(self, smes):
        with pytest.raises(ValidationError):
            await smes.register(full_name="   ")

    @pytest.mark.asyncio
    async def test_get_missing(self, smes):
        with pytest.raises(NotFoundError):
            await smes.get("SME-404")

    @pytest.mark.asyncio
    async def test_status_flow(self, smes, sme):
        await smes.mark_link_sent(sme.sme_id)
        await smes.advance_status(sme.sme_id, InterviewStatus.IN_PROGRESS)
        after_link = await smes.mark_link_sent(sme.sme_id)
        assert after_link.interview_status == "in_progress"

        validated = await smes.validate(sme.sme_id)
        assert validated.interview_status == "validated"
        assert validated.validated_by_sme is True
        assert validated.validation_date is not None

    @pytest.mark.asyncio
    async def test_list_by_status(self, smes, sme):
        await smes.register(full_name="Tom Reyes")
        await smes.advance_status(sme.sme_id, InterviewStatus.IN_PROGRESS)

        assert [s.full_name for s in await smes.list_smes()] == ["Maria Lopez", "Tom Reyes"]
        assert [s.full_name for s in await smes.list_smes("pending")] == ["Tom Reyes"]


class TestProjectTracker:
    """Tests for ProjectTracker."""

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, store):
        tracker = ProjectTracker(store, IdAllocator(store))

        first = await tracker.seed()
        second = await tracker.seed()

        assert "Counter: SYS" in first
        assert "ProjectState" in first
        assert second == []
        assert await store.count(ProjectState) == 1

    @pytest.mark.asyncio
    async def test_get_state_creates_default(self, store):
        tracker = ProjectTracker(store, IdAllocator(store), project_id="other")

        state = await tracker.get_state()

        assert state.project_id == "other"
        assert state.completion == default_completion()

    @pytest.mark.asyncio
    async def test_recalculate_counts(self, store, ids, smes, sme):
        tom = await smes.register(full_name="Tom Reyes")
        await smes.advance_status(sme.sme_id, InterviewStatus.COMPLETED)
        await smes.validate(tom.sme_id)
        await store.insert(JourneyStageRecord, stage_id="STAGE-001", journey_stage="check_in")
        await store.insert(JourneyStageRecord, stage_id="STAGE-002", journey_stage="booking")
        await store.insert(Process, process_id="PROC-001", process_name="p", journey_stage="check_in")
        await store.insert(Gap, gap_id="GAP-001", title="a")
        await store.insert(Gap, gap_id="GAP-002", title="b", status="resolved")
        await store.insert(Conflict, conflict_id="CONF-001", conflict_type="ownership_dispute")
        await store.insert(
            Conflict, conflict_id="CONF-002", conflict_type="ownership_dispute", resolution_status="resolved"
        )

        state = await ProjectTracker(store, ids).recalculate()

        assert state.completion == {
            "smes_identified": 2,
            "smes_interviewed": 2,
            "smes_validated": 1,
            "journey_stages_mapped": 2,
            "journey_stages_total": 8,
            "processes_documented": 1,
            "gaps_identified": 2,
            "gaps_resolved": 1,
            "conflicts_open": 1,
        }
        assert state.completion_ratio == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_open_questions_scoped_to_sme(self, store, ids):
        tracker = ProjectTracker(store, ids)
        await tracker.add_open_questions([{"question": "For Maria"}], "SESSION-001", "SME-001")
        await tracker.add_open_questions([{"question": "For anyone"}], "SESSION-002", None)
        await tracker.add_open_questions([{"question": "For Tom"}], "SESSION-003", "SME-002")

        questions = await tracker.open_questions_for("SME-001")

        assert [q["question"] for q in questions] == ["For Maria", "For anyone"]
        assert [q["question_id"] for q in questions] == ["Q-001", "Q-002"]
        assert all(q["status"] == "open" for q in questions)


class TestReporter:
    """Tests for Reporter."""

    @pytest_asyncio.fixture
    async def populated(self, store, sme):
        await store.insert(
            JourneyStageRecord,
            stage_id="STAGE-002",
            journey_stage="check_in",
            supporting_sme_ids=[sme.sme_id, "SME-404"],
        )
        await store.insert(JourneyStageRecord, stage_id="STAGE-001", journey_stage="booking")
        await store.insert(
            Process,
            process_id="PROC-001",
            process_name="Key handover",
            journey_stage="check_in",
            owner_sme_id=sme.sme_id,
            discrepancy_flag=True,
        )
        await store.insert(
            TechSystem,
            system_id="SYS-001",
            system_name="Opera PMS",
            category="PMS",
            integration_links=[{"system_name": "Salesforce"}],
            manual_workarounds=["Excel export"],
        )
        await store.insert(Gap, gap_id="GAP-001", title="Low", guest_impact="low")
        await store.insert(Gap, gap_id="GAP-002", title="High", guest_impact="high", journey_stage="check_in")
        await store.insert(
            Conflict,
            conflict_id="CONF-001",
            conflict_type="ownership_dispute",
            description="Who owns upsells",
            sme_a_id=sme.sme_id,
            sme_b_id="SME-404",
        )
        return sme

    @pytest.mark.asyncio
    async def test_journey_map_in_lifecycle_order(self, store, populated):
        report = await Reporter(store).generate("journey-map")

        assert report["report"] == "journey-map"
        assert [s["journey_stage"] for s in report["stages"]] == ["booking", "check_in"]
        assert report["stages"][1]["supporting_smes"] == ["Maria Lopez", "SME-404"]

    @pytest.mark.asyncio
    async def test_process_inventory(self, store, populated):
        report = await Reporter(store).process_inventory()

        assert report["process_count"] == 1
        assert report["discrepancy_count"] == 1
        assert report["maturity_breakdown"] == {"ad_hoc": 1}
        assert report["processes"][0]["owner_sme_name"] == "Maria Lopez"

    @pytest.mark.asyncio
    async def test_tech_ecosystem(self, store, populated):
        report = await Reporter(store).tech_ecosystem()

        assert report["system_count"] == 1
        assert report["category_breakdown"] == {"PMS": 1}
        assert report["systems_with_manual_workarounds"] == 1
        assert report["total_integration_links"] == 1

    @pytest.mark.asyncio
    async def test_gap_register_sorted_by_impact(self, store, populated):
        report = await Reporter(store).generate("gap_register")

        assert [g["gap_id"] for g in report["gaps"]] == ["GAP-002", "GAP-001"]
        assert report["impact_breakdown"] == {"critical": 0, "high": 1, "medium": 0, "low": 1, "none": 0}
        assert report["status_breakdown"]["open"] == 2

    @pytest.mark.asyncio
    async def test_critical_gaps_rank_first(self, store, populated):
        await store.insert(Gap, gap_id="GAP-003", title="Fire exit blocked", guest_impact="critical")
        await store.insert(Gap, gap_id="GAP-004", title="Cosmetic", guest_impact="none")

        register = await Reporter(store).gap_register()
        summary = await Reporter(store).executive_summary()

        assert [g["gap_id"] for g in register["gaps"]] == ["GAP-003", "GAP-002", "GAP-001", "GAP-004"]
        assert register["impact_breakdown"] == {"critical": 1, "high": 1, "medium": 0, "low": 1, "none": 1}
        assert summary["high_impact_gaps"] == 2

    @pytest.mark.asyncio
    async def test_conflict_log(self, store, populated):
        report = await Reporter(store).conflict_log()

        assert report["open_count"] == 1
        assert report["resolved_count"] == 0
        assert report["conflicts"][0]["sme_a_name"] == "Maria Lopez"
        assert report["conflicts"][0]["sme_b_name"] == "SME-404"

    @pytest.mark.asyncio
    async def test_executive_summary_uses_llm(self, store, populated):
        llm = FakeLLM([structured_reply("Executive Overview: solid progress.")])

        report = await Reporter(store, LLMGateway(llm)).executive_summary()

        assert report["summary"] == "Executive Overview: solid progress."
        assert report["statistics"]["system_count"] == 1
        assert report["high_impact_gaps"] == 1
        assert report["open_conflicts"] == 1
        prompt = llm.calls[0]["messages"][0]["content"]
        assert "- [check_in] High (other)" in prompt
        assert "- Who owns upsells (ownership_dispute)" in prompt

    @pytest.mark.asyncio
    async def test_executive_summary_fallback(self, store, populated):
        llm = FakeLLM([LLMConnectionError("down", provider="fake")])

        report = await Reporter(store, LLMGateway(llm)).executive_summary()

        assert report["summary"] == (
            "Journey mapping project summary: 1 SMEs interviewed across 2 journey stages. "
            "Documented 1 processes, 1 systems, 2 gaps, 1 conflicts."
        )

    @pytest.mark.asyncio
    async def test_unknown_report_type(self, store):
        with pytest.raises(ValidationError):
            await Reporter(store).generate("horoscope")
