"""Read-only reports over the knowledge store."""

import logging
from collections import Counter as Tally
from typing import Any

from journey_mapper.db.models import (
    SME,
    Conflict,
    Gap,
    InterviewSession,
    JourneyStageRecord,
    Process,
    TechSystem,
    utcnow,
)
from journey_mapper.exceptions import ValidationError
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.llm.exceptions import LLMError
from journey_mapper.llm.gateway import LLMGateway
from journey_mapper.models import GapStatus, JourneyStage, ResolutionStatus

logger = logging.getLogger(__name__)

REPORT_TYPES = (
    "journey-map",
    "process-inventory",
    "tech-ecosystem",
    "gap-register",
    "conflict-log",
    "executive-summary",
)

IMPACT_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3, "none": 4}

EXECUTIVE_SUMMARY_SYSTEM_PROMPT = (
    "You are a hospitality consulting expert preparing an executive summary for senior leadership.\n"
    "Write a professional, actionable summary based on the provided data statistics and findings.\n"
    "Structure it with: Executive Overview, Key Findings, Critical Gaps, Open Conflicts, "
    "Technology Observations, and Strategic Recommendations.\n"
    'Be concise and business-focused. Respond as JSON: {"reply": "...full summary text..."}'
)


def build_executive_summary_request(
    stats: dict[str, int],
    high_impact_gaps: list[Gap],
    open_conflicts: list[Conflict],
) -> tuple[str, list[dict[str, str]]]:
    """System prompt and single user message carrying the project statistics."""
    gap_lines = "\n".join(f"- [{g.journey_stage}] {g.title} ({g.gap_type})" for g in high_impact_gaps)
    conflict_lines = "\n".join(f"- {c.description} ({c.conflict_type})" for c in open_conflicts)
    content = f"""Guest Journey Mapping Project - Executive Summary Data:

Statistics:
- SMEs interviewed: {stats["sme_count"]}
- Interview sessions completed: {stats["session_count"]}
- Journey stages mapped: {stats["stage_count"]}
- Processes documented: {stats["process_count"]}
- Gaps identified: {stats["gap_count"]}
- Technology systems: {stats["system_count"]}
- Open conflicts: {stats["conflict_count"]}

High-impact open gaps ({len(high_impact_gaps)}):
{gap_lines or "None"}

Open conflicts ({len(open_conflicts)}):
{conflict_lines or "None"}

Generate a comprehensive executive summary."""
    return EXECUTIVE_SUMMARY_SYSTEM_PROMPT, [{"role": "user", "content": content}]


def fallback_executive_summary(stats: dict[str, int]) -> str:
    return (
        f"Journey mapping project summary: {stats['sme_count']} SMEs interviewed across "
        f"{stats['stage_count']} journey stages. Documented {stats['process_count']} processes, "
        f"{stats['system_count']} systems, {stats['gap_count']} gaps, "
        f"{stats['conflict_count']} conflicts."
    )


def _stage_rank(stage: str) -> int:
    stages = JourneyStage.ordered()
    return stages.index(stage) if stage in stages else len(stages)


class Reporter:
    """Builds the journey mapping reports as JSON-ready dicts."""

    def __init__(self, store: KnowledgeStore, gateway: LLMGateway | None = None):
        self.store = store
        self.gateway = gateway

    async def generate(self, report_type: str) -> dict[str, Any]:
        """Dispatch to a report by name.

        Raises:
            ValidationError: Unknown report type
        """
        builders = {
            "journey-map": self.journey_map,
            "process-inventory": self.process_inventory,
            "tech-ecosystem": self.tech_ecosystem,
            "gap-register": self.gap_register,
            "conflict-log": self.conflict_log,
            "executive-summary": self.executive_summary,
        }
        builder = builders.get(report_type.replace("_", "-") if report_type else "")
        if builder is None:
            raise ValidationError(f"Unknown report type: {report_type}")
        logger.info(f"Generating {report_type} report")
        return await builder()

    async def _sme_names(self) -> dict[str, str]:
        return {sme.sme_id: sme.full_name for sme in await self.store.query(SME)}

    async def journey_map(self) -> dict[str, Any]:
        names = await self._sme_names()
        records = sorted(
            await self.store.query(JourneyStageRecord), key=lambda r: _stage_rank(r.journey_stage)
        )
        stages = [
            {
                "stage_id": r.stage_id,
                "journey_stage": r.journey_stage,
                "stage_description": r.stage_description or "",
                "guest_actions": r.guest_actions or [],
                "frontstage_interactions": r.frontstage_interactions or [],
                "backstage_processes": r.backstage_processes or [],
                "technology_touchpoints": r.technology_touchpoints or [],
                "failure_points": r.failure_points or [],
                "supporting_process_ids": r.supporting_process_ids or [],
                "supporting_smes": [names.get(s, s) for s in r.supporting_sme_ids or []],
            }
            for r in records
        ]
        return {
            "report": "journey-map",
            "generated_at": utcnow().isoformat(),
            "stage_count": len(stages),
            "stages": stages,
        }

    async def process_inventory(self) -> dict[str, Any]:
        names = await self._sme_names()
        records = sorted(
            await self.store.query(Process),
            key=lambda p: (_stage_rank(p.journey_stage), p.process_name),
        )
        processes = [
            {
                "process_id": p.process_id,
                "process_name": p.process_name,
                "journey_stage": p.journey_stage,
                "sub_stage": p.sub_stage or "",
                "maturity": p.maturity or "ad_hoc",
                "as_documented": p.as_documented or "",
                "as_practiced": p.as_practiced or "",
                "discrepancy_flag": bool(p.discrepancy_flag),
                "discrepancy_notes": p.discrepancy_notes or "",
                "conflict_flag": bool(p.conflict_flag),
                "steps": p.steps or [],
                "owner_sme_name": names.get(p.owner_sme_id, p.owner_sme_id or ""),
                "source_smes": p.source_sme_ids or [],
            }
            for p in records
        ]
        return {
            "report": "process-inventory",
            "generated_at": utcnow().isoformat(),
            "process_count": len(processes),
            "discrepancy_count": sum(1 for p in processes if p["discrepancy_flag"]),
            "conflict_count": sum(1 for p in processes if p["conflict_flag"]),
            "maturity_breakdown": dict(Tally(p["maturity"] for p in processes)),
            "processes": processes,
        }

    async def tech_ecosystem(self) -> dict[str, Any]:
        records = sorted(
            await self.store.query(TechSystem), key=lambda s: (s.category or "Other", s.system_name)
        )
        systems = [
            {
                "system_id": s.system_id,
                "system_name": s.system_name,
                "vendor": s.vendor or "",
                "category": s.category or "Other",
                "environment": s.environment or "",
                "integration_links": s.integration_links or [],
                "manual_workarounds": s.manual_workarounds or [],
                "fields_or_workflows": s.fields_or_workflows or [],
                "users": s.users or [],
                "source_smes": s.source_sme_ids or [],
            }
            for s in records
        ]
        return {
            "report": "tech-ecosystem",
            "generated_at": utcnow().isoformat(),
            "system_count": len(systems),
            "category_breakdown": dict(Tally(s["category"] for s in systems)),
            "systems_with_manual_workarounds": sum(1 for s in systems if s["manual_workarounds"]),
            "total_integration_links": sum(len(s["integration_links"]) for s in systems),
            "systems": systems,
        }

    async def gap_register(self) -> dict[str, Any]:
        records = sorted(
            await self.store.query(Gap),
            key=lambda g: (IMPACT_ORDER.get(g.guest_impact, len(IMPACT_ORDER)), _stage_rank(g.journey_stage)),
        )
        gaps = [
            {
                "gap_id": g.gap_id,
                "title": g.title,
                "description": g.description or "",
                "journey_stage": g.journey_stage or "",
                "process_id": g.process_id or "",
                "gap_type": g.gap_type or "other",
                "root_cause": g.root_cause or "",
                "frequency": g.frequency or "",
                "guest_impact": g.guest_impact or "medium",
                "confirmed_by_multiple_smes": bool(g.confirmed_by_multiple_smes),
                "status": g.status or GapStatus.OPEN.value,
            }
            for g in records
        ]

        status_counts = {status.value: 0 for status in GapStatus}
        impact_counts = {impact: 0 for impact in IMPACT_ORDER}
        for gap in gaps:
            if gap["status"] in status_counts:
                status_counts[gap["status"]] += 1
            if gap["guest_impact"] in impact_counts:
                impact_counts[gap["guest_impact"]] += 1

        return {
            "report": "gap-register",
            "generated_at": utcnow().isoformat(),
            "gap_count": len(gaps),
            "status_breakdown": status_counts,
            "impact_breakdown": impact_counts,
            "type_breakdown": dict(Tally(g["gap_type"] for g in gaps)),
            "confirmed_by_multiple_smes": sum(1 for g in gaps if g["confirmed_by_multiple_smes"]),
            "gaps": gaps,
        }

    async def conflict_log(self) -> dict[str, Any]:
        names = await self._sme_names()
        records = await self.store.query(Conflict, order_by=("resolution_status", "id"))
        conflicts = [
            {
                "conflict_id": c.conflict_id,
                "conflict_type": c.conflict_type,
                "field": c.field or "",
                "severity": c.severity or "medium",
                "description": c.description or "",
                "sme_a_id": c.sme_a_id or "",
                "sme_a_name": names.get(c.sme_a_id, c.sme_a_id or ""),
                "sme_a_claim": c.sme_a_claim or "",
                "sme_b_id": c.sme_b_id or "",
                "sme_b_name": names.get(c.sme_b_id, c.sme_b_id or ""),
                "sme_b_claim": c.sme_b_claim or "",
                "related_record_id": c.related_record_id or "",
                "related_process_ids": c.related_process_ids or [],
                "resolution_status": c.resolution_status,
                "resolution_notes": c.resolution_notes or "",
                "resolved_by": c.resolved_by or "",
                "created_at": c.created_at.isoformat() if c.created_at else None,
            }
            for c in records
        ]
        status_counts = dict(Tally(c["resolution_status"] for c in conflicts))
        return {
            "report": "conflict-log",
            "generated_at": utcnow().isoformat(),
            "conflict_count": len(conflicts),
            "open_count": status_counts.get(ResolutionStatus.UNRESOLVED.value, 0),
            "resolved_count": status_counts.get(ResolutionStatus.RESOLVED.value, 0),
            "status_breakdown": status_counts,
            "conflicts": conflicts,
        }

    async def executive_summary(self) -> dict[str, Any]:
        """LLM-written summary of the whole project, with a plain fallback."""
        stats = {
            "sme_count": await self.store.count(SME),
            "session_count": await self.store.count(InterviewSession),
            "process_count": await self.store.count(Process),
            "gap_count": await self.store.count(Gap),
            "conflict_count": await self.store.count(
                Conflict, resolution_status=ResolutionStatus.UNRESOLVED.value
            ),
            "system_count": await self.store.count(TechSystem),
            "stage_count": await self.store.count(JourneyStageRecord),
        }
        high_gaps = [
            gap
            for impact in ("critical", "high")
            for gap in await self.store.query(Gap, guest_impact=impact, status=GapStatus.OPEN.value)
        ]
        open_conflicts = await self.store.query(
            Conflict, resolution_status=ResolutionStatus.UNRESOLVED.value
        )

        if self.gateway is None:
            summary = fallback_executive_summary(stats)
        else:
            system_prompt, messages = build_executive_summary_request(stats, high_gaps, open_conflicts)
            try:
                summary = (await self.gateway.generate_summary(system_prompt, messages)).reply
            except LLMError as e:
                logger.warning(f"Executive summary generation failed, using fallback: {e}")
                summary = fallback_executive_summary(stats)

        return {
            "report": "executive-summary",
            "generated_at": utcnow().isoformat(),
            "statistics": stats,
            "high_impact_gaps": len(high_gaps),
            "open_conflicts": len(open_conflicts),
            "summary": summary,
        }
