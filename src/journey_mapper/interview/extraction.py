"""Apply one turn's LLM extractions to the shared knowledge base.

Every write here is additive: records are created, or existing arrays are
grown through :mod:`journey_mapper.knowledge.merge`. Each item (or process
group) is handled in its own error boundary so one malformed entry never
costs the rest of the turn.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from journey_mapper.db.models import SME, Gap, JourneyStageRecord, Process, TechSystem
from journey_mapper.interview.models import CreatedRecordsSummary, ItemResult
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.merge import add_unique, merge_array, union_values
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.llm.schemas import (
    Extractions,
    GapExtraction,
    ProcessStepExtraction,
    SmeUpdates,
    SystemExtraction,
    TouchpointExtraction,
)
from journey_mapper.models import GapStatus, JourneyStage

logger = logging.getLogger(__name__)

NEW_PROCESS_PREFIX = "__new_"
PROCESS_NAME_CHARS = 100
DEFAULT_PROCESS_NAME = "Process from interview"


class ItemError(Exception):
    """An extracted item that cannot be applied (unknown reference, missing flag)."""

    pass


def has_discrepancy(as_documented: str, as_practiced: str) -> bool:
    """Both descriptions present and different once trimmed."""
    documented = (as_documented or "").strip()
    practiced = (as_practiced or "").strip()
    return bool(documented and practiced and documented != practiced)


def process_name_from_steps(steps: list[ProcessStepExtraction]) -> str:
    name = "; ".join(step.description for step in steps)[:PROCESS_NAME_CHARS]
    return name or DEFAULT_PROCESS_NAME


def resolve_stage(name: str | None, current_stage: str) -> str:
    """The stage an item belongs to; unknown names fall back to ``current_stage``."""
    stage = JourneyStage.normalize(name)
    if name and stage is None:
        logger.warning(f"Unknown journey stage '{name}', using {current_stage}")
    return stage or current_stage


class ExtractionProcessor:
    """Writes systems, processes, gaps, touchpoints and SME profile updates."""

    def __init__(self, store: KnowledgeStore, ids: IdAllocator):
        self.store = store
        self.ids = ids

    async def apply(
        self,
        extractions: Extractions | dict[str, Any] | None,
        sme_id: str | None,
        session_id: str,
        actor_id: str = "",
        current_stage: str = "discovery",
    ) -> CreatedRecordsSummary:
        """Apply all extraction categories and report per-item outcomes."""
        summary = CreatedRecordsSummary()
        if not extractions:
            return summary
        if isinstance(extractions, dict):
            extractions = Extractions.model_validate(extractions)
        current_stage = JourneyStage.normalize(current_stage) or JourneyStage.DISCOVERY.value

        for item in extractions.systems:
            summary.systems.append(
                await self._guard("systems", lambda: self._apply_system(item, sme_id, actor_id))
            )

        for key, raw_steps in self._group_steps(extractions.process_steps, current_stage, summary).items():
            summary.processes.extend(
                await self._apply_process_group(key, raw_steps, sme_id, actor_id, current_stage)
            )

        for item in extractions.gaps:
            summary.gaps.append(
                await self._guard("gaps", lambda: self._apply_gap(item, sme_id, actor_id, current_stage))
            )

        for item in extractions.journey_touchpoints:
            summary.touchpoints.append(
                await self._guard(
                    "touchpoints", lambda: self._apply_touchpoint(item, sme_id, actor_id, current_stage)
                )
            )

        if sme_id and any(extractions.sme_updates.values()):
            summary.sme_updates.append(
                await self._guard(
                    "sme_updates", lambda: self._apply_sme_updates(extractions.sme_updates, sme_id)
                )
            )

        if summary.failures:
            logger.warning(
                f"Session {session_id}: {len(summary.failures)} extraction item(s) failed"
            )
        return summary

    async def _guard(
        self, category: str, operation: Callable[[], Awaitable[ItemResult]]
    ) -> ItemResult:
        try:
            return await operation()
        except (ValidationError, ItemError) as e:
            logger.error(f"Skipping invalid {category} item: {e}")
            return ItemResult.failed(category, str(e))
        except Exception as e:
            logger.error(f"Error applying {category} item: {e}", exc_info=True)
            return ItemResult.failed(category, str(e))

    # ── Systems ──────────────────────────────────────────────────────────────

    async def _apply_system(self, item: Any, sme_id: str | None, actor_id: str) -> ItemResult:
        system = SystemExtraction.model_validate(item)
        links = [link.model_dump() for link in system.integration_with]
        sme_ids = [sme_id] if sme_id else []

        if system.is_new:
            system_id = await self.ids.next_id("SYS")
            await self.store.insert(
                TechSystem,
                system_id=system_id,
                system_name=system.system_name or "Unknown",
                vendor=system.vendor,
                category=system.category or "Other",
                environment="production",
                primary_owner_sme_id=sme_id,
                users=sme_ids,
                integration_links=merge_array([], links, "system_name"),
                manual_workarounds=[],
                fields_or_workflows=union_values([], system.fields_or_workflows_mentioned),
                source_sme_ids=sme_ids,
                created_by=actor_id,
            )
            logger.info(f"Created system {system_id}: {system.system_name}")
            return ItemResult("systems", "created", system_id, system.system_name)

        if not system.existing_system_id:
            raise ItemError(f"System '{system.system_name}' is neither new nor references an existing id")

        existing = await self.store.get_by(TechSystem, "system_id", system.existing_system_id)
        if existing is None:
            raise ItemError(f"Unknown system id: {system.existing_system_id}")

        users = existing.users
        sources = existing.source_sme_ids
        if sme_id:
            users = add_unique(users, sme_id)
            sources = add_unique(sources, sme_id)
        await self.store.update(
            TechSystem,
            existing.id,
            users=users,
            source_sme_ids=sources,
            integration_links=merge_array(existing.integration_links, links, "system_name"),
            fields_or_workflows=union_values(existing.fields_or_workflows, system.fields_or_workflows_mentioned),
        )
        logger.info(f"Updated system {existing.system_id}")
        return ItemResult("systems", "updated", existing.system_id, existing.system_name)

    # ── Process steps ────────────────────────────────────────────────────────

    def _group_steps(
        self, raw_steps: list[Any], current_stage: str, summary: CreatedRecordsSummary
    ) -> dict[str, list[ProcessStepExtraction]]:
        """Group steps by target process, in first-seen order."""
        groups: dict[str, list[ProcessStepExtraction]] = {}
        for raw in raw_steps:
            try:
                step = ProcessStepExtraction.model_validate(raw)
            except ValidationError as e:
                logger.error(f"Skipping invalid process step: {e}")
                summary.processes.append(ItemResult.failed("processes", str(e)))
                continue
            stage = resolve_stage(step.journey_stage, current_stage)
            key = step.belongs_to_process or f"{NEW_PROCESS_PREFIX}{stage}"
            groups.setdefault(key, []).append(step)
        return groups

    async def _apply_process_group(
        self,
        key: str,
        steps: list[ProcessStepExtraction],
        sme_id: str | None,
        actor_id: str,
        current_stage: str,
    ) -> list[ItemResult]:
        try:
            if key.startswith(NEW_PROCESS_PREFIX):
                return await self._create_process(steps, sme_id, actor_id, current_stage)
            return await self._extend_process(key, steps, sme_id, actor_id, current_stage)
        except ItemError as e:
            logger.error(f"Skipping process group {key}: {e}")
            return [ItemResult.failed("processes", str(e), name=key)]
        except Exception as e:
            logger.error(f"Error applying process group {key}: {e}", exc_info=True)
            return [ItemResult.failed("processes", str(e), name=key)]

    async def _create_process(
        self,
        steps: list[ProcessStepExtraction],
        sme_id: str | None,
        actor_id: str,
        current_stage: str,
    ) -> list[ItemResult]:
        first = steps[0]
        stage = resolve_stage(first.journey_stage, current_stage)
        discrepancy = has_discrepancy(first.as_documented, first.as_practiced)
        sme_ids = [sme_id] if sme_id else []

        process_id = await self.ids.next_id("PROC")
        process_name = process_name_from_steps(steps)
        await self.store.insert(
            Process,
            process_id=process_id,
            process_name=process_name,
            journey_stage=stage,
            owner_sme_id=sme_id,
            supporting_sme_ids=sme_ids,
            steps=[step.model_dump() for step in steps],
            handoffs=[],
            maturity="ad_hoc",
            as_documented=first.as_documented,
            as_practiced=first.as_practiced,
            discrepancy_flag=discrepancy,
            discrepancy_notes="Auto-detected: documented vs practiced differ" if discrepancy else "",
            source_sme_ids=sme_ids,
            created_by=actor_id,
        )
        logger.info(f"Created process {process_id} with {len(steps)} step(s)")
        results = [ItemResult("processes", "created", process_id, process_name)]

        if discrepancy:
            results.append(
                await self._discrepancy_gap(
                    process_id, process_name, stage, first.as_documented, first.as_practiced, sme_id, actor_id
                )
            )
        return results

    async def _extend_process(
        self,
        process_id: str,
        steps: list[ProcessStepExtraction],
        sme_id: str | None,
        actor_id: str,
        current_stage: str,
    ) -> list[ItemResult]:
        existing = await self.store.get_by(Process, "process_id", process_id)
        if existing is None:
            raise ItemError(f"Unknown process id: {process_id}")

        # Empty text fields are filled from the first step that carries them
        as_documented = existing.as_documented or next((s.as_documented for s in steps if s.as_documented), "")
        as_practiced = existing.as_practiced or next((s.as_practiced for s in steps if s.as_practiced), "")
        discrepancy = has_discrepancy(as_documented, as_practiced)
        newly_flagged = discrepancy and not existing.discrepancy_flag

        sources = existing.source_sme_ids
        supporting = existing.supporting_sme_ids
        if sme_id:
            sources = add_unique(sources, sme_id)
            supporting = add_unique(supporting, sme_id)

        partial: dict[str, Any] = {
            "steps": merge_array(existing.steps, [step.model_dump() for step in steps]),
            "source_sme_ids": sources,
            "supporting_sme_ids": supporting,
            "as_documented": as_documented,
            "as_practiced": as_practiced,
        }
        if newly_flagged:
            partial["discrepancy_flag"] = True
            partial["discrepancy_notes"] = "Auto-detected: documented vs practiced differ"

        await self.store.update(Process, existing.id, **partial)
        logger.info(f"Added {len(steps)} step(s) to process {process_id}")
        results = [ItemResult("processes", "updated", process_id, existing.process_name)]

        if newly_flagged:
            results.append(
                await self._discrepancy_gap(
                    process_id,
                    existing.process_name,
                    existing.journey_stage or current_stage,
                    as_documented,
                    as_practiced,
                    sme_id,
                    actor_id,
                )
            )
        return results

    async def _discrepancy_gap(
        self,
        process_id: str,
        process_name: str,
        stage: str,
        as_documented: str,
        as_practiced: str,
        sme_id: str | None,
        actor_id: str,
    ) -> ItemResult:
        gap_id = await self.ids.next_id("GAP")
        title = f"Discrepancy: {process_name} - documented vs practiced"
        await self.store.insert(
            Gap,
            gap_id=gap_id,
            title=title,
            description=f"Documented: {as_documented}. Practiced: {as_practiced}.",
            journey_stage=stage,
            process_id=process_id,
            gap_type="missing_process",
            root_cause="Process not followed as documented",
            frequency="occasional",
            guest_impact="medium",
            source_sme_ids=[sme_id] if sme_id else [],
            status=GapStatus.OPEN.value,
            created_by=actor_id,
        )
        logger.info(f"Auto-created discrepancy gap {gap_id} for process {process_id}")
        return ItemResult("gaps", "auto-created", gap_id, title)

    # ── Gaps ─────────────────────────────────────────────────────────────────

    async def _apply_gap(
        self, item: Any, sme_id: str | None, actor_id: str, current_stage: str
    ) -> ItemResult:
        gap = GapExtraction.model_validate(item)
        gap_id = await self.ids.next_id("GAP")
        title = gap.title or "Untitled gap"
        await self.store.insert(
            Gap,
            gap_id=gap_id,
            title=title,
            description=gap.description,
            journey_stage=current_stage,
            process_id="",
            gap_type=gap.gap_type or "other",
            root_cause=gap.root_cause,
            frequency=gap.frequency or "occasional",
            guest_impact=gap.guest_impact or "medium",
            source_sme_ids=[sme_id] if sme_id else [],
            status=GapStatus.OPEN.value,
            created_by=actor_id,
        )
        logger.info(f"Created gap {gap_id}: {title}")
        return ItemResult("gaps", "created", gap_id, title)

    # ── Journey touchpoints ──────────────────────────────────────────────────

    async def _apply_touchpoint(
        self, item: Any, sme_id: str | None, actor_id: str, current_stage: str
    ) -> ItemResult:
        touchpoint = TouchpointExtraction.model_validate(item)
        stage = resolve_stage(touchpoint.journey_stage, current_stage)
        payload = {**touchpoint.model_dump(), "journey_stage": stage}

        existing = await self.store.get_by(JourneyStageRecord, "journey_stage", stage)
        if existing is None:
            stage_id = await self.ids.next_id("STAGE")
            try:
                await self.store.insert(
                    JourneyStageRecord,
                    stage_id=stage_id,
                    journey_stage=stage,
                    frontstage_interactions=[payload],
                    supporting_sme_ids=[sme_id] if sme_id else [],
                    created_by=actor_id,
                )
                logger.info(f"Created journey stage {stage_id} ({stage})")
                return ItemResult("touchpoints", "created", stage_id, stage)
            except IntegrityError:
                # Another session created the stage first; merge into theirs
                existing = await self.store.get_by(JourneyStageRecord, "journey_stage", stage)
                if existing is None:
                    raise

        supporting = existing.supporting_sme_ids
        if sme_id:
            supporting = add_unique(supporting, sme_id)
        await self.store.update(
            JourneyStageRecord,
            existing.id,
            frontstage_interactions=merge_array(existing.frontstage_interactions, [payload]),
            supporting_sme_ids=supporting,
        )
        return ItemResult("touchpoints", "updated", existing.stage_id, stage)

    # ── SME profile ──────────────────────────────────────────────────────────

    async def _apply_sme_updates(self, raw: dict[str, Any], sme_id: str) -> ItemResult:
        updates = SmeUpdates.model_validate(raw)
        if updates.is_empty():
            return ItemResult("sme_updates", "unchanged", sme_id)

        sme = await self.store.get_by(SME, "sme_id", sme_id)
        if sme is None:
            raise ItemError(f"Unknown SME id: {sme_id}")

        stages = []
        for name in updates.new_stages_owned:
            stage = JourneyStage.normalize(name)
            if stage is None:
                logger.warning(f"Ignoring unknown stage '{name}' for SME {sme_id}")
            else:
                stages.append(stage)

        await self.store.update(
            SME,
            sme.id,
            systems_used=union_values(sme.systems_used, updates.new_systems_used),
            domains=union_values(sme.domains, updates.new_domains),
            journey_stages_owned=union_values(sme.journey_stages_owned, stages),
        )
        return ItemResult("sme_updates", "updated", sme_id, sme.full_name)
