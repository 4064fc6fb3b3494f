"""Persistence and classification of conflicts between SMEs."""

import logging
from typing import Any

from pydantic import ValidationError

from journey_mapper.db.models import Conflict, Process, utcnow
from journey_mapper.exceptions import NotFoundError
from journey_mapper.interview.models import ItemResult
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.llm.schemas import ConflictReport
from journey_mapper.models import ConflictType, ResolutionStatus

logger = logging.getLogger(__name__)

# Checked in order; first substring hit wins
FIELD_PATTERNS: tuple[tuple[tuple[str, ...], ConflictType], ...] = (
    (("process", "step"), ConflictType.PROCESS_DISCREPANCY),
    (("system", "tech"), ConflictType.TECHNOLOGY_MISMATCH),
    (("owner", "responsible"), ConflictType.OWNERSHIP_DISPUTE),
)


def classify_conflict(field: str | None) -> ConflictType:
    """Classify a conflict from the field name the LLM attributed it to."""
    lowered = (field or "").lower()
    for needles, conflict_type in FIELD_PATTERNS:
        if any(needle in lowered for needle in needles):
            return conflict_type
    return ConflictType.DATA_INCONSISTENCY


def describe_conflict(report: ConflictReport) -> str:
    return (
        f'{report.field}: Current SME says "{report.new_value_from_current_sme}", '
        f'existing data says "{report.existing_value}"'
    )


class ConflictDetector:
    """Writes LLM-reported conflicts to the conflict log."""

    def __init__(self, store: KnowledgeStore, ids: IdAllocator):
        self.store = store
        self.ids = ids

    async def apply(
        self, conflict_items: list[Any] | None, sme_id: str | None, actor_id: str = ""
    ) -> list[str]:
        """Persist every reported conflict and return the new conflict ids."""
        results = await self.detect(conflict_items, sme_id, actor_id)
        return [r.record_id for r in results if r.ok and r.record_id]

    async def detect(
        self, conflict_items: list[Any] | None, sme_id: str | None, actor_id: str = ""
    ) -> list[ItemResult]:
        """Like :meth:`apply`, but returns one result per reported item."""
        results = []
        for item in conflict_items or []:
            try:
                report = ConflictReport.model_validate(item)
                conflict_id = await self._save(report, sme_id, actor_id)
                results.append(
                    ItemResult(category="conflicts", action="created", record_id=conflict_id, name=report.field)
                )
            except (ValidationError, ValueError, TypeError) as e:
                logger.error(f"Invalid conflict item skipped: {e}")
                results.append(ItemResult.failed("conflicts", str(e)))
            except Exception as e:
                logger.error(f"Error saving conflict: {e}", exc_info=True)
                results.append(ItemResult.failed("conflicts", str(e)))
        return results

    async def _save(self, report: ConflictReport, sme_id: str | None, actor_id: str) -> str:
        conflict_type = classify_conflict(report.field)
        conflict_id = await self.ids.next_id("CONF")

        process = None
        if report.existing_record_id:
            process = await self.store.get_by(Process, "process_id", report.existing_record_id)

        await self.store.insert(
            Conflict,
            conflict_id=conflict_id,
            conflict_type=conflict_type.value,
            field=report.field,
            severity=report.severity or "medium",
            description=describe_conflict(report),
            sme_a_id=sme_id,
            sme_a_claim=report.new_value_from_current_sme,
            sme_b_id=report.existing_sme_id,
            sme_b_claim=report.existing_value,
            related_record_id=report.existing_record_id,
            related_process_ids=[process.process_id] if process else [],
            resolution_status=ResolutionStatus.UNRESOLVED.value,
            created_by=actor_id,
        )
        logger.info(f"Conflict recorded: {conflict_id}, type={conflict_type.value}, sme={sme_id}")

        if process is not None:
            await self._flag_process(process, conflict_id)
        return conflict_id

    async def _flag_process(self, process: Process, conflict_id: str) -> None:
        """Mark the process as contested. Failure leaves the conflict in place."""
        notes = f"{process.conflict_notes}; {conflict_id}" if process.conflict_notes else conflict_id
        try:
            await self.store.update(Process, process.id, conflict_flag=True, conflict_notes=notes)
        except Exception as e:
            logger.warning(f"Could not flag process {process.process_id} for {conflict_id}: {e}")

    async def resolve_conflict(self, conflict_id: str, notes: str, resolved_by: str) -> Conflict:
        """Mark a conflict resolved. Resolving twice leaves the first resolution."""
        conflict = await self.store.get_by(Conflict, "conflict_id", conflict_id)
        if conflict is None:
            raise NotFoundError("Conflict", conflict_id)
        if conflict.resolution_status == ResolutionStatus.RESOLVED.value:
            logger.debug(f"Conflict {conflict_id} already resolved")
            return conflict

        resolved = await self.store.update(
            Conflict,
            conflict.id,
            resolution_status=ResolutionStatus.RESOLVED.value,
            resolution_notes=notes,
            resolved_by=resolved_by,
            resolved_at=utcnow(),
        )
        logger.info(f"Conflict resolved: {conflict_id} by {resolved_by}")
        return resolved

    async def list_conflicts(
        self,
        resolution_status: str | None = None,
        conflict_type: str | None = None,
    ) -> list[Conflict]:
        filters = {}
        if resolution_status:
            filters["resolution_status"] = resolution_status
        if conflict_type:
            filters["conflict_type"] = conflict_type
        return await self.store.query(Conflict, order_by="created_at", descending=True, **filters)

    async def open_conflicts_for(self, sme_id: str) -> list[Conflict]:
        """Unresolved conflicts where the SME is on either side."""
        unresolved = await self.store.query(
            Conflict, resolution_status=ResolutionStatus.UNRESOLVED.value
        )
        return [c for c in unresolved if sme_id in (c.sme_a_id, c.sme_b_id)]
