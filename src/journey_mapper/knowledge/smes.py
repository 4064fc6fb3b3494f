"""SME register: creation, lookup and interview-status transitions."""

import logging
from typing import Any

from journey_mapper.db.models import SME, utcnow
from journey_mapper.exceptions import NotFoundError, ValidationError
from journey_mapper.knowledge.ids import IdAllocator
from journey_mapper.knowledge.store import KnowledgeStore
from journey_mapper.models import InterviewStatus, JourneyStage, advance_interview_status

logger = logging.getLogger(__name__)


def check_stages(stages: list[str] | None) -> list[str]:
    """Normalize journey stage names, keeping order and dropping repeats."""
    result: list[str] = []
    for name in stages or []:
        stage = JourneyStage.normalize(name)
        if stage is None:
            raise ValidationError(f"Unknown journey stage: {name}")
        if stage not in result:
            result.append(stage)
    return result


class SmeRegistry:
    """Owns SME records outside of what extractions add to them."""

    def __init__(self, store: KnowledgeStore, ids: IdAllocator):
        self.store = store
        self.ids = ids

    async def register(
        self,
        full_name: str,
        role: str = "",
        department: str = "",
        location: str = "",
        contact: dict[str, Any] | None = None,
        domains: list[str] | None = None,
        journey_stages_owned: list[str] | None = None,
        systems_used: list[str] | None = None,
        created_by: str = "",
    ) -> SME:
        if not full_name or not full_name.strip():
            raise ValidationError("SME full_name is required")

        sme_id = await self.ids.next_id("SME")
        sme = await self.store.insert(
            SME,
            sme_id=sme_id,
            full_name=full_name.strip(),
            role=role,
            department=department,
            location=location,
            contact=contact or {},
            domains=list(domains or []),
            journey_stages_owned=check_stages(journey_stages_owned),
            systems_used=list(systems_used or []),
            interview_status=InterviewStatus.PENDING.value,
            created_by=created_by,
        )
        logger.info(f"Registered SME {sme_id}: {sme.full_name}")
        return sme

    async def get(self, sme_id: str) -> SME:
        sme = await self.store.get_by(SME, "sme_id", sme_id)
        if sme is None:
            raise NotFoundError("SME", sme_id)
        return sme

    async def list_smes(self, interview_status: str | None = None) -> list[SME]:
        filters = {"interview_status": interview_status} if interview_status else {}
        return await self.store.query(SME, **filters)

    async def advance_status(self, sme_id: str, target: InterviewStatus) -> SME:
        """Move the SME forward to ``target``; never moves backwards."""
        sme = await self.get(sme_id)
        new_status = advance_interview_status(sme.interview_status, target)
        if new_status == sme.interview_status:
            return sme
        logger.info(f"SME {sme_id} status: {sme.interview_status} -> {new_status}")
        return await self.store.update(SME, sme.id, interview_status=new_status)

    async def mark_link_sent(self, sme_id: str) -> SME:
        return await self.advance_status(sme_id, InterviewStatus.LINK_SENT)

    async def validate(self, sme_id: str) -> SME:
        """Record that the SME confirmed their captured knowledge."""
        sme = await self.get(sme_id)
        logger.info(f"SME {sme_id} validated")
        return await self.store.update(
            SME,
            sme.id,
            interview_status=InterviewStatus.VALIDATED.value,
            validated_by_sme=True,
            validation_date=utcnow(),
        )
