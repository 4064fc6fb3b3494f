"""Readable sequential identifiers (``SYS-001``, ``PROC-014``, ...).

Counters live in the ``counters`` table. An increment is a conditional write
that only succeeds if nobody else moved the counter since we read it; a lost
race is retried with linearly growing backoff.
"""

import logging
from collections.abc import Iterable

from sqlalchemy.exc import OperationalError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from journey_mapper.config import settings
from journey_mapper.db.models import Counter
from journey_mapper.exceptions import AllocationExhaustedError, CounterNotSeededError
from journey_mapper.knowledge.store import KnowledgeStore

logger = logging.getLogger(__name__)

# Prefix for every entity type that gets a readable id
COUNTER_PREFIXES = ("SME", "SESSION", "MSG", "SYS", "PROC", "STAGE", "GAP", "CONF", "TP", "Q")


class CounterWriteConflict(Exception):
    """Another writer incremented the counter between our read and write."""

    pass


def format_id(prefix: str, value: int) -> str:
    """Zero-pad to three digits; larger values simply grow wider."""
    return f"{prefix}-{value:03d}"


class IdAllocator:
    """Allocates strictly increasing ids per prefix."""

    def __init__(
        self,
        store: KnowledgeStore,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
    ):
        self.store = store
        self.max_retries = max_retries or settings.ID_ALLOCATION_MAX_RETRIES
        self.backoff_seconds = (
            settings.ID_ALLOCATION_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )

    async def next_id(self, prefix: str) -> str:
        """Allocate the next id for ``prefix``.

        Raises:
            CounterNotSeededError: No counter row exists for the prefix.
            AllocationExhaustedError: Every attempt lost the race.
        """
        value = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
                retry=retry_if_exception_type((CounterWriteConflict, OperationalError)),
            ):
                with attempt:
                    value = await self._increment(prefix)
        except RetryError as e:
            logger.error(f"ID allocation exhausted for {prefix} after {self.max_retries} attempts")
            raise AllocationExhaustedError(prefix, self.max_retries) from e

        return format_id(prefix, value)

    async def _increment(self, prefix: str) -> int:
        counter = await self.store.get_by(Counter, "counter_name", prefix)
        if counter is None:
            raise CounterNotSeededError(prefix)

        next_value = counter.current_value + 1
        written = await self.store.compare_and_set(
            Counter, counter.id, "current_value", counter.current_value, next_value
        )
        if not written:
            logger.debug(f"Counter {prefix} moved under us at {counter.current_value}, retrying")
            raise CounterWriteConflict(prefix)
        return next_value

    async def seed(self, prefixes: Iterable[str] = COUNTER_PREFIXES) -> list[str]:
        """Create missing counters at zero. Existing counters are untouched.

        Returns:
            Prefixes that were newly seeded.
        """
        created = []
        for prefix in prefixes:
            if await self.store.get_by(Counter, "counter_name", prefix) is None:
                await self.store.insert(Counter, counter_name=prefix, current_value=0)
                created.append(prefix)
        if created:
            logger.info(f"Seeded counters: {', '.join(created)}")
        return created
