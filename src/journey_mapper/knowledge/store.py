"""Uniform async access to the knowledge store collections.

Every call opens its own short-lived session and commits before returning,
so callers never hold a transaction across an LLM call.
"""

import logging
from typing import Any, TypeVar

from sqlalchemy import func, select, update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from journey_mapper.db.database import async_session_maker
from journey_mapper.db.models import Base, utcnow
from journey_mapper.exceptions import NotFoundError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


def _column(model: type[Base], field: str):
    """Resolve a model column, rejecting unknown field names."""
    if field not in model.__table__.columns:
        raise ValueError(f"Unknown field for {model.__name__}: {field}")
    return getattr(model, field)


class KnowledgeStore:
    """Create/read/update adapter over the SQLAlchemy models.

    Filtering is equality-only. Records are addressed by their integer row
    handle (``id``) or looked up by a business key through :meth:`get_by`.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self.session_maker = session_maker or async_session_maker

    async def query(
        self,
        model: type[ModelT],
        *,
        order_by: str | tuple[str, ...] = "id",
        descending: bool = False,
        limit: int | None = None,
        **equals: Any,
    ) -> list[ModelT]:
        """Return rows of ``model`` matching every ``field=value`` filter."""
        stmt = select(model)
        for field, value in equals.items():
            stmt = stmt.where(_column(model, field) == value)

        order_fields = (order_by,) if isinstance(order_by, str) else order_by
        for field in order_fields:
            column = _column(model, field)
            stmt = stmt.order_by(column.desc() if descending else column.asc())

        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_by(self, model: type[ModelT], field: str, value: Any) -> ModelT | None:
        """Return the first row whose ``field`` equals ``value``, or None."""
        rows = await self.query(model, limit=1, **{field: value})
        return rows[0] if rows else None

    async def insert(self, model: type[ModelT], **values: Any) -> ModelT:
        """Create a row. Integrity errors (duplicate business keys) propagate."""
        for field in values:
            _column(model, field)

        async with self.session_maker() as session:
            record = model(**values)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            logger.debug(f"Inserted {record!r}")
            return record

    async def update(self, model: type[ModelT], row_id: int, **partial: Any) -> ModelT:
        """Apply a partial update to the row with handle ``row_id``.

        ``updated_at`` is bumped automatically on models that carry it.
        """
        for field in partial:
            _column(model, field)

        async with self.session_maker() as session:
            record = await session.get(model, row_id)
            if record is None:
                raise NotFoundError(model.__name__, str(row_id))

            for field, value in partial.items():
                setattr(record, field, value)
            if "updated_at" in model.__table__.columns and "updated_at" not in partial:
                record.updated_at = utcnow()

            await session.commit()
            await session.refresh(record)
            return record

    async def compare_and_set(
        self,
        model: type[Base],
        row_id: int,
        field: str,
        expected: Any,
        new: Any,
    ) -> bool:
        """Write ``new`` only if ``field`` still holds ``expected``.

        Returns False when another writer got there first.
        """
        column = _column(model, field)
        stmt = (
            sa_update(model)
            .where(model.id == row_id, column == expected)
            .values({field: new})
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def count(self, model: type[Base], **equals: Any) -> int:
        """Count rows matching every ``field=value`` filter."""
        stmt = select(func.count()).select_from(model)
        for field, value in equals.items():
            stmt = stmt.where(_column(model, field) == value)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())
