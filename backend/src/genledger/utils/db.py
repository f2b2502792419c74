"""Dialect-aware SQL helpers."""
from typing import Any, Optional

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_if_absent(db: AsyncSession, model: Any, values: dict[str, Any], conflict_column: Any) -> Optional[Any]:
    """
    Insert a row unless one already holds the same ``conflict_column`` value.

    This is a single conditional write (``INSERT ... ON CONFLICT DO NOTHING
    RETURNING id``). If a concurrent transaction holds a conflicting row the
    statement waits for it to finish, so a ``None`` result means a committed
    row exists. Dialects without ON CONFLICT fall back to a savepoint and the
    unique-constraint violation.

    Args:
        db: Database session
        model: Mapped class with an ``id`` primary key
        values: Column values for the new row
        conflict_column: Column carrying the unique constraint

    Returns:
        The new row id, or None if a conflicting row already existed
    """
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[conflict_column])
            .returning(model.id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    row = model(**values)
    try:
        async with db.begin_nested():
            db.add(row)
            await db.flush()
    except IntegrityError:
        return None
    return row.id
