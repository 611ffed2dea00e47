"""Persistence helpers for per-hour simulation counts.

Both write paths follow the same find-or-create pattern on the
``(simulation_id, hour)`` key: the row is selected ``FOR UPDATE`` so the
read-merge-write of the JSON columns is atomic per row, and a losing
concurrent insert (unique-constraint violation) is retried once against the
row the other writer created.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import logger
from app.models.count import COUNT_FIELDS, Count


async def _get_count_for_update(
    db: AsyncSession, simulation_id: int, hour: int
) -> Count | None:
    stmt: Select[tuple[Count]] = (
        select(Count)
        .where(Count.simulation_id == simulation_id, Count.hour == hour)
        .with_for_update()
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _find_or_create(
    db: AsyncSession, simulation_id: int, hour: int
) -> Count:
    count = await _get_count_for_update(db, simulation_id, hour)
    if count is not None:
        return count

    count = Count(
        simulation_id=simulation_id,
        hour=hour,
        extra_counts={},
        interventions=[],
    )
    db.add(count)
    await db.flush()
    return count


async def _write_with_retry(
    db: AsyncSession,
    simulation_id: int,
    hour: int,
    apply: Callable[[Count], None],
    *,
    commit: bool,
) -> Count:
    """Find-or-create the row, apply ``apply`` to it and persist.

    A unique-constraint violation means another writer inserted the same
    ``(simulation_id, hour)`` between our select and insert; the session is
    rolled back and the operation replayed once against that row.
    """

    for attempt in (1, 2):
        try:
            count = await _find_or_create(db, simulation_id, hour)
            apply(count)
            if commit:
                await db.commit()
            else:
                await db.flush()
            return count
        except IntegrityError:
            await db.rollback()
            if attempt == 2:
                raise
            logger.info(
                "Concurrent insert for counts (simulation=%s, hour=%s); retrying.",
                simulation_id,
                hour,
            )
        except Exception:
            await db.rollback()
            logger.warning(
                "Failed to persist counts (simulation=%s, hour=%s).",
                simulation_id,
                hour,
                exc_info=True,
            )
            raise
    raise AssertionError("unreachable")  # pragma: no cover


async def upsert_count(
    db: AsyncSession,
    simulation_id: int,
    hour: int,
    counts: Mapping[str, int | float],
    *,
    commit: bool = True,
) -> Count:
    """Store the counts of one simulation hour, replacing earlier values.

    Known agent states go to their own columns; any other numeric field is
    kept in ``extra_counts``. Interventions already recorded for the hour
    are left untouched.

    Args:
        db: Async SQLAlchemy session.
        simulation_id: Simulation the counts belong to.
        hour: Simulation hour.
        counts: Mapping of state name to count (``hour`` excluded).
        commit: Whether to commit the session after writing.

    Returns:
        The persisted ``Count`` row.
    """

    extra = {k: v for k, v in counts.items() if k not in COUNT_FIELDS}

    def _apply(count: Count) -> None:
        for field in COUNT_FIELDS:
            if field in counts:
                setattr(count, field, counts[field])
        # Reassign so the JSON column is flagged dirty.
        count.extra_counts = {**(count.extra_counts or {}), **extra}

    return await _write_with_retry(db, simulation_id, hour, _apply, commit=commit)


async def add_intervention(
    db: AsyncSession,
    simulation_id: int,
    hour: int,
    intervention: str,
    data: Mapping[str, Any] | None = None,
    *,
    commit: bool = True,
) -> Count:
    """Record an intervention applied at one simulation hour.

    The entry is appended only when no structurally equal entry (same name,
    equal ``data``) is already present, so replays are harmless.

    Args:
        db: Async SQLAlchemy session.
        simulation_id: Simulation the intervention belongs to.
        hour: Simulation hour at which the intervention was applied.
        intervention: Intervention name, e.g. ``"lockdown"``.
        data: JSON-serializable intervention details.
        commit: Whether to commit the session after writing.

    Returns:
        The persisted ``Count`` row.
    """

    entry = {"intervention": intervention, "data": dict(data or {})}

    def _apply(count: Count) -> None:
        existing = list(count.interventions or [])
        if entry in existing:
            logger.debug(
                "Intervention %s already recorded (simulation=%s, hour=%s).",
                intervention,
                simulation_id,
                hour,
            )
            return
        count.interventions = [*existing, entry]

    return await _write_with_retry(db, simulation_id, hour, _apply, commit=commit)


async def list_counts(db: AsyncSession, simulation_id: int) -> list[Count]:
    """Return all count rows of a simulation ordered by hour."""

    stmt: Select[tuple[Count]] = (
        select(Count)
        .where(Count.simulation_id == simulation_id)
        .order_by(Count.hour)
    )
    rows: Sequence[Count] = (await db.execute(stmt)).scalars().all()
    return list(rows)
