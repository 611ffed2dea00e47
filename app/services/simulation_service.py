from __future__ import annotations

from typing import Sequence

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import logger
from app.models.simulation import Simulation, SimulationStatus


async def get_simulation(db: AsyncSession, simulation_id: int) -> Simulation | None:
    """Return the simulation row or ``None`` when it does not exist."""

    return await db.get(Simulation, simulation_id)


async def list_simulations(db: AsyncSession) -> list[Simulation]:
    """List all simulations, most recently created first.

    Args:
        db: Async SQLAlchemy session.

    Returns:
        List of ``Simulation`` rows.
    """

    stmt: Select[tuple[Simulation]] = select(Simulation).order_by(
        Simulation.created_at.desc(), Simulation.simulation_id.desc()
    )
    rows: Sequence[Simulation] = (await db.execute(stmt)).scalars().all()
    return list(rows)


async def _get_simulation_for_update(
    db: AsyncSession, simulation_id: int
) -> Simulation | None:
    stmt: Select[tuple[Simulation]] = (
        select(Simulation)
        .where(Simulation.simulation_id == simulation_id)
        .with_for_update()
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _get_or_create_for_update(db: AsyncSession, simulation_id: int) -> Simulation:
    simulation = await _get_simulation_for_update(db, simulation_id)
    if simulation is not None:
        return simulation

    simulation = Simulation(simulation_id=simulation_id, status=SimulationStatus.CREATED)
    db.add(simulation)
    await db.flush()
    logger.info("Registered simulation %s.", simulation_id)
    return simulation


async def update_simulation_status(
    db: AsyncSession,
    simulation_id: int,
    status: SimulationStatus,
    *,
    commit: bool = True,
) -> Simulation:
    """Set the status of a simulation, creating the row when missing.

    A simulation the service has not seen yet is first registered with the
    default ``created`` status and then moved to ``status`` in the same
    transaction. The status is set unconditionally; callers own ordering.

    Args:
        db: Async SQLAlchemy session.
        simulation_id: Engine-assigned simulation id.
        status: New lifecycle status.
        commit: Whether to commit the session after writing.

    Returns:
        The persisted ``Simulation`` row.
    """

    for attempt in (1, 2):
        try:
            simulation = await _get_or_create_for_update(db, simulation_id)
            previous = simulation.status
            simulation.status = status
            if commit:
                await db.commit()
            else:
                await db.flush()
            logger.info(
                "Simulation %s status %s -> %s.", simulation_id, previous, status
            )
            return simulation
        except IntegrityError:
            await db.rollback()
            if attempt == 2:
                raise
            logger.info(
                "Concurrent registration of simulation %s; retrying.", simulation_id
            )
        except Exception:
            await db.rollback()
            logger.warning(
                "Failed to update status of simulation %s.", simulation_id, exc_info=True
            )
            raise
    raise AssertionError("unreachable")  # pragma: no cover
