from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from app.deps import DbDep
from app.models.count import Count
from app.models.simulation import Simulation
from app.schemas.simulation import CountRead, SimulationRead
from app.services.count_service import list_counts
from app.services.simulation_service import get_simulation, list_simulations


router = APIRouter()


@router.get("", response_model=list[SimulationRead])
async def list_simulation_jobs(db: DbDep) -> list[Simulation]:
    """Return all known simulations for the job list."""

    return await list_simulations(db)


@router.get("/{simulation_id}", response_model=SimulationRead)
async def read_simulation(
    db: DbDep, simulation_id: Annotated[int, Path(ge=0)]
) -> Simulation:
    """Return one simulation by id.

    Returns 404 if the simulation is unknown.
    """

    simulation = await get_simulation(db, simulation_id)
    if simulation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return simulation


@router.get("/{simulation_id}/counts", response_model=list[CountRead])
async def read_simulation_counts(
    db: DbDep, simulation_id: Annotated[int, Path(ge=0)]
) -> list[Count]:
    """Return the hourly counts of a simulation ordered by hour.

    Returns 404 if the simulation is unknown and has no counts either.
    """

    counts = await list_counts(db, simulation_id)
    if not counts and await get_simulation(db, simulation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return counts
