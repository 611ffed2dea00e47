from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from app.models.simulation import SimulationStatus


class SimulationRead(BaseModel):
    simulation_id: int
    status: SimulationStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class InterventionRead(BaseModel):
    intervention: str
    data: dict[str, Any] = {}


class CountRead(BaseModel):
    hour: int
    susceptible: int | None = None
    exposed: int | None = None
    infected: int | None = None
    hospitalized: int | None = None
    quarantined: int | None = None
    recovered: int | None = None
    deceased: int | None = None
    extra_counts: dict[str, int | float] = {}
    interventions: list[InterventionRead] = []

    model_config = {"from_attributes": True}
