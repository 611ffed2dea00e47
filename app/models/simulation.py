from __future__ import annotations

from enum import StrEnum

from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base, TimestampMixin


class SimulationStatus(StrEnum):
    """Lifecycle of a simulation as seen by the counts consumer.

    * ``created``  – row exists but no counts have arrived yet.
    * ``running``  – the hour-1 counts message was consumed.
    * ``finished`` – the engine signalled ``simulation_ended``.
    """

    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"


class Simulation(TimestampMixin, Base):
    """One row per simulation job, keyed by the engine-assigned id."""

    __tablename__ = "simulations"

    simulation_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    status: Mapped[SimulationStatus] = mapped_column(
        SAEnum(
            SimulationStatus,
            name="simulation_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=SimulationStatus.CREATED,
    )
