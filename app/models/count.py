from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base, TimestampMixin


# Agent states that get a dedicated column. Any other numeric field of a
# counts message lands in ``extra_counts``.
COUNT_FIELDS: tuple[str, ...] = (
    "susceptible",
    "exposed",
    "infected",
    "hospitalized",
    "quarantined",
    "recovered",
    "deceased",
)


class Count(TimestampMixin, Base):
    """Aggregate agent-state counts of one simulation at one hour.

    Args:
        simulation_id: Id of the simulation the counts belong to.
        hour: Simulation hour (1-based as emitted by the engine).
        susceptible .. deceased: Per-state agent counts, ``NULL`` until a
            counts message for this hour arrives.
        extra_counts: Numeric fields of the counts message without a
            dedicated column, stored verbatim.
        interventions: Append-only list of
            ``{"intervention": <name>, "data": {...}}`` entries applied at
            this hour, in arrival order and free of duplicates.
    """

    __tablename__ = "counts"
    __table_args__ = (
        UniqueConstraint("simulation_id", "hour", name="uq_counts_simulation_hour"),
        Index("ix_counts_simulation_id", "simulation_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    simulation_id: Mapped[int] = mapped_column(nullable=False)
    hour: Mapped[int] = mapped_column(nullable=False)

    susceptible: Mapped[int | None] = mapped_column(nullable=True)
    exposed: Mapped[int | None] = mapped_column(nullable=True)
    infected: Mapped[int | None] = mapped_column(nullable=True)
    hospitalized: Mapped[int | None] = mapped_column(nullable=True)
    quarantined: Mapped[int | None] = mapped_column(nullable=True)
    recovered: Mapped[int | None] = mapped_column(nullable=True)
    deceased: Mapped[int | None] = mapped_column(nullable=True)

    extra_counts: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    interventions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
