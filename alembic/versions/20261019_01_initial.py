"""Create simulations and counts tables

Revision ID: 20261019_01_initial
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "20261019_01_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


simulation_status = sa.Enum(
    "created", "running", "finished", name="simulation_status"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create the simulation status and hourly counts tables."""

    op.create_table(
        "simulations",
        sa.Column("simulation_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("status", simulation_status, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "counts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("simulation_id", sa.Integer(), nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("susceptible", sa.Integer(), nullable=True),
        sa.Column("exposed", sa.Integer(), nullable=True),
        sa.Column("infected", sa.Integer(), nullable=True),
        sa.Column("hospitalized", sa.Integer(), nullable=True),
        sa.Column("quarantined", sa.Integer(), nullable=True),
        sa.Column("recovered", sa.Integer(), nullable=True),
        sa.Column("deceased", sa.Integer(), nullable=True),
        sa.Column("extra_counts", sa.JSON(), nullable=False),
        sa.Column("interventions", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("simulation_id", "hour", name="uq_counts_simulation_hour"),
    )
    op.create_index("ix_counts_simulation_id", "counts", ["simulation_id"])


def downgrade() -> None:
    op.drop_index("ix_counts_simulation_id", table_name="counts")
    op.drop_table("counts")
    op.drop_table("simulations")
    simulation_status.drop(op.get_bind(), checkfirst=True)
