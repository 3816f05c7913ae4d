"""Routine frequency and deadline-of-month rules

Revision ID: 0002_routine_deadline_rules
Revises: 0001_initial
Create Date: 2026-10-17 12:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_routine_deadline_rules"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

routine_frequency = postgresql.ENUM(
    "diaria",
    "semanal",
    "quincenal",
    "mensual",
    "fechas_especificas",
    name="routine_frequency",
    create_type=False,
)


def upgrade() -> None:
    routine_frequency.create(op.get_bind(), checkfirst=True)

    op.add_column(
        "routine_templates",
        sa.Column("frecuencia", routine_frequency, nullable=False, server_default="diaria"),
    )
    op.add_column("routine_templates", sa.Column("vencimiento_dia_mes", sa.Integer(), nullable=True))
    op.add_column("routine_templates", sa.Column("corte_1_limite", sa.Integer(), nullable=True))
    op.add_column("routine_templates", sa.Column("corte_2_limite", sa.Integer(), nullable=True))


def downgrade() -> None:
    op.drop_column("routine_templates", "corte_2_limite")
    op.drop_column("routine_templates", "corte_1_limite")
    op.drop_column("routine_templates", "vencimiento_dia_mes")
    op.drop_column("routine_templates", "frecuencia")
    routine_frequency.drop(op.get_bind(), checkfirst=True)
