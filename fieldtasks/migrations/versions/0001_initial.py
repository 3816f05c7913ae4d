"""Initial task workflow schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

task_state = postgresql.ENUM(
    "pendiente",
    "en_proceso",
    "completada_a_tiempo",
    "completada_vencida",
    "cancelada",
    "incumplida",
    name="task_state",
    create_type=False,
)
audit_status = postgresql.ENUM(
    "pendiente",
    "aprobado",
    "rechazado",
    name="audit_status",
    create_type=False,
)
assignment_state = postgresql.ENUM(
    "activa",
    "inactiva",
    name="assignment_state",
    create_type=False,
)


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    task_state.create(bind, checkfirst=True)
    audit_status.create(bind, checkfirst=True)
    assignment_state.create(bind, checkfirst=True)

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_profiles_tenant_id", "profiles", ["tenant_id"], unique=False)

    op.create_table(
        "routine_templates",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("nombre", sa.String(length=255), nullable=False),
        sa.Column("gps_obligatorio", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("inventario_obligatorio", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("prioridad", sa.String(length=20), nullable=True),
    )
    op.create_index("ix_routine_templates_tenant_id", "routine_templates", ["tenant_id"], unique=False)

    op.create_table(
        "pdv",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("nombre", sa.String(length=255), nullable=False),
        sa.Column("latitud", sa.Float(), nullable=True),
        sa.Column("longitud", sa.Float(), nullable=True),
        sa.Column("radio_gps", sa.Float(), nullable=True),
    )
    op.create_index("ix_pdv_tenant_id", "pdv", ["tenant_id"], unique=False)

    op.create_table(
        "routine_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("rutina_id", sa.String(length=36), nullable=False),
        sa.Column("pdv_id", sa.String(length=36), nullable=False),
        sa.Column("responsable_id", sa.String(length=36), nullable=True),
        sa.Column("estado", assignment_state, nullable=False, server_default=sa.text("'activa'")),
        sa.Column("notas", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["rutina_id"], ["routine_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pdv_id"], ["pdv.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_routine_assignments_tenant_id", "routine_assignments", ["tenant_id"], unique=False)

    op.create_table(
        "task_instances",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("rutina_id", sa.String(length=36), nullable=False),
        sa.Column("pdv_id", sa.String(length=36), nullable=False),
        sa.Column("assignment_id", sa.String(length=36), nullable=True),
        sa.Column("responsable_id", sa.String(length=36), nullable=True),
        sa.Column("fecha_programada", sa.Date(), nullable=False),
        sa.Column("hora_limite_snapshot", sa.Time(), nullable=True),
        sa.Column("prioridad_snapshot", sa.String(length=20), nullable=True),
        sa.Column("estado", task_state, nullable=False, server_default=sa.text("'pendiente'")),
        sa.Column("audit_status", audit_status, nullable=True),
        sa.Column("completado_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completado_por", sa.String(length=36), nullable=True),
        sa.Column("gps_latitud", sa.Float(), nullable=True),
        sa.Column("gps_longitud", sa.Float(), nullable=True),
        sa.Column("gps_en_rango", sa.Boolean(), nullable=True),
        sa.Column("gps_accuracy", sa.Float(), nullable=True),
        sa.Column("submission_ip", sa.String(length=128), nullable=True),
        sa.Column("comentario", sa.Text(), nullable=True),
        sa.Column("audit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("audit_by", sa.String(length=36), nullable=True),
        sa.Column("audit_notas", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=36), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["rutina_id"], ["routine_templates.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["pdv_id"], ["pdv.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["assignment_id"], ["routine_assignments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_task_instances_tenant_id", "task_instances", ["tenant_id"], unique=False)
    op.create_index("ix_task_instances_responsable_id", "task_instances", ["responsable_id"], unique=False)
    op.create_index("ix_task_instances_fecha_programada", "task_instances", ["fecha_programada"], unique=False)
    op.create_index("ix_task_instances_estado", "task_instances", ["estado"], unique=False)

    op.create_table(
        "inventory_submission_rows",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("task_id", sa.String(length=36), nullable=False),
        sa.Column("producto_id", sa.String(length=36), nullable=False),
        sa.Column("esperado", sa.Float(), nullable=True),
        sa.Column("fisico", sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["task_instances.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_inventory_submission_rows_task_id",
        "inventory_submission_rows",
        ["task_id"],
        unique=False,
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("endpoint", sa.String(length=1024), nullable=False),
        sa.Column("p256dh", sa.String(length=512), nullable=False),
        sa.Column("auth", sa.String(length=255), nullable=False),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        _timestamp_column("created_at"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("leido", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp_column("created_at"),
    )
    op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"], unique=False)
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "system_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("table_name", sa.String(length=100), nullable=False),
        sa.Column("record_id", sa.String(length=64), nullable=True),
        sa.Column("old_values", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "new_values",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _timestamp_column("created_at"),
    )
    op.create_index("ix_system_audit_log_tenant_id", "system_audit_log", ["tenant_id"], unique=False)
    op.create_index("ix_system_audit_log_created_at", "system_audit_log", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_system_audit_log_created_at", table_name="system_audit_log")
    op.drop_index("ix_system_audit_log_tenant_id", table_name="system_audit_log")
    op.drop_table("system_audit_log")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_index("ix_notifications_tenant_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_push_subscriptions_user_id", table_name="push_subscriptions")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_inventory_submission_rows_task_id", table_name="inventory_submission_rows")
    op.drop_table("inventory_submission_rows")
    op.drop_index("ix_task_instances_estado", table_name="task_instances")
    op.drop_index("ix_task_instances_fecha_programada", table_name="task_instances")
    op.drop_index("ix_task_instances_responsable_id", table_name="task_instances")
    op.drop_index("ix_task_instances_tenant_id", table_name="task_instances")
    op.drop_table("task_instances")
    op.drop_index("ix_routine_assignments_tenant_id", table_name="routine_assignments")
    op.drop_table("routine_assignments")
    op.drop_index("ix_pdv_tenant_id", table_name="pdv")
    op.drop_table("pdv")
    op.drop_index("ix_routine_templates_tenant_id", table_name="routine_templates")
    op.drop_table("routine_templates")
    op.drop_index("ix_profiles_tenant_id", table_name="profiles")
    op.drop_table("profiles")

    bind = op.get_bind()
    assignment_state.drop(bind, checkfirst=True)
    audit_status.drop(bind, checkfirst=True)
    task_state.drop(bind, checkfirst=True)
