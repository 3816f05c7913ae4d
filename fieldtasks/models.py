from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldtasks.db import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid4())


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TaskState(str, enum.Enum):
    PENDING = "pendiente"
    IN_PROGRESS = "en_proceso"
    COMPLETED_ON_TIME = "completada_a_tiempo"
    COMPLETED_LATE = "completada_vencida"
    CANCELLED = "cancelada"
    MISSED = "incumplida"


OPEN_TASK_STATES: tuple[TaskState, ...] = (TaskState.PENDING, TaskState.IN_PROGRESS)
COMPLETED_TASK_STATES: tuple[TaskState, ...] = (TaskState.COMPLETED_ON_TIME, TaskState.COMPLETED_LATE)


class AuditStatus(str, enum.Enum):
    PENDING_REVIEW = "pendiente"
    APPROVED = "aprobado"
    REJECTED = "rechazado"


class AssignmentState(str, enum.Enum):
    ACTIVE = "activa"
    INACTIVE = "inactiva"


class RoutineFrequency(str, enum.Enum):
    DAILY = "diaria"
    WEEKLY = "semanal"
    BIWEEKLY = "quincenal"
    MONTHLY = "mensual"
    SPECIFIC_DATES = "fechas_especificas"


class UserRole(str, enum.Enum):
    DIRECTOR = "director"
    LEADER = "lider"
    AUDITOR = "auditor"
    EXECUTOR = "ejecutor"


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class RoutineTemplate(Base):
    __tablename__ = "routine_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(String(255), nullable=False)
    frecuencia: Mapped[RoutineFrequency] = mapped_column(
        Enum(RoutineFrequency, name="routine_frequency", values_callable=_enum_values),
        nullable=False,
        default=RoutineFrequency.DAILY,
        server_default=RoutineFrequency.DAILY.value,
    )
    vencimiento_dia_mes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    corte_1_limite: Mapped[int | None] = mapped_column(Integer, nullable=True)
    corte_2_limite: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gps_obligatorio: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    inventario_obligatorio: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    prioridad: Mapped[str | None] = mapped_column(String(20), nullable=True)


class PDV(Base):
    __tablename__ = "pdv"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(String(255), nullable=False)
    latitud: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitud: Mapped[float | None] = mapped_column(Float, nullable=True)
    radio_gps: Mapped[float | None] = mapped_column(Float, nullable=True)


class RoutineAssignment(Base):
    __tablename__ = "routine_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    rutina_id: Mapped[str] = mapped_column(ForeignKey("routine_templates.id", ondelete="CASCADE"), nullable=False)
    pdv_id: Mapped[str] = mapped_column(ForeignKey("pdv.id", ondelete="CASCADE"), nullable=False)
    responsable_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    estado: Mapped[AssignmentState] = mapped_column(
        Enum(AssignmentState, name="assignment_state", values_callable=_enum_values),
        nullable=False,
        default=AssignmentState.ACTIVE,
    )
    notas: Mapped[str | None] = mapped_column(Text, nullable=True)


class TaskInstance(Base):
    __tablename__ = "task_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    rutina_id: Mapped[str] = mapped_column(ForeignKey("routine_templates.id", ondelete="RESTRICT"), nullable=False)
    pdv_id: Mapped[str] = mapped_column(ForeignKey("pdv.id", ondelete="RESTRICT"), nullable=False)
    assignment_id: Mapped[str | None] = mapped_column(
        ForeignKey("routine_assignments.id", ondelete="SET NULL"),
        nullable=True,
    )
    responsable_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    fecha_programada: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hora_limite_snapshot: Mapped[time | None] = mapped_column(Time, nullable=True)
    prioridad_snapshot: Mapped[str | None] = mapped_column(String(20), nullable=True)
    estado: Mapped[TaskState] = mapped_column(
        Enum(TaskState, name="task_state", values_callable=_enum_values),
        nullable=False,
        default=TaskState.PENDING,
        index=True,
    )
    audit_status: Mapped[AuditStatus | None] = mapped_column(
        Enum(AuditStatus, name="audit_status", values_callable=_enum_values),
        nullable=True,
    )
    completado_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completado_por: Mapped[str | None] = mapped_column(String(36), nullable=True)
    gps_latitud: Mapped[float | None] = mapped_column(Float, nullable=True)
    gps_longitud: Mapped[float | None] = mapped_column(Float, nullable=True)
    gps_en_rango: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    gps_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    submission_ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    comentario: Mapped[str | None] = mapped_column(Text, nullable=True)
    audit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    audit_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    audit_notas: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    routine: Mapped[RoutineTemplate] = relationship()
    pdv: Mapped[PDV] = relationship()
    assignment: Mapped[RoutineAssignment | None] = relationship()
    inventory_rows: Mapped[list[InventorySubmissionRow]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
    )


class InventorySubmissionRow(Base):
    __tablename__ = "inventory_submission_rows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[str] = mapped_column(
        ForeignKey("task_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    producto_id: Mapped[str] = mapped_column(String(36), nullable=False)
    esperado: Mapped[float | None] = mapped_column(Float, nullable=True)
    fisico: Mapped[float | None] = mapped_column(Float, nullable=True)

    task: Mapped[TaskInstance] = relationship(back_populates="inventory_rows")


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(String(512), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    leido: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )


class SystemAuditLog(Base):
    __tablename__ = "system_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    new_values: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
