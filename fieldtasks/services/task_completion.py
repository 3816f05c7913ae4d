from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, delete, func, literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from fieldtasks.errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from fieldtasks.models import (
    COMPLETED_TASK_STATES,
    OPEN_TASK_STATES,
    AuditStatus,
    InventorySubmissionRow,
    TaskInstance,
    TaskState,
)
from fieldtasks.schemas import GpsData, InventoryItem
from fieldtasks.security import REVIEWER_ROLES, AuthenticatedUser, ensure_same_tenant
from fieldtasks.services.deadlines import DeadlineOutcome, evaluate_deadline, resolve_deadline_utc, resolve_due_date
from fieldtasks.services.geofence import evaluate_geofence
from fieldtasks.settings import get_settings

logger = logging.getLogger("fieldtasks.task_completion")

_task_columns = TaskInstance.__table__.c
SUBMITTABLE_TASK_STATES = OPEN_TASK_STATES + COMPLETED_TASK_STATES


@dataclass(frozen=True, slots=True)
class CompletionResult:
    task_id: str
    status: TaskState
    gps_in_range: bool
    distance_m: float | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_task_for_completion(db: Session, task_id: str) -> TaskInstance:
    task = db.scalar(
        select(TaskInstance)
        .options(joinedload(TaskInstance.routine), joinedload(TaskInstance.pdv))
        .where(TaskInstance.id == task_id)
    )
    if task is None:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    return task


def _closed_task_error(state: TaskState) -> ValidationError:
    return ValidationError(
        f"La tarea no admite envíos en estado '{state.value}'.",
        code="TASK_NOT_SUBMITTABLE",
    )


def _ensure_can_complete(task: TaskInstance, actor: AuthenticatedUser) -> None:
    ensure_same_tenant(actor, task.tenant_id)
    if actor.user_id in {task.responsable_id, task.completado_por}:
        return
    if actor.has_any_role(REVIEWER_ROLES):
        return
    logger.warning(
        "task_completion_forbidden",
        extra={"task_id": task.id, "user_id": actor.user_id, "role": actor.role},
    )
    raise AuthorizationError("Unauthorized: You do not have permission to complete this task")


def resolve_completion_state(task: TaskInstance, *, now_utc: datetime, offset_hours: float) -> TaskState:
    routine = task.routine
    due_date = resolve_due_date(
        task.fecha_programada,
        routine.frecuencia,
        due_day_of_month=routine.vencimiento_dia_mes,
        first_cutoff_day=routine.corte_1_limite,
        second_cutoff_day=routine.corte_2_limite,
    )
    deadline_utc = resolve_deadline_utc(
        due_date,
        task.hora_limite_snapshot,
        offset_hours=offset_hours,
    )
    if evaluate_deadline(deadline_utc, now_utc) is DeadlineOutcome.ON_TIME:
        return TaskState.COMPLETED_ON_TIME
    return TaskState.COMPLETED_LATE


def _replace_inventory(db: Session, *, task_id: str, inventory: list[InventoryItem]) -> None:
    db.execute(delete(InventorySubmissionRow).where(InventorySubmissionRow.task_id == task_id))
    db.add_all(
        InventorySubmissionRow(
            task_id=task_id,
            producto_id=item.producto_id,
            esperado=item.esperado,
            fisico=item.fisico,
        )
        for item in inventory
    )


def complete_task(
    db: Session,
    *,
    actor: AuthenticatedUser,
    task_id: str,
    gps: GpsData | None = None,
    inventory: list[InventoryItem] | None = None,
    comments: str | None = None,
    client_ip: str | None = None,
    now_utc: datetime | None = None,
) -> CompletionResult:
    settings = get_settings()
    now_utc = now_utc or _utcnow()

    task = load_task_for_completion(db, task_id)
    _ensure_can_complete(task, actor)
    if task.estado not in SUBMITTABLE_TASK_STATES:
        raise _closed_task_error(task.estado)

    routine = task.routine
    lat = gps.lat if gps is not None else None
    lng = gps.lng if gps is not None else None
    geofence = evaluate_geofence(
        lat=lat,
        lng=lng,
        pdv=task.pdv,
        mandatory=bool(routine.gps_obligatorio),
        default_radius_m=settings.default_geofence_radius_m,
    )
    if routine.inventario_obligatorio and not inventory:
        raise ValidationError("El inventario es obligatorio para esta tarea.", code="INVENTORY_REQUIRED")

    target_state = resolve_completion_state(task, now_utc=now_utc, offset_hours=settings.civil_utc_offset_hours)
    is_open = TaskInstance.estado.in_(OPEN_TASK_STATES)

    values = {
        # Transition and completion stamp only apply while the row is still open.
        "estado": case(
            (is_open, literal(target_state, _task_columns.estado.type)),
            else_=TaskInstance.estado,
        ),
        "completado_at": case(
            (is_open, literal(now_utc, _task_columns.completado_at.type)),
            else_=TaskInstance.completado_at,
        ),
        "completado_por": func.coalesce(TaskInstance.completado_por, actor.user_id),
        "audit_status": case(
            (
                TaskInstance.audit_status == AuditStatus.REJECTED,
                literal(AuditStatus.PENDING_REVIEW, _task_columns.audit_status.type),
            ),
            else_=TaskInstance.audit_status,
        ),
        "gps_en_rango": geofence.in_range,
        "submission_ip": client_ip,
    }
    if gps is not None:
        # A submission without a fix keeps the last recorded position.
        values.update(gps_latitud=lat, gps_longitud=lng, gps_accuracy=gps.accuracy)
    if comments is not None:
        values["comentario"] = comments

    try:
        if inventory:
            _replace_inventory(db, task_id=task.id, inventory=inventory)
        row = db.execute(
            update(TaskInstance)
            .where(
                TaskInstance.id == task.id,
                TaskInstance.estado.in_(SUBMITTABLE_TASK_STATES),
            )
            .values(**values)
            .returning(TaskInstance.estado)
            .execution_options(synchronize_session="fetch")
        ).one_or_none()
        if row is None:
            # Cancelled or swept between the read above and this write.
            db.rollback()
            current_state = db.scalar(select(TaskInstance.estado).where(TaskInstance.id == task.id))
            if current_state is None:
                raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
            raise _closed_task_error(current_state)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "task_completion_store_failed",
            extra={"task_id": task_id, "user_id": actor.user_id},
        )
        raise StoreError() from exc

    status = TaskState(row.estado)
    logger.info(
        "task_completed",
        extra={
            "task_id": task.id,
            "tenant_id": task.tenant_id,
            "user_id": actor.user_id,
            "status": status.value,
            "gps_in_range": geofence.in_range,
            "distance_m": round(geofence.distance_m, 2) if geofence.distance_m is not None else None,
            "inventory_rows": len(inventory or []),
        },
    )
    return CompletionResult(
        task_id=task.id,
        status=status,
        gps_in_range=geofence.in_range,
        distance_m=geofence.distance_m,
    )
