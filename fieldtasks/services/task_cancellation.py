from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldtasks.audit import log_audit
from fieldtasks.errors import NotFoundError, StoreError, ValidationError
from fieldtasks.models import (
    COMPLETED_TASK_STATES,
    OPEN_TASK_STATES,
    AssignmentState,
    RoutineAssignment,
    TaskInstance,
    TaskState,
)
from fieldtasks.security import CANCELLER_ROLES, AuthenticatedUser, ensure_role, ensure_same_tenant

logger = logging.getLogger("fieldtasks.task_cancellation")

CancelScope = Literal["today", "future"]

ASSIGNMENT_DEACTIVATED_SUFFIX = " y se ha desactivado la asignación recurrente."
ASSIGNMENT_NOT_DEACTIVATED_WARNING = "No se pudo desactivar la asignación recurrente."


@dataclass(frozen=True, slots=True)
class CancellationResult:
    task_id: str
    message: str
    assignment_deactivated: bool | None = None
    assignment_warning: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_cancellable(state: TaskState) -> None:
    if state in COMPLETED_TASK_STATES:
        raise ValidationError(
            "No se puede cancelar una tarea que ya fue completada.",
            code="TASK_ALREADY_COMPLETED",
        )
    if state not in OPEN_TASK_STATES:
        raise ValidationError(
            f"No se puede cancelar una tarea en estado '{state.value}'.",
            code="TASK_NOT_CANCELLABLE",
        )


def _deactivate_assignment(db: Session, *, assignment_id: str, tenant_id: str, reason: str) -> bool:
    assignment = db.scalar(
        select(RoutineAssignment).where(
            RoutineAssignment.id == assignment_id,
            RoutineAssignment.tenant_id == tenant_id,
        )
    )
    if assignment is None:
        return False

    note = f"Desactivada automáticamente al cancelar tarea del día. Motivo: {reason}"
    assignment.estado = AssignmentState.INACTIVE
    assignment.notas = f"{assignment.notas}\n{note}" if assignment.notas else note
    db.commit()
    return True


def cancel_task(
    db: Session,
    *,
    actor: AuthenticatedUser,
    task_id: str,
    reason: str,
    scope: CancelScope = "today",
    now_utc: datetime | None = None,
    request_id: str | None = None,
) -> CancellationResult:
    ensure_role(
        actor,
        CANCELLER_ROLES,
        message="Permiso denegado. Solo Directores y Líderes pueden cancelar tareas.",
    )
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ValidationError("ID de tarea y motivo son obligatorios.", code="CANCEL_REASON_REQUIRED")

    task = db.get(TaskInstance, task_id)
    if task is None:
        raise NotFoundError("Tarea no encontrada.", code="TASK_NOT_FOUND")
    ensure_same_tenant(actor, task.tenant_id)
    _ensure_cancellable(task.estado)

    now_utc = now_utc or _utcnow()
    previous_state = task.estado
    try:
        row = db.execute(
            update(TaskInstance)
            .where(
                TaskInstance.id == task.id,
                TaskInstance.estado.in_(OPEN_TASK_STATES),
            )
            .values(
                estado=TaskState.CANCELLED,
                cancelled_at=now_utc,
                cancelled_by=actor.user_id,
                cancel_reason=normalized_reason,
            )
            .returning(TaskInstance.id)
            .execution_options(synchronize_session="fetch")
        ).one_or_none()
        if row is None:
            db.rollback()
            db.refresh(task)
            _ensure_cancellable(task.estado)
            raise ValidationError("La tarea cambió de estado; intente de nuevo.", code="TASK_STATE_CONFLICT")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "task_cancellation_store_failed",
            extra={"task_id": task_id, "user_id": actor.user_id},
        )
        raise StoreError() from exc

    message = "Tarea cancelada correctamente"
    assignment_deactivated: bool | None = None
    assignment_warning: str | None = None
    if scope == "future" and task.assignment_id:
        try:
            assignment_deactivated = _deactivate_assignment(
                db,
                assignment_id=task.assignment_id,
                tenant_id=task.tenant_id,
                reason=normalized_reason,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "assignment_deactivation_failed",
                extra={"task_id": task.id, "assignment_id": task.assignment_id},
            )
            assignment_deactivated = False
        if assignment_deactivated:
            message = f"{message}{ASSIGNMENT_DEACTIVATED_SUFFIX}"
        else:
            assignment_warning = ASSIGNMENT_NOT_DEACTIVATED_WARNING
    else:
        message = f"{message}."

    logger.info(
        "task_cancelled",
        extra={
            "task_id": task.id,
            "tenant_id": task.tenant_id,
            "user_id": actor.user_id,
            "scope": scope,
            "assignment_deactivated": assignment_deactivated,
        },
    )
    log_audit(
        db,
        tenant_id=task.tenant_id,
        user_id=actor.user_id,
        action="cancel_task",
        table_name="task_instances",
        record_id=task.id,
        old_values={"state": previous_state.value},
        new_values={
            "reason": normalized_reason,
            "scope": scope,
            "state": TaskState.CANCELLED.value,
            "assignment_deactivated": assignment_deactivated,
        },
        request_id=request_id,
    )
    return CancellationResult(
        task_id=task.id,
        message=message,
        assignment_deactivated=assignment_deactivated,
        assignment_warning=assignment_warning,
    )
